"""LaTeX text utilities: syntax checks, cleanup and delimiter wrapping."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

LOG = logging.getLogger("texroundtrip")

INLINE_DELIMITERS: Tuple[str, str] = ("\\(", "\\)")
DISPLAY_DELIMITERS: Tuple[str, str] = ("\\[", "\\]")

UNESCAPED_DOLLAR_RE = re.compile(r"(?<!\\)\$")
DISPLAY_OPEN_RE = re.compile(r"\\\[")
DISPLAY_CLOSE_RE = re.compile(r"\\\]")
BEGIN_ENV_RE = re.compile(r"\\begin\{")
END_ENV_RE = re.compile(r"\\end\{")
LEADING_ENV_RE = re.compile(r"^\s*\\begin\{[^}]+\}")

PROBLEMATIC_COMMANDS = (
    re.compile(r"\\index\{[^}]*\}"),
    re.compile(r"\\qedhere\b"),
    re.compile(r"\\usepackage\{[^}]*\}"),
)

INVALID_NESTING_PATTERNS = (
    re.compile(r"\\begin\{equation\}[\s\S]*?\\begin\{(align\*?|gather\*?)\}", re.IGNORECASE),
    re.compile(r"\\begin\{(align\*?|gather\*?)\}[\s\S]*?\\end\{\1\}[\s\S]*?\\end\{equation\}", re.IGNORECASE),
)
EQUATION_WRAPPER_RE = re.compile(
    r"\\begin\{equation\}\s*(\\begin\{(align\*?|gather\*?)\}[\s\S]*?\\end\{\2\})\s*\\end\{equation\}",
    re.IGNORECASE,
)

MSG_UNMATCHED_INLINE = "Unmatched inline math delimiters ($)"
MSG_UNMATCHED_DISPLAY = "Unmatched display math delimiters (\\[ \\])"
MSG_UNMATCHED_ENVIRONMENTS = "Unmatched LaTeX environments (\\begin/\\end)"

COMMAND_DEFINITION_RE = re.compile(
    r"\\(newcommand|renewcommand|providecommand)\*?\s*\{?\s*\\([a-zA-Z]+)\s*\}?"
    r"(?:\s*\[(\d+)\])?(?:\s*\[([^\]]*)\])?"
)
TEX_DEF_RE = re.compile(r"\\def\s*\\([a-zA-Z]+)")
MATH_OPERATOR_RE = re.compile(r"\\DeclareMathOperator\*?\s*\{\s*\\([a-zA-Z]+)\s*\}")


@dataclass
class ValidationResult:
    valid: bool
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def validate_latex_syntax(content: Any, logger: Optional[logging.Logger] = None) -> ValidationResult:
    """Count-based delimiter and environment balance check.

    Only occurrence counts are compared, so correctly counted but wrongly
    nested delimiters pass, and delimiters inside comments are counted too.
    """
    log = logger or LOG
    if not isinstance(content, str):
        return ValidationResult(valid=False, issues=["No content provided for validation"])

    issues: List[str] = []
    warnings: List[str] = []
    try:
        if len(UNESCAPED_DOLLAR_RE.findall(content)) % 2 != 0:
            issues.append(MSG_UNMATCHED_INLINE)

        display_open = len(DISPLAY_OPEN_RE.findall(content))
        display_close = len(DISPLAY_CLOSE_RE.findall(content))
        if display_open != display_close:
            issues.append(MSG_UNMATCHED_DISPLAY)

        begin_count = len(BEGIN_ENV_RE.findall(content))
        end_count = len(END_ENV_RE.findall(content))
        if begin_count != end_count:
            issues.append(MSG_UNMATCHED_ENVIRONMENTS)

        for pattern in PROBLEMATIC_COMMANDS:
            matches = pattern.findall(content)
            if matches:
                warnings.append(f"Found {len(matches)} potentially problematic command(s): {matches[0]}")

        if "$$" in content and "\\(" in content:
            warnings.append("Mixed math delimiter styles detected")
    except Exception as exc:
        log.error("Error validating LaTeX syntax: %s", exc)
        return ValidationResult(valid=False, issues=[f"Validation error: {exc}"])

    if issues:
        log.warning("LaTeX syntax issues found: %s", "; ".join(issues))
    else:
        log.debug("LaTeX syntax validation passed")
    return ValidationResult(valid=not issues, issues=issues, warnings=warnings)


def clean_latex_content(content: str) -> str:
    try:
        cleaned = re.sub(r"<!--[\s\S]*?-->", "", content)
        cleaned = cleaned.replace("\r\n", "\n")
        cleaned = re.sub(r"(?m)^[ \t]*\n", "", cleaned)
        return cleaned.strip()
    except Exception as exc:
        LOG.error("Error cleaning LaTeX content: %s", exc)
        return content


def detect_invalid_nesting(content: str) -> bool:
    return any(pattern.search(content or "") for pattern in INVALID_NESTING_PATTERNS)


def clean_invalid_nesting(content: str, logger: Optional[logging.Logger] = None) -> str:
    log = logger or LOG
    log.warning("Invalid nested environments detected - removing equation wrappers")
    cleaned = EQUATION_WRAPPER_RE.sub(r"\1", content)
    if cleaned != content:
        log.info("Removed equation wrappers around multi-line environments")
    return cleaned


def wrap_with_delimiters(latex: str, display: bool) -> str:
    opening, closing = DISPLAY_DELIMITERS if display else INLINE_DELIMITERS
    return f"{opening}{latex}{closing}"


def wrap_in_environment(
    latex: str,
    display: bool,
    env_name: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> str:
    log = logger or LOG
    if env_name:
        log.debug("Using stored environment: %s", env_name)
        return f"\\begin{{{env_name}}}\n{latex}\n\\end{{{env_name}}}"

    if LEADING_ENV_RE.match(latex):
        return latex

    has_alignment = "&" in latex
    has_line_breaks = "\\\\" in latex or "\\\n" in latex
    if has_alignment and has_line_breaks:
        log.warning("No environment data found, defaulting to align*")
        return f"\\begin{{align*}}\n{latex}\n\\end{{align*}}"
    if has_line_breaks:
        log.warning("No environment data found, defaulting to gather*")
        return f"\\begin{{gather*}}\n{latex}\n\\end{{gather*}}"
    return wrap_with_delimiters(latex, display)


@dataclass
class PreambleCommand:
    name: str
    definition: str
    args: int = 0
    default_arg: Optional[str] = None
    operator: Optional[str] = None


def braced_argument(content: str, start: int) -> Optional[Tuple[str, int]]:
    """Return the brace-balanced group opening at ``start`` and the index just past it.

    Leading whitespace is skipped. ``None`` when no group opens there or it
    never closes.
    """
    pos = start
    while pos < len(content) and content[pos].isspace():
        pos += 1
    if pos >= len(content) or content[pos] != "{":
        return None
    depth = 0
    end = pos
    while end < len(content):
        char = content[end]
        if char == "\\":
            end += 2
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return content[pos + 1 : end], end + 1
        end += 1
    return None


def extract_preamble_commands(source: Any, logger: Optional[logging.Logger] = None) -> List[PreambleCommand]:
    """Collect macro definitions from a LaTeX source in document order.

    Handles ``\\newcommand``, ``\\renewcommand`` and ``\\providecommand`` (with
    an optional argument count and default for the first argument),
    ``\\DeclareMathOperator`` and plain ``\\def\\name{...}``.
    """
    log = logger or LOG
    if not isinstance(source, str) or not source:
        log.warning("No LaTeX source provided for command extraction")
        return []

    found: List[Tuple[int, PreambleCommand]] = []
    for match in COMMAND_DEFINITION_RE.finditer(source):
        body = braced_argument(source, match.end())
        if body is None:
            log.debug("Skipping \\%s{\\%s}: no definition body", match.group(1), match.group(2))
            continue
        command = PreambleCommand(
            name=match.group(2),
            definition=body[0],
            args=int(match.group(3)) if match.group(3) else 0,
            default_arg=match.group(4),
        )
        found.append((match.start(), command))

    for match in MATH_OPERATOR_RE.finditer(source):
        body = braced_argument(source, match.end())
        if body is None:
            continue
        text = body[0].strip()
        found.append(
            (
                match.start(),
                PreambleCommand(name=match.group(1), definition=f"\\operatorname{{{text}}}", operator=text),
            )
        )

    for match in TEX_DEF_RE.finditer(source):
        body = braced_argument(source, match.end())
        if body is None:
            continue
        found.append((match.start(), PreambleCommand(name=match.group(1), definition=body[0])))

    found.sort(key=lambda item: item[0])
    commands = [command for _, command in found]
    for command in commands:
        log.debug("Found command: \\%s (%d args) -> %s", command.name, command.args, command.definition)
    log.info("Extracted %d preamble command(s)", len(commands))
    return commands


def commands_to_macros(commands: Any, logger: Optional[logging.Logger] = None) -> Dict[str, List[Any]]:
    """Map extracted commands to MathJax ``tex.macros`` entries.

    Operators become ``[definition]``, commands with a default argument
    ``[definition, args, default]`` and the rest ``[definition, args]``.
    A later definition of the same name replaces an earlier one.
    """
    log = logger or LOG
    macros: Dict[str, List[Any]] = {}
    if not isinstance(commands, (list, tuple)):
        log.warning("Invalid command list provided for macro conversion")
        return macros

    for index, command in enumerate(commands):
        if not getattr(command, "name", None) or getattr(command, "definition", None) is None:
            log.warning("Skipping invalid command at index %d: %r", index, command)
            continue
        if command.operator is not None:
            macros[command.name] = [command.definition]
        elif command.default_arg is not None:
            macros[command.name] = [command.definition, command.args, command.default_arg]
        else:
            macros[command.name] = [command.definition, command.args]

    log.info("Converted %d command(s) to MathJax macros", len(macros))
    return macros
