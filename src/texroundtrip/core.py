"""Core pipeline for texroundtrip: rendered MathJax back to LaTeX source."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from . import latex as latex_utils
from . import mathml
from .metadata import MetadataConfig

LOG = logging.getLogger("texroundtrip")

EXIT_INVALID_ARGS = 6
EXIT_OUTPUT_ERROR = 7
EXIT_VALIDATION_ISSUES = 8

ENGINE_TOKEN_DEFAULT = "mathjax"
CONTAINER_TAG = "mjx-container"
ASSISTIVE_MATHML_SELECTOR = "mjx-assistive-mml math"
LEGACY_WRAPPER_SELECTOR = "span.math"
SKIP_EXPORT_ATTR = "data-skip-latex-export"
TIKZ_MATH_ATTR = "data-tikz-math"
ENVIRONMENT_ATTRS = ("data-math-env", "data-latex-env")


@dataclass
class RewriterConfig:
    annotation_encodings: Tuple[str, ...] = mathml.DEFAULT_ANNOTATION_ENCODINGS
    engine_token: str = ENGINE_TOKEN_DEFAULT
    restore_environments: bool = False
    clean_invalid_nesting: bool = True
    max_content_chars: Optional[int] = None


@dataclass
class ConversionResult:
    content: str
    conversion_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    scripts_removed: int = 0


@dataclass
class _Replacement:
    target: Any
    text: str
    inner: bool = False


@dataclass
class _RewritePlan:
    replacements: List[_Replacement] = field(default_factory=list)
    converted: Set[int] = field(default_factory=set)
    attempted: Set[int] = field(default_factory=set)
    failed: Set[int] = field(default_factory=set)
    skipped: int = 0


def _resolve_log_level(verbose: bool, debug: bool) -> int:
    return logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)


def _configure_texroundtrip_logger(level: int) -> None:
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        handler.setLevel(level)
        LOG.addHandler(handler)
    else:
        for handler in LOG.handlers:
            handler.setLevel(level)
            if handler.formatter is None:
                handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))


def setup_logging(verbose: bool, debug: bool) -> None:
    """Route texroundtrip diagnostics to stderr at WARNING, INFO (verbose) or DEBUG."""
    level = _resolve_log_level(verbose, debug)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    _configure_texroundtrip_logger(level)


def _string_tuple(value: Any, key: str, path: Path) -> Tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(item, str) and item.strip() for item in value):
        raise ValueError(f"Config file {path}: {key} must be a list of non-empty strings")
    return tuple(item.strip() for item in value)


def write_config_file(path: Path) -> None:
    payload = {"rewriter": asdict(RewriterConfig()), "metadata": asdict(MetadataConfig())}
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


def load_config_file(path: Path) -> Tuple[RewriterConfig, MetadataConfig]:
    try:
        data_raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise ValueError(f"Unable to read config file {path}: {exc}") from exc
    if not isinstance(data_raw, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")

    rewriter_raw = data_raw.get("rewriter") or {}
    metadata_raw = data_raw.get("metadata") or {}
    if not isinstance(rewriter_raw, dict) or not isinstance(metadata_raw, dict):
        raise ValueError(f"Config file {path}: 'rewriter' and 'metadata' must be objects")

    rewriter = RewriterConfig()
    if "annotation_encodings" in rewriter_raw:
        rewriter.annotation_encodings = _string_tuple(
            rewriter_raw["annotation_encodings"], "annotation_encodings", path
        )
    if "engine_token" in rewriter_raw:
        token = rewriter_raw["engine_token"]
        if not isinstance(token, str) or not token.strip():
            raise ValueError(f"Config file {path}: engine_token must be a non-empty string")
        rewriter.engine_token = token.strip()
    for key in ("restore_environments", "clean_invalid_nesting"):
        if key in rewriter_raw:
            setattr(rewriter, key, bool(rewriter_raw[key]))
    if rewriter_raw.get("max_content_chars") is not None:
        limit = rewriter_raw["max_content_chars"]
        if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
            raise ValueError(f"Config file {path}: max_content_chars must be a positive integer")
        rewriter.max_content_chars = limit

    metadata_cfg = MetadataConfig()
    for key in ("title_selectors", "author_selectors", "date_selectors"):
        if key in metadata_raw:
            setattr(metadata_cfg, key, _string_tuple(metadata_raw[key], key, path))
    for key in ("title_command", "author_command", "date_command", "default_title"):
        if key in metadata_raw:
            value = metadata_raw[key]
            if not isinstance(value, str):
                raise ValueError(f"Config file {path}: {key} must be a string")
            setattr(metadata_cfg, key, value)

    return rewriter, metadata_cfg


def _load_beautifulsoup() -> Tuple[Any, Any]:
    try:
        from bs4 import BeautifulSoup, NavigableString  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"beautifulsoup4 not available: {exc}") from exc
    return BeautifulSoup, NavigableString


def _is_skipped_placeholder(tag: Any) -> bool:
    if tag.has_attr(TIKZ_MATH_ATTR):
        return True
    node = tag
    while node is not None and getattr(node, "name", None):
        if str(node.get(SKIP_EXPORT_ATTR, "")).lower() == "true":
            return True
        node = node.parent
    return False


def _stored_environment(container: Any, log: logging.Logger) -> Optional[str]:
    for element in (container, container.parent):
        if element is None or not hasattr(element, "get"):
            continue
        for attr in ENVIRONMENT_ATTRS:
            value = element.get(attr)
            if not value:
                continue
            value = str(value).strip()
            if value and not value.startswith(("{", "[")):
                return value
            log.warning("Invalid %s attribute value: %r", attr, value)
    return None


def _recover_latex(
    math_tag: Any, config: RewriterConfig, log: logging.Logger
) -> Tuple[Optional[str], str]:
    latex = mathml.extract_annotation(math_tag, encodings=config.annotation_encodings, logger=log)
    if latex:
        return latex, "annotation"
    log.info("No usable TeX annotation found, attempting semantic reconstruction")
    latex = mathml.mathml_to_latex(math_tag, logger=log)
    if latex:
        return latex, "semantic"
    return None, ""


def _wrap_recovered(
    latex: str, display: bool, container: Any, config: RewriterConfig, log: logging.Logger
) -> str:
    if config.restore_environments:
        env_name = _stored_environment(container, log)
        return latex_utils.wrap_in_environment(latex, display, env_name=env_name, logger=log)
    return latex_utils.wrap_with_delimiters(latex, display)


def _plan_container_replacements(soup: Any, config: RewriterConfig, log: logging.Logger) -> _RewritePlan:
    plan = _RewritePlan()
    containers = soup.find_all(CONTAINER_TAG)
    log.debug("Processing %d math containers", len(containers))

    for index, container in enumerate(containers):
        if _is_skipped_placeholder(container):
            log.debug("Skipping TikZ placeholder at index %d", index)
            plan.skipped += 1
            continue

        math_tag = container.select_one(ASSISTIVE_MATHML_SELECTOR)
        if math_tag is None:
            log.warning("No assistive MathML in container %d, leaving as-is", index)
            plan.failed.add(id(container))
            continue

        plan.attempted.add(id(container))
        latex, source = _recover_latex(math_tag, config, log)
        if not latex:
            log.warning("Could not recover LaTeX from container %d, leaving as-is", index)
            plan.failed.add(id(container))
            continue

        display = str(container.get("display", "")).lower() == "true"
        text = _wrap_recovered(latex, display, container, config, log)
        plan.replacements.append(_Replacement(target=container, text=text))
        plan.converted.add(id(container))
        log.debug("Marked equation %d (%s): %s", index, source, latex[:50])

    return plan


def _plan_legacy_replacements(
    soup: Any, plan: _RewritePlan, config: RewriterConfig, log: logging.Logger
) -> None:
    wrappers = soup.select(LEGACY_WRAPPER_SELECTOR)
    log.debug("Processing %d legacy span.math wrappers", len(wrappers))

    for index, span in enumerate(wrappers):
        inner = span.find(CONTAINER_TAG)
        # Containers already run through annotation and reconstruction get no second attempt.
        if inner is None or id(inner) in plan.attempted:
            continue
        if _is_skipped_placeholder(span) or _is_skipped_placeholder(inner):
            continue

        math_tag = inner.find("math")
        if math_tag is None:
            log.warning("No MathML in legacy wrapper %d, leaving as-is", index)
            continue

        latex, source = _recover_latex(math_tag, config, log)
        if not latex:
            log.warning("Could not recover LaTeX from legacy wrapper %d, leaving as-is", index)
            continue

        display = "display" in (span.get("class") or [])
        text = _wrap_recovered(latex, display, inner, config, log)
        plan.replacements.append(_Replacement(target=span, text=text, inner=True))
        plan.converted.add(id(inner))
        plan.failed.discard(id(inner))
        log.debug("Marked legacy span equation %d (%s): %s", index, source, latex[:50])


def _mentions_engine(tag: Any, token: str) -> bool:
    parts: List[str] = []
    for key, value in (tag.attrs or {}).items():
        if isinstance(value, (list, tuple)):
            value = " ".join(str(v) for v in value)
        parts.append(f"{key}={value}")
    return token.lower() in " ".join(parts).lower()


def _find_engine_blocks(soup: Any, token: str) -> List[Any]:
    return [tag for tag in soup.find_all(["script", "style"]) if _mentions_engine(tag, token)]


def _apply_replacements(replacements: List[_Replacement], string_cls: Any) -> int:
    applied = 0
    for item in replacements:
        if item.inner:
            item.target.clear()
            item.target.append(string_cls(item.text))
        else:
            item.target.replace_with(string_cls(item.text))
        applied += 1
    return applied


def convert_mathjax_to_latex(
    content: str,
    config: Optional[RewriterConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> ConversionResult:
    log = logger or LOG
    cfg = config or RewriterConfig()

    if not content:
        return ConversionResult(content=content or "")
    if cfg.max_content_chars is not None and len(content) > cfg.max_content_chars:
        log.warning(
            "Content length %d exceeds limit %d, returning it unchanged",
            len(content),
            cfg.max_content_chars,
        )
        return ConversionResult(content=content)

    log.info("Converting pre-rendered MathJax elements back to LaTeX")
    try:
        BeautifulSoup, NavigableString = _load_beautifulsoup()
        soup = BeautifulSoup(content, "html.parser")

        plan = _plan_container_replacements(soup, cfg, log)
        _plan_legacy_replacements(soup, plan, cfg, log)
        engine_blocks = _find_engine_blocks(soup, cfg.engine_token)

        if not plan.replacements and not engine_blocks:
            log.info("No MathJax elements converted")
            return ConversionResult(
                content=content, failed_count=len(plan.failed), skipped_count=plan.skipped
            )

        conversion_count = _apply_replacements(plan.replacements, NavigableString)
        for block in engine_blocks:
            block.decompose()
        output = str(soup)
    except Exception as exc:
        log.error("Error converting MathJax to LaTeX: %s", exc)
        return ConversionResult(content=content)

    if cfg.clean_invalid_nesting and latex_utils.detect_invalid_nesting(output):
        output = latex_utils.clean_invalid_nesting(output, logger=log)

    log.info("Converted %d pre-rendered MathJax elements back to LaTeX", conversion_count)
    if plan.failed:
        log.warning("%d math container(s) left unconverted", len(plan.failed))

    return ConversionResult(
        content=output,
        conversion_count=conversion_count,
        failed_count=len(plan.failed),
        skipped_count=plan.skipped,
        scripts_removed=len(engine_blocks),
    )


def conversion_summary(result: ConversionResult) -> Dict[str, int]:
    return {
        "converted": result.conversion_count,
        "failed": result.failed_count,
        "skipped": result.skipped_count,
        "scripts_removed": result.scripts_removed,
    }


def safe_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="\n")
