"""MathML helpers: stored TeX annotations and semantic reconstruction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple

LOG = logging.getLogger("texroundtrip")

DEFAULT_ANNOTATION_ENCODINGS: Tuple[str, ...] = ("application/x-tex", "TeX", "LaTeX")
UNDEFINED_MARKER = "undefined"

INVISIBLE_OPERATORS = {"\u2061", "\u2062", "\u2063", "\u2064"}
NAMED_OPERATORS = {"\u2205": r"\varnothing"}

ROW_TAGS = {"math", "mrow", "mstyle", "mpadded", "semantics"}
ANNOTATION_TAGS = {"annotation", "annotation-xml"}
KIND_BY_TAG = {
    "mi": "identifier",
    "mn": "number",
    "mo": "operator",
    "msup": "superscript",
    "msub": "subscript",
    "msubsup": "subsup",
    "mfrac": "fraction",
    "msqrt": "sqrt",
    "mroot": "root",
    "mtext": "text",
    "mspace": "space",
}


@dataclass(frozen=True)
class SemanticNode:
    kind: str
    tag: str
    text: str = ""
    children: Tuple["SemanticNode", ...] = ()

    def child(self, index: int) -> Optional["SemanticNode"]:
        if 0 <= index < len(self.children):
            return self.children[index]
        return None


def _element_children(tag: Any) -> Iterable[Any]:
    for child in getattr(tag, "children", []) or []:
        if getattr(child, "name", None):
            yield child


def extract_annotation(
    math_tag: Any,
    encodings: Iterable[str] = DEFAULT_ANNOTATION_ENCODINGS,
    logger: Optional[logging.Logger] = None,
) -> Optional[str]:
    log = logger or LOG
    if math_tag is None:
        return None
    for encoding in encodings:
        annotation = math_tag.find("annotation", attrs={"encoding": encoding})
        if annotation is None:
            continue
        latex = annotation.get_text().strip()
        if not latex:
            continue
        if latex == UNDEFINED_MARKER:
            log.warning("Rejected placeholder annotation (encoding=%s)", encoding)
            continue
        log.debug("Annotation found (encoding=%s): %s", encoding, latex[:50])
        return latex
    return None


def build_semantic_tree(tag: Any) -> SemanticNode:
    name = (getattr(tag, "name", None) or "").lower()
    if name in ROW_TAGS:
        children = tuple(
            build_semantic_tree(child)
            for child in _element_children(tag)
            if (child.name or "").lower() not in ANNOTATION_TAGS
        )
        return SemanticNode(kind="row", tag=name, children=children)

    kind = KIND_BY_TAG.get(name, "unknown")
    text = tag.get_text().strip() if hasattr(tag, "get_text") else str(tag).strip()
    if kind in {"identifier", "number", "operator", "text", "space", "unknown"}:
        return SemanticNode(kind=kind, tag=name, text=text)

    children = tuple(build_semantic_tree(child) for child in _element_children(tag))
    return SemanticNode(kind=kind, tag=name, text=text, children=children)


def _convert_node(node: Optional[SemanticNode], log: logging.Logger) -> str:
    if node is None:
        return ""
    kind = node.kind

    if kind in {"identifier", "number"}:
        return node.text
    if kind == "operator":
        if node.text in INVISIBLE_OPERATORS:
            return ""
        return NAMED_OPERATORS.get(node.text, node.text)
    if kind == "row":
        return "".join(_convert_node(child, log) for child in node.children)
    if kind == "superscript":
        return f"{_convert_node(node.child(0), log)}^{{{_convert_node(node.child(1), log)}}}"
    if kind == "subscript":
        return f"{_convert_node(node.child(0), log)}_{{{_convert_node(node.child(1), log)}}}"
    if kind == "subsup":
        base = _convert_node(node.child(0), log)
        sub = _convert_node(node.child(1), log)
        sup = _convert_node(node.child(2), log)
        return f"{base}_{{{sub}}}^{{{sup}}}"
    if kind == "fraction":
        return rf"\frac{{{_convert_node(node.child(0), log)}}}{{{_convert_node(node.child(1), log)}}}"
    if kind == "sqrt":
        content = "".join(_convert_node(child, log) for child in node.children)
        return rf"\sqrt{{{content}}}"
    if kind == "root":
        radicand = _convert_node(node.child(0), log)
        index = _convert_node(node.child(1), log)
        return rf"\sqrt[{index}]{{{radicand}}}"
    if kind == "text":
        return rf"\text{{{node.text}}}"
    if kind == "space":
        return " "

    log.warning("Unhandled MathML element <%s>, using its text verbatim", node.tag or "?")
    return node.text


def reconstruct_latex(node: SemanticNode, logger: Optional[logging.Logger] = None) -> Optional[str]:
    log = logger or LOG
    try:
        result = _convert_node(node, log).strip()
    except Exception as exc:
        log.error("Semantic MathML reconstruction failed: %s", exc)
        return None
    if not result:
        return None
    log.debug("Semantic reconstruction result: %s", result)
    return result


def mathml_to_latex(math_tag: Any, logger: Optional[logging.Logger] = None) -> Optional[str]:
    log = logger or LOG
    if math_tag is None:
        return None
    try:
        tree = build_semantic_tree(math_tag)
    except Exception as exc:
        log.error("Unable to read MathML structure: %s", exc)
        return None
    return reconstruct_latex(tree, logger=log)
