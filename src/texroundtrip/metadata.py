"""Document metadata extraction (title, author, date, section outline)."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from .latex import braced_argument

LOG = logging.getLogger("texroundtrip")

DEFAULT_TITLE = "Mathematical Document"

DOCUMENT_CLASS_RE = re.compile(r"\\documentclass(?:\[[^\]]*\])?\{([^}]+)\}")
NESTED_COMMAND_RE = re.compile(r"\\[a-zA-Z]+\{[^}]*\}")
HEADING_TAG_RE = re.compile(r"^h[1-6]$")


@dataclass
class MetadataConfig:
    # Each field is tried in order: the LaTeX command, then the CSS selectors.
    title_command: str = "title"
    title_selectors: Tuple[str, ...] = ("h1.title", "h1", ".document-title")
    author_command: str = "author"
    author_selectors: Tuple[str, ...] = (".author", ".document-author")
    date_command: str = "date"
    date_selectors: Tuple[str, ...] = (".date", ".document-date")
    default_title: str = DEFAULT_TITLE


@dataclass
class SectionEntry:
    level: int
    title: str
    slug: str


@dataclass
class DocumentMetadata:
    title: Optional[str] = DEFAULT_TITLE
    author: Optional[str] = None
    date: Optional[str] = None
    document_class: Optional[str] = None
    sections: List[SectionEntry] = field(default_factory=list)


def slugify_heading(title: str) -> str:
    slug = (title or "").lower()
    slug = re.sub(r"[^a-z0-9\s]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    return slug.strip("-")


def _clean_text(text: str) -> str:
    return " ".join((text or "").split())


def _latex_command_value(content: str, command: str) -> Optional[str]:
    match = re.search(r"\\" + re.escape(command) + r"(?=\{)", content)
    if not match:
        return None
    group = braced_argument(content, match.end())
    if group is None:
        return None
    value = _clean_text(NESTED_COMMAND_RE.sub("", group[0]))
    return value or None


def _selector_value(soup: Any, selectors: Tuple[str, ...], log: logging.Logger) -> Optional[str]:
    for selector in selectors:
        try:
            node = soup.select_one(selector)
        except Exception as exc:
            log.debug("Metadata selector %r failed: %s", selector, exc)
            continue
        if node is None:
            continue
        value = _clean_text(node.get_text())
        if value:
            log.debug("Metadata found via selector %r: %s", selector, value)
            return value
    return None


def _field_value(
    content: str, soup: Any, command: str, selectors: Tuple[str, ...], log: logging.Logger
) -> Optional[str]:
    value = _latex_command_value(content, command) if command else None
    if value:
        log.debug("Metadata found via \\%s: %s", command, value)
        return value
    if soup is None:
        return None
    return _selector_value(soup, selectors, log)


def extract_sections(soup: Any) -> List[SectionEntry]:
    sections: List[SectionEntry] = []
    for heading in soup.find_all(HEADING_TAG_RE):
        title = _clean_text(heading.get_text())
        sections.append(SectionEntry(level=int(heading.name[1]), title=title, slug=slugify_heading(title)))
    return sections


def extract_document_metadata(
    content: str,
    config: Optional[MetadataConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> DocumentMetadata:
    log = logger or LOG
    cfg = config or MetadataConfig()
    metadata = DocumentMetadata(title=cfg.default_title)
    if not isinstance(content, str) or not content:
        return metadata

    try:
        class_match = DOCUMENT_CLASS_RE.search(content)
        if class_match:
            metadata.document_class = class_match.group(1).strip()

        soup = None
        try:
            from bs4 import BeautifulSoup  # type: ignore

            soup = BeautifulSoup(content, "html.parser")
        except Exception as exc:
            log.warning("HTML metadata sources unavailable: %s", exc)

        title = _field_value(content, soup, cfg.title_command, cfg.title_selectors, log)
        if title:
            metadata.title = title
        metadata.author = _field_value(content, soup, cfg.author_command, cfg.author_selectors, log)
        metadata.date = _field_value(content, soup, cfg.date_command, cfg.date_selectors, log)

        if soup is not None:
            metadata.sections = extract_sections(soup)
    except Exception as exc:
        log.error("Error extracting metadata: %s", exc)
        return metadata

    log.info(
        "Extracted metadata: title=%r author=%r date=%r sections=%d",
        metadata.title,
        metadata.author,
        metadata.date,
        len(metadata.sections),
    )
    return metadata
