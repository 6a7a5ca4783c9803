"""Recover LaTeX source from MathJax-rendered HTML."""

from .core import ConversionResult, RewriterConfig, convert_mathjax_to_latex
from .latex import (
    PreambleCommand,
    ValidationResult,
    commands_to_macros,
    extract_preamble_commands,
    validate_latex_syntax,
)
from .mathml import SemanticNode, extract_annotation, mathml_to_latex, reconstruct_latex
from .metadata import DocumentMetadata, MetadataConfig, SectionEntry, extract_document_metadata
from .version import __version__

__all__ = [
    "ConversionResult",
    "DocumentMetadata",
    "MetadataConfig",
    "PreambleCommand",
    "RewriterConfig",
    "SectionEntry",
    "SemanticNode",
    "ValidationResult",
    "__version__",
    "commands_to_macros",
    "convert_mathjax_to_latex",
    "extract_annotation",
    "extract_document_metadata",
    "extract_preamble_commands",
    "mathml_to_latex",
    "reconstruct_latex",
    "validate_latex_syntax",
]
