"""Command-line interface for texroundtrip."""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path

from .version import __version__


def _get_usage() -> str:
    return (
        f"texroundtrip {__version__}\n"
        "Usage:\n"
        "  texroundtrip [--help] [--version|--ver]\n"
        "  texroundtrip --write-config PATH\n"
        "  texroundtrip --input PATH [--output PATH] [options]\n\n"
        "Options:\n"
        "  --validate                   Check LaTeX delimiter/environment balance of the input\n"
        "  --metadata                   Print document metadata as JSON\n"
        "  --macros                     Print preamble command definitions as MathJax macros JSON\n"
        "  --config PATH                Use config JSON (rewriter/metadata sections)\n"
        "  --write-config PATH          Write default config JSON and exit\n"
        "  --restore-environments       Rebuild align*/gather* environments for multi-line math\n"
        "  --verbose                    Verbose progress logs\n"
        "  --debug                      Debug logs"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("--input", help="HTML fragment (or LaTeX source with --validate) to read")
    parser.add_argument("--output", help="Output file (default: stdout)")
    parser.add_argument("--validate", action="store_true", help="Validate LaTeX syntax instead of converting")
    parser.add_argument("--metadata", action="store_true", help="Extract document metadata instead of converting")
    parser.add_argument(
        "--macros", action="store_true", help="Extract \\newcommand-style definitions as MathJax macros"
    )
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument("--write-config", help="Write the default config JSON to the given path and exit")
    parser.add_argument(
        "--restore-environments",
        action="store_true",
        help="Wrap recovered multi-line display math in align*/gather* or its stored environment",
    )
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs")
    return parser


def _emit(text: str, output: str | None) -> int:
    from texroundtrip import core

    if not output:
        sys.stdout.write(text if text.endswith("\n") else f"{text}\n")
        return 0
    target = Path(output).expanduser().resolve()
    try:
        core.safe_write_text(target, text)
    except Exception as exc:
        print(f"Unable to write output file {target}: {exc}", file=sys.stderr)
        return core.EXIT_OUTPUT_ERROR
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        print(_get_usage())
        return 2

    if not argv or args.help:
        print(_get_usage())
        return 0

    if args.version or args.ver:
        print(__version__)
        return 0

    try:
        from texroundtrip import core
        from texroundtrip import latex as latex_utils
        from texroundtrip import metadata as metadata_mod
    except Exception as exc:
        print(f"Unable to import texroundtrip core: {exc}", file=sys.stderr)
        return 6

    core.setup_logging(args.verbose, args.debug)

    if args.write_config:
        target = Path(args.write_config).expanduser().resolve()
        try:
            core.write_config_file(target)
        except Exception as exc:
            print(f"Unable to write config file {target}: {exc}", file=sys.stderr)
            return core.EXIT_OUTPUT_ERROR
        if args.verbose:
            print(f"Default config written to {target}")
        return 0

    if sum((args.validate, args.metadata, args.macros)) > 1:
        print("Options --validate, --metadata and --macros are mutually exclusive", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    if not args.input:
        print(_get_usage())
        print("Option --input is required unless --write-config or --version/--ver is used", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    input_path = Path(args.input).expanduser().resolve()
    if not input_path.exists() or not input_path.is_file():
        print(f"Input file not found: {input_path}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    rewriter_cfg = core.RewriterConfig()
    metadata_cfg = metadata_mod.MetadataConfig()
    if args.config:
        config_path = Path(args.config).expanduser().resolve()
        if not config_path.exists() or not config_path.is_file():
            print(f"Config file not found: {config_path}", file=sys.stderr)
            return core.EXIT_INVALID_ARGS
        try:
            rewriter_cfg, metadata_cfg = core.load_config_file(config_path)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return core.EXIT_INVALID_ARGS
    if args.restore_environments:
        rewriter_cfg.restore_environments = True

    try:
        content = input_path.read_text(encoding="utf-8")
    except Exception as exc:
        print(f"Unable to read input file {input_path}: {exc}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    if args.validate:
        result = latex_utils.validate_latex_syntax(content)
        rc = _emit(json.dumps(asdict(result), ensure_ascii=False, indent=2), args.output)
        if rc:
            return rc
        return 0 if result.valid else core.EXIT_VALIDATION_ISSUES

    if args.metadata:
        doc_meta = metadata_mod.extract_document_metadata(content, config=metadata_cfg)
        return _emit(json.dumps(asdict(doc_meta), ensure_ascii=False, indent=2), args.output)

    if args.macros:
        commands = latex_utils.extract_preamble_commands(content)
        macros = latex_utils.commands_to_macros(commands)
        return _emit(json.dumps(macros, ensure_ascii=False, indent=2), args.output)

    conversion = core.convert_mathjax_to_latex(content, config=rewriter_cfg)
    if args.verbose:
        summary = core.conversion_summary(conversion)
        core.LOG.info(
            "Summary: converted=%d failed=%d skipped=%d scripts_removed=%d",
            summary["converted"],
            summary["failed"],
            summary["skipped"],
            summary["scripts_removed"],
        )
    return _emit(conversion.content, args.output)


if __name__ == "__main__":
    raise SystemExit(main())
