"""Command-line interface for page2svg."""

from __future__ import annotations

import argparse
import sys

from .version import __version__

EQNO_CHOICES = ("none", "AMS", "all")


def _get_usage() -> str:
    return (
        f"page2svg {__version__}\n"
        "Usage:\n"
        "  page2svg [--help] [--version|--ver]\n"
        "  page2svg [options] < input.html > output.html\n\n"
        "Options:\n"
        "  --preview                    Make SVG into a MathJax preview\n"
        "  --speech                     Include speech text\n"
        "  --speechrules RULES          Speech ruleset: chromevox or mathspeak (default: mathspeak)\n"
        "  --speechstyle STYLE          Speech style: default, brief, sbrief (default: default)\n"
        "  --linebreaks                 Perform automatic line-breaking\n"
        "  --nodollars                  Don't use single-dollar delimiters\n"
        "  --nofontcache                Don't use <defs> and <use> tags for fonts\n"
        "  --localcache                 Cache fonts for each equation separately\n"
        "  --format LIST                Input format(s) to look for (default: AsciiMath,TeX,MathML)\n"
        "  --eqno STYLE                 Equation number style: none, AMS, all (default: none)\n"
        "  --img PREFIX                 Make external SVG images with this name prefix\n"
        "  --font FONT                  Web font to use (default: TeX)\n"
        "  --ex N                       Ex-size in pixels (default: 6)\n"
        "  --width N                    Width of container in ex (default: 100)\n"
        "  --extensions LIST            Extra MathJax extensions e.g. 'Safe,TeX/noUndefined'\n"
        "  --timeout SECONDS            Abort if the typesetting oracle does not answer in time\n"
        "  --verbose                    Verbose progress logs\n"
        "  --debug                      Debug logs"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs")
    parser.add_argument("--preview", action="store_true", help="Make SVG into a MathJax preview")
    parser.add_argument("--speech", action="store_true", help="Include speech text")
    parser.add_argument(
        "--speechrules",
        default="mathspeak",
        help="Ruleset to use for speech text (chromevox or mathspeak)",
    )
    parser.add_argument(
        "--speechstyle",
        default="default",
        help="Style to use for speech text (default, brief, sbrief)",
    )
    parser.add_argument("--linebreaks", action="store_true", help="Perform automatic line-breaking")
    parser.add_argument("--nodollars", action="store_true", help="Don't use single-dollar delimiters")
    parser.add_argument("--nofontcache", action="store_true", help="Don't use <defs> and <use> tags for fonts")
    parser.add_argument("--localcache", action="store_true", help="Cache fonts for each equation separately")
    parser.add_argument("--format", default="AsciiMath,TeX,MathML", help="Input format(s) to look for")
    parser.add_argument("--eqno", default="none", help="Equation number style (none, AMS, or all)")
    parser.add_argument("--img", default="", help="Make external svg images with this name prefix")
    parser.add_argument("--font", default="TeX", help="Web font to use")
    parser.add_argument("--ex", type=int, default=6, help="Ex-size in pixels (default: 6)")
    parser.add_argument("--width", type=int, default=100, help="Width of container in ex (default: 100)")
    parser.add_argument("--extensions", default="", help="Extra MathJax extensions e.g. 'Safe,TeX/noUndefined'")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the typesetting oracle (default: wait indefinitely)",
    )
    return parser


def _validate_args(args: argparse.Namespace) -> str | None:
    if args.ex is None or args.ex <= 0:
        return "Invalid value for --ex: must be > 0"
    if args.width is None or args.width <= 0:
        return "Invalid value for --width: must be > 0"
    if args.timeout is not None and args.timeout <= 0:
        return "Invalid value for --timeout: must be > 0"
    if args.eqno not in EQNO_CHOICES:
        return f"Invalid value for --eqno: must be one of {', '.join(EQNO_CHOICES)}"
    return None


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    try:
        args, unknown = parser.parse_known_args(argv)
    except SystemExit:
        print(_get_usage())
        return 2
    if unknown:
        print(_get_usage())
        return 2

    if args.help:
        print(_get_usage())
        return 0

    if args.version or args.ver:
        print(__version__)
        return 0

    try:
        from page2svg import core
    except Exception as exc:
        print(f"Unable to import page2svg core: {exc}", file=sys.stderr)
        return 6

    validation_error = _validate_args(args)
    if validation_error:
        print(validation_error, file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    formats = core.parse_formats(args.format)
    if not formats:
        print("Invalid value for --format: at least one input format is required", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    core.setup_logging(args.verbose, args.debug)

    config = core.ConversionConfig(
        preview=bool(args.preview),
        speech=bool(args.speech),
        speech_rules=str(args.speechrules),
        speech_style=str(args.speechstyle),
        linebreaks=bool(args.linebreaks),
        no_dollars=bool(args.nodollars),
        no_font_cache=bool(args.nofontcache),
        local_cache=bool(args.localcache),
        formats=formats,
        eqno=str(args.eqno),
        img=str(args.img or ""),
        font=str(args.font),
        ex=int(args.ex),
        width=int(args.width),
        extensions=str(args.extensions or ""),
        oracle_timeout=args.timeout,
    )

    oracle = core.MathJaxNodeOracle(font=config.font, extensions=config.extensions)
    raw_html = sys.stdin.read()

    try:
        html = core.convert(raw_html, config, oracle)
    except core.OracleError as exc:
        print(f"Typesetting failed: {exc}", file=sys.stderr)
        return core.EXIT_ORACLE
    except core.ImageExternalizationError as exc:
        print(f"Image extraction failed: {exc}", file=sys.stderr)
        return core.EXIT_IMAGE_WRITE
    except core.ConversionError as exc:
        print(f"Conversion failed: {exc}", file=sys.stderr)
        return core.EXIT_CONVERSION

    sys.stdout.write(html)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
