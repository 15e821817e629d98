"""Command-line interface for html2anchors."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .version import __version__

DEPTH_CHOICES = ["none", "2", "3", "4", "5", "6"]


def _get_usage() -> str:
    return (
        f"html2anchors {__version__}\n"
        "Usage:\n"
        "  html2anchors [--help] [--version|--ver] [--write-options PATH]\n"
        "  html2anchors --input DOCUMENT --output OUTPUT [options]\n\n"
        "Options:\n"
        "  --toc PATH                   Read headings from a toc.html nav list\n"
        "  --depth {none,2,3,4,5,6}     Deepest heading level that gets a link (default: 3)\n"
        "  --alignment {left,center,right}\n"
        "                               Link alignment (default: right)\n"
        "  --link-text TEXT             Link label (default: translated 'Back to TOC')\n"
        "  --container-class NAME       CSS class of the link container\n"
        "  --link-class NAME            CSS class of the link\n"
        "  --text-class NAME            CSS class of the link label\n"
        "  --has-toc | --no-toc         Force the link target to #toc or #top\n"
        "  --css-out PATH               Write the anchor link CSS to PATH\n"
        "  --embed-css                  Embed the anchor link CSS into <head>\n"
        "  --report PATH                Write a JSON report of processed sections\n"
        "  --options PATH               Load options from a JSON file\n"
        "  --lang LANG                  Label language (en, zh-TW)\n"
        "  --disable                    Copy the document without inserting links\n"
        "  --verbose                    Verbose progress logs\n"
        "  --debug                      Debug logs"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("--input", help="Rendered HTML document")
    parser.add_argument("--output", help="Output HTML file")
    parser.add_argument("--toc", help="toc.html file supplying the ordered heading list")
    parser.add_argument("--depth", choices=DEPTH_CHOICES, help="Anchor depth ('none' disables insertion)")
    parser.add_argument("--alignment", choices=["left", "center", "right"], help="Link alignment")
    parser.add_argument("--link-text", help="Link label")
    parser.add_argument("--container-class", help="CSS class of the link container")
    parser.add_argument("--link-class", help="CSS class of the link")
    parser.add_argument("--text-class", help="CSS class of the link label")
    toc_group = parser.add_mutually_exclusive_group()
    toc_group.add_argument("--has-toc", dest="has_toc", action="store_const", const=True, default=None)
    toc_group.add_argument("--no-toc", dest="has_toc", action="store_const", const=False)
    parser.add_argument("--css-out", help="Write the anchor link CSS to this path")
    parser.add_argument("--embed-css", action="store_true", help="Embed the anchor link CSS into <head>")
    parser.add_argument("--report", help="Write a JSON report of processed sections")
    parser.add_argument("--options", help="Path to a JSON options file")
    parser.add_argument("--write-options", help="Write the default options JSON to the given path and exit")
    parser.add_argument("--lang", help="Label language (fallback: HTML2ANCHORS_LANG env var)")
    parser.add_argument("--disable", action="store_true", help="Disable anchor link insertion")
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs")
    return parser


def _collect_overrides(args: argparse.Namespace) -> dict:
    overrides: dict = {}
    if args.depth is not None:
        overrides["anchorDepth"] = args.depth
    if args.alignment is not None:
        overrides["alignment"] = args.alignment
    if args.link_text:
        overrides["linkText"] = args.link_text
    css_classes = {
        key: value
        for key, value in (
            ("container", args.container_class),
            ("link", args.link_class),
            ("text", args.text_class),
        )
        if value
    }
    if css_classes:
        overrides["cssClasses"] = css_classes
    if args.disable:
        overrides["enabled"] = False
    return overrides


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    try:
        args, unknown = parser.parse_known_args(argv)
    except SystemExit:
        print(_get_usage())
        return 6
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
        from html2anchors import core
    except Exception as exc:
        print(f"Unable to import html2anchors core: {exc}", file=sys.stderr)
        return 6

    core.setup_logging(args.verbose, args.debug)

    if args.write_options:
        target = Path(args.write_options).expanduser().resolve()
        try:
            core.write_options_file(target)
        except OSError as exc:
            print(f"Unable to write options file {target}: {exc}", file=sys.stderr)
            return core.EXIT_INVALID_ARGS
        if args.verbose:
            print(f"Default options written to {target}")
        return 0

    if not args.input or not args.output:
        print(_get_usage())
        print("Options --input and --output are required unless --write-options or --version/--ver is used", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    input_path = Path(args.input).expanduser().resolve()
    output_path = Path(args.output).expanduser().resolve()

    if not input_path.exists() or not input_path.is_file():
        print(f"Input document not found: {input_path}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS
    if output_path.exists() and output_path.is_dir():
        print(f"Output path is a directory: {output_path}", file=sys.stderr)
        return core.EXIT_OUTPUT_PATH

    toc_path = None
    if args.toc:
        toc_path = Path(args.toc).expanduser().resolve()
        if not toc_path.exists() or not toc_path.is_file():
            print(f"TOC file not found: {toc_path}", file=sys.stderr)
            return core.EXIT_INVALID_ARGS

    options_cfg = core.default_options_dict()
    if args.options:
        options_path = Path(args.options).expanduser().resolve()
        if not options_path.exists() or not options_path.is_file():
            print(f"Options file not found: {options_path}", file=sys.stderr)
            return core.EXIT_INVALID_ARGS
        try:
            options_cfg = core.read_options_dict(options_path)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return core.EXIT_INVALID_ARGS

    options_cfg = core.merge_options_dicts(options_cfg, _collect_overrides(args))
    try:
        options = core.options_from_dict(options_cfg)
    except (TypeError, ValueError) as exc:
        print(f"Invalid options: {exc}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    translator = core.CatalogTranslator(core.resolve_language(args.lang))

    try:
        result = core.run_anchor_links_pipeline(
            input_path=input_path,
            output_path=output_path,
            options=options,
            toc_path=toc_path,
            has_toc=args.has_toc,
            translator=translator,
            css_path=Path(args.css_out).expanduser().resolve() if args.css_out else None,
            embed_css=bool(args.embed_css),
            report_path=Path(args.report).expanduser().resolve() if args.report else None,
        )
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    if args.verbose:
        print(f"Inserted {result.links_inserted} anchor link(s) into {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
