"""mir_dump/__main__.py - command-line entry point.

Usage examples
--------------
    # Dump every function of an exported bundle
    python -m mir_dump crate.mir.json

    # Dump a single function, with the synthesized-loans table
    python -m mir_dump crate.mir.json --proc foo --debug-info

    # Also render each graph.dot to SVG (needs the ``viz`` extra)
    python -m mir_dump crate.mir.json --render svg

    # Show the effective configuration and exit
    python -m mir_dump --print-config

Exit codes
----------
    0   Every selected function was dumped.
    1   At least one function could not be dumped.
    2   Infrastructure failure (bad configuration, missing bundle,
        inconsistent facts, missing dependency).
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from mir_dump import __version__
from mir_dump.configuration import Configuration
from mir_dump.driver import DumpSummary, Pipeline
from mir_dump.errors import (
    ConfigurationError,
    FunctionDumpError,
    MirDumpError,
    UnsupportedTerminatorError,
)
from mir_dump.mir import MirFunction, load_bundle

_log = logging.getLogger("mir_dump")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``mir_dump`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("mir_dump")
    # repeated calls replace the handler instead of stacking another one
    for old in list(root.handlers):
        root.removeHandler(old)
    root.setLevel(level)
    root.addHandler(handler)


def _import_graphviz():
    """Import ``graphviz`` with a friendly error on failure."""
    try:
        import graphviz
        return graphviz
    except ImportError:
        _log.error(
            "graphviz is not installed.  "
            "Install it with: pip install mir-dump[viz]"
        )
        raise SystemExit(EXIT_INFRA)


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Configuration overrides from the command line; ``None`` means unset."""
    return {
        "dump_mir_proc": args.proc,
        "facts_dir": args.facts_dir,
        "log_dir": args.log_dir,
        "dump_show_temp_variables": False if args.no_temp_variables else None,
        "dump_show_statement_indices": False if args.no_statement_indices else None,
        "dump_debug_info": True if args.debug_info else None,
    }


def _load_config(args: argparse.Namespace) -> Configuration:
    config_file = None
    if args.config is not None:
        # --config behaves like $MIR_DUMP_CONFIG but wins over it.
        config_file = Path(args.config)
        if not config_file.is_file():
            raise ConfigurationError(
                "configuration file not found", context={"path": args.config}
            )
    return Configuration.load(config_file=config_file, overrides=_overrides(args))


def _render(summary: DumpSummary, fmt: str) -> int:
    """Render every written report to *fmt* with Graphviz."""
    graphviz = _import_graphviz()
    status = EXIT_OK
    for name, path in summary.written:
        try:
            out = graphviz.render("dot", fmt, str(path))
        except graphviz.ExecutableNotFound as exc:
            _log.error("Graphviz executable not found: %s", exc)
            raise SystemExit(EXIT_INFRA)
        except graphviz.CalledProcessError as exc:
            _log.error("Rendering %s failed: %s", name, exc)
            status = EXIT_ERROR
        else:
            _log.info("Rendered %s", out)
    return status


# ===========================================================================
# Command
# ===========================================================================

def cmd_dump(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
    except ConfigurationError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA

    if config.dump_debug_info and args.verbose < 2:
        logging.getLogger("mir_dump").setLevel(logging.DEBUG)

    if args.print_config:
        print(config.dump())
        return EXIT_OK

    if not args.bundles:
        _log.error("no MIR bundle given")
        return EXIT_INFRA

    functions: List[MirFunction] = []
    for raw in args.bundles:
        try:
            functions.extend(load_bundle(raw))
        except MirDumpError as exc:
            _log.error("%s", exc)
            return EXIT_INFRA

    pipeline = Pipeline(config, keep_going=args.keep_going)
    try:
        summary = pipeline.run(functions)
    except (FunctionDumpError, UnsupportedTerminatorError) as exc:
        _log.error("%s", exc)
        return EXIT_ERROR
    except MirDumpError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA

    for name, path in summary.written:
        print(f"{name}: {path}")
    for name, exc in summary.failed:
        print(f"{name}: FAILED {exc}", file=sys.stderr)

    status = EXIT_OK if summary.ok else EXIT_ERROR
    if args.render:
        status = max(status, _render(summary, args.render))
    return status


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mir_dump",
        description="Dump per-program-point borrow-check information as Graphviz graphs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="Increase verbosity (-v INFO, -vv DEBUG).",
    )
    parser.add_argument(
        "bundles", nargs="*", metavar="BUNDLE",
        help="JSON bundle(s) exported by the host driver.",
    )
    parser.add_argument(
        "--config", metavar="FILE", default=None,
        help="TOML configuration file (overrides $MIR_DUMP_CONFIG).",
    )
    parser.add_argument(
        "--proc", metavar="NAME", default=None,
        help="Only dump the function with this name.",
    )
    parser.add_argument("--facts-dir", metavar="DIR", default=None)
    parser.add_argument("--log-dir", metavar="DIR", default=None)
    parser.add_argument(
        "--no-temp-variables", action="store_true",
        help="Do not emit the table of locals.",
    )
    parser.add_argument(
        "--no-statement-indices", action="store_true",
        help="Do not emit the statement-number column.",
    )
    parser.add_argument(
        "--debug-info", action="store_true",
        help="Emit the synthesized-loans table and log at DEBUG level.",
    )
    parser.add_argument(
        "--keep-going", action="store_true",
        help="Continue with the next function after a failure.",
    )
    parser.add_argument(
        "--render", metavar="FORMAT", default=None,
        help="Render each graph.dot with Graphviz (svg, pdf, png ...).",
    )
    parser.add_argument(
        "--print-config", action="store_true",
        help="Print the effective configuration and exit.",
    )
    parser.set_defaults(func=cmd_dump)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the mir_dump CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_INFRA
    except Exception as exc:
        _log.error("Unhandled exception: %s", exc, exc_info=True)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
