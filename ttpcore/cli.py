"""
ttpcore/cli.py
TTP command deck: run procedures and import Atomic Red Team content.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from ttpcore import __version__
from ttpcore.base.config import TeardownPolicy, get_config, setup_logging
from ttpcore.base.errors import TTPError
from ttpcore.bridge.art import AtomicRecord
from ttpcore.bridge.atomic import AtomicConverter
from ttpcore.engine.runner import ProcedureRunner, RunReport
from ttpcore.loader import load_procedure

logger = logging.getLogger(__name__)


def _parse_arg_pairs(pairs: Optional[List[str]]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise argparse.ArgumentTypeError(f"expected name=value, got {pair!r}")
        values[name.strip()] = value
    return values


def _print_report(report: RunReport) -> None:
    for rec in report.steps:
        print(f"  {rec.name:<30} {rec.state.value}")
    if report.first_error is not None:
        print(report.first_error.describe(), file=sys.stderr)
    for failure in report.cleanup_failures:
        print(failure.describe(), file=sys.stderr)


def run_procedure(args) -> int:
    """Load a procedure file and execute it."""
    config = get_config()
    engine = config.engine
    overrides = {}
    if args.teardown:
        overrides["teardown_policy"] = TeardownPolicy(args.teardown)
    if args.ceiling_timeout is not None:
        overrides["ceiling_timeout"] = args.ceiling_timeout
    if args.prompt_timeout is not None:
        overrides["prompt_timeout"] = args.prompt_timeout
    if overrides:
        engine = dataclasses.replace(engine, **overrides)

    procedure = load_procedure(args.file)
    runner = ProcedureRunner(engine)
    report = asyncio.run(runner.run(procedure, _parse_arg_pairs(args.arg)))

    print(f"Procedure: {report.procedure}")
    _print_report(report)
    return 0 if report.succeeded else 1


def convert_atomic(args) -> int:
    """Convert an ART technique directory into a procedure directory."""
    output_root = Path(args.output_root) if args.output_root else get_config().storage.atomic_output_path
    written = AtomicConverter(output_root).convert_directory(args.ttp_path)
    print(f"Wrote {written}")
    return 0


def art_abilities(args) -> int:
    """Print the base64-encoded abilities and variables of an atomic JSON record."""
    record = AtomicRecord.load(args.json_file)
    record.generate_vars_and_abilities()
    abilities, variables = record.to_records()
    print(json.dumps({"abilities": abilities, "vars": variables}, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ttpcore", description="TTP Command Deck")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run Command
    run_parser = subparsers.add_parser("run", help="Execute a procedure file")
    run_parser.add_argument("file", help="Path to the procedure YAML")
    run_parser.add_argument("--arg", action="append", metavar="NAME=VALUE", help="Argument override (repeatable)")
    run_parser.add_argument("--teardown", choices=[p.value for p in TeardownPolicy], help="When cleanups run")
    run_parser.add_argument("--ceiling-timeout", type=float, help="Seconds allowed for a whole step")
    run_parser.add_argument("--prompt-timeout", type=float, help="Seconds allowed per expected prompt")
    run_parser.set_defaults(func=run_procedure)

    # Atomic Conversion Command
    convert_parser = subparsers.add_parser("convert-atomic", help="Convert an Atomic Red Team technique")
    convert_parser.add_argument("ttp_path", help="Directory holding <name>/<name>.yaml")
    convert_parser.add_argument("--output-root", help="Destination root (default from configuration)")
    convert_parser.set_defaults(func=convert_atomic)

    # ART Abilities Command
    art_parser = subparsers.add_parser("art-abilities", help="Encode an atomic JSON record")
    art_parser.add_argument("json_file", help="Path to the atomic JSON record")
    art_parser.set_defaults(func=art_abilities)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 2

    setup_logging(get_config())
    try:
        return args.func(args)
    except TTPError as exc:
        print(exc.describe(), file=sys.stderr)
        return 1
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
        return 2


if __name__ == "__main__":
    sys.exit(main())
