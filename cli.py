"""Command line front end: `run [file]` executes an image, `dis [file]` lists it."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import IO, Any

from config import ConfigError, load_config
from disassembler import format_listing
from isa import VMError, load_program
from processor import LOGFILE, ControlUnit, init_logging, make_datapath


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with its two subcommands."""
    ap = argparse.ArgumentParser(
        prog="synvm",
        description="16-bit virtual machine runner and disassembler.",
    )
    ap.add_argument("--config", help="path to yaml config", default=None)
    ap.add_argument("--debug", action="store_true", help="enable debug logging to logfile.")
    ap.add_argument("--logfile", default=LOGFILE, help="path to processor log")
    ap.add_argument("--console", action="store_true", help="also echo logs to stderr")

    sub = ap.add_subparsers(dest="command", metavar="{run,dis}")
    run_p = sub.add_parser("run", help="execute a program image")
    run_p.add_argument("program", nargs="?", default=None, help="program image (default: challenge.bin)")
    run_p.add_argument("--tick-limit", type=int, default=None, help="stop after this many instructions")
    run_p.add_argument("--trace", action="store_true", help="log every executed instruction (needs --debug)")
    run_p.add_argument("--dump", default=None, help="write a state dump to this file when the run ends")

    dis_p = sub.add_parser("dis", help="print the disassembly of a program image")
    dis_p.add_argument("program", nargs="?", default=None, help="program image (default: challenge.bin)")
    return ap


def _run(args: argparse.Namespace, cfg: dict[str, Any], words: list[int], stdin: Any, stdout: IO[bytes]) -> int:
    if args.tick_limit is not None:
        cfg["tick_limit"] = args.tick_limit
    if args.trace:
        cfg["trace"] = True

    dp = make_datapath(words, stdin=stdin, stdout=stdout, config=cfg)
    cu = ControlUnit(dp)
    try:
        ticks, state = cu.run()
    finally:
        if args.dump:
            with open(args.dump, "w", encoding="utf-8") as f:
                cu.dump_state(f)
    if state == "limit":
        logging.warning("tick limit %d reached at pc %d", ticks, dp.PC)
    logging.debug("run finished: state=%s ticks=%d", state, ticks)
    return 0


def main(argv: list[str] | None = None, stdin: Any = None, stdout: IO[bytes] | None = None) -> int:
    """Entry point. Returns the process exit status."""
    ap = build_parser()
    args = ap.parse_args(argv)
    if args.command is None:
        ap.print_usage()
        return 1

    init_logging(logfile=args.logfile, debug=args.debug, console=args.console)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print("Bad config:", e, file=sys.stderr)
        return 2

    src = stdin if stdin is not None else sys.stdin.buffer
    out = stdout if stdout is not None else sys.stdout.buffer
    program = args.program or cfg["program"]

    try:
        words = load_program(program)
        if args.command == "dis":
            out.write(format_listing(words).encode("ascii"))
            out.flush()
            return 0
        return _run(args, cfg, words, src, out)
    except VMError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
