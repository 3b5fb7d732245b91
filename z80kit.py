#!/usr/bin/env python3
"""
z80kit — Z80 Static Analysis Toolkit
====================================

Commands:
    z80kit disasm  Linear disassembly listing of a binary image
    z80kit regs    Input/used registers of one or more subroutines

Usage:
    python z80kit.py <command> [options]
    python z80kit.py <command> --help

Examples:
    python z80kit.py disasm rom.bin --org 0x0000 --start 0x0038 --count 20
    python z80kit.py regs rom.bin --org 0 --sub 0x0038 --sub 0x0066
    python z80kit.py -v regs rom.bin --org $8000 --sub $8100 --format json
"""

import argparse
import json
import logging
import sys
from typing import Tuple

from z80_disassembler import __version__
from z80_disassembler.analyzer import SubroutineAnalyzer
from z80_disassembler.config import DEFAULT_ORIGIN, MAX_PATHS, MAX_STEPS, AnalyzerConfig
from z80_disassembler.log_setup import setup_logging
from z80_disassembler.memory import Memory

log = logging.getLogger("z80_disassembler.z80kit")


def parse_int_arg(value: str) -> int:
    """Parse an integer argument that may be hex (0x...), $ prefix, or decimal."""
    value = value.strip()
    if value.startswith("0x") or value.startswith("0X"):
        return int(value, 16)
    if value.startswith("$"):
        return int(value[1:], 16)
    return int(value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="z80kit",
        description="Z80 toolkit: disassemble, find subroutine input registers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""commands:
  disasm     Linear disassembly listing
  regs       Input and used registers per subroutine
""",
    )
    parser.add_argument("--version", action="version", version=f"z80kit {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="-v shows INFO, -vv shows DEBUG on the console")
    parser.add_argument("--log-file", default=None, help="Write a DEBUG log to this file")
    sub = parser.add_subparsers(dest="command", metavar="command")

    # ── disasm ───────────────────────────────────────────────────────────
    p_dis = sub.add_parser("disasm", help="Linear disassembly listing")
    p_dis.add_argument("input", help="Input .bin file")
    p_dis.add_argument("--org", type=parse_int_arg, default=DEFAULT_ORIGIN,
                       help="Load address of the image (default: 0x0000)")
    p_dis.add_argument("--start", type=parse_int_arg, default=None,
                       help="First address to decode (default: --org)")
    p_dis.add_argument("--count", type=int, default=None,
                       help="Number of instructions (default: to end of image)")

    # ── regs ─────────────────────────────────────────────────────────────
    p_regs = sub.add_parser("regs", help="Input and used registers per subroutine")
    p_regs.add_argument("input", help="Input .bin file")
    p_regs.add_argument("--org", type=parse_int_arg, default=DEFAULT_ORIGIN,
                        help="Load address of the image (default: 0x0000)")
    p_regs.add_argument("--sub", type=parse_int_arg, action="append", required=True,
                        dest="subs", metavar="ADDR", help="Subroutine entry (repeatable)")
    p_regs.add_argument("--format", choices=["txt", "json"], default="txt")
    p_regs.add_argument("--max-paths", type=int, default=MAX_PATHS)
    p_regs.add_argument("--max-steps", type=int, default=MAX_STEPS)
    p_regs.add_argument("--no-follow-calls", action="store_true",
                        help="Treat every CALL/RST as opaque")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    console_level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    setup_logging("z80_disassembler", console_level=console_level, log_file=args.log_file)

    try:
        handler = COMMANDS[args.command]
        return handler(args)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130


# ═════════════════════════════════════════════════════════════════════════════
# COMMAND IMPLEMENTATIONS
# ═════════════════════════════════════════════════════════════════════════════

def _load(path: str, org: int) -> Tuple[Memory, int]:
    memory = Memory()
    size = memory.read_bin_file(org, path)
    return memory, size


# ── disasm ───────────────────────────────────────────────────────────────
def cmd_disasm(args):
    memory, size = _load(args.input, args.org)
    addr = args.org if args.start is None else args.start
    end = args.org + size
    lines = []
    count = 0
    while (args.count is None and addr < end) or (args.count is not None and count < args.count):
        opcode = memory.get_opcode_at(addr)
        raw = ' '.join(f'{memory.read8(addr + i):02X}' for i in range(opcode.length))
        lines.append(f'{addr & 0xFFFF:04X}  {raw:<12}  {opcode.disassemble()}')
        addr += opcode.length
        count += 1
    print("\n".join(lines))
    log.info("Disassembled %d instructions", count)
    return 0


# ── regs ─────────────────────────────────────────────────────────────────
def cmd_regs(args):
    memory, _ = _load(args.input, args.org)
    config = AnalyzerConfig(max_paths=args.max_paths, max_steps=args.max_steps,
                            follow_calls=not args.no_follow_calls)
    analyzer = SubroutineAnalyzer(memory, config)
    results = [analyzer.analyze_subroutine(addr) for addr in args.subs]

    if args.format == "json":
        print(json.dumps([info.to_dict() for info in results], indent=2))
        return 0

    for info in results:
        inputs = ','.join(info.input_names) or '-'
        used = ','.join(info.used_names) or '-'
        note = '  (truncated)' if info.truncated else ''
        print(f"0x{info.address:04X}  in: {inputs:<24} used: {used}{note}")
    return 0


COMMANDS = {
    "disasm": cmd_disasm,
    "regs": cmd_regs,
}


if __name__ == "__main__":
    sys.exit(main())
