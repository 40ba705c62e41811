#!/usr/bin/env python3
"""CHIP-8 VM Command Line Interface.

Run CHIP-8 ROMs headless and print the final display to the terminal.

Usage:
    python main.py --rom roms/ibm_logo.ch8
    python main.py --rom roms/pong.ch8 --realtime --seconds 10 --ips 700
"""

import argparse
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from chip8_vm import Chip8CPU, Chip8Error, StopReason, disassemble
from chip8_vm.render import render_text

# Clear screen and home the cursor between realtime frames
ANSI_HOME = "\x1b[H\x1b[2J"


def main():
    parser = argparse.ArgumentParser(
        description="CHIP-8 VM: fetch/decode/execute interpreter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run until the program idles, faults, or hits the cycle limit
    python main.py --rom roms/ibm_logo.ch8

    # Show every executed instruction
    python main.py --rom roms/ibm_logo.ch8 --trace

    # Paced execution with timers, redrawing the terminal at 60 Hz
    python main.py --rom roms/clock.ch8 --realtime --seconds 5

    # Disassemble without running
    python main.py --rom roms/ibm_logo.ch8 --disassemble
        """
    )

    parser.add_argument(
        "--rom", "-r",
        type=str,
        required=True,
        help="Path to the ROM image"
    )
    parser.add_argument(
        "--ips",
        type=int,
        default=Chip8CPU.DEFAULT_INSTRUCTIONS_PER_SECOND,
        help=f"Instructions per second in realtime mode. Default: {Chip8CPU.DEFAULT_INSTRUCTIONS_PER_SECOND}"
    )
    parser.add_argument(
        "--seconds",
        type=float,
        default=None,
        help="Realtime run duration (default: until fault or Ctrl-C)"
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=Chip8CPU.DEFAULT_MAX_CYCLES,
        help=f"Instruction limit for headless runs. Default: {Chip8CPU.DEFAULT_MAX_CYCLES}"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for the random number instruction"
    )
    parser.add_argument(
        "--realtime",
        action="store_true",
        help="Pace execution with 60 Hz timers and live terminal output"
    )
    parser.add_argument(
        "--disassemble", "-d",
        action="store_true",
        help="Print the ROM disassembly and exit"
    )
    parser.add_argument(
        "--trace", "-t",
        action="store_true",
        help="Print full execution trace"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Minimal output (final display only)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging (one line per instruction)"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s"
    )

    rom_path = Path(args.rom)
    if not rom_path.exists():
        print(f"Error: ROM file not found: {args.rom}")
        return 1

    if args.disassemble:
        for line in disassemble(rom_path.read_bytes()):
            print(line)
        return 0

    cpu = Chip8CPU(
        instructions_per_second=args.ips,
        max_cycles=args.max_cycles,
        seed=args.seed,
        trace=args.trace
    )

    try:
        cpu.load_rom_file(rom_path)
    except Chip8Error as e:
        print(f"Load error: {e}")
        return 1

    if not args.quiet:
        print(f"Loaded ROM: {args.rom} ({rom_path.stat().st_size} bytes)")
        print("-" * 66)

    if args.realtime:
        def present(framebuffer):
            sys.stdout.write(ANSI_HOME + render_text(framebuffer, border=True) + "\n")
            sys.stdout.flush()

        try:
            result = cpu.run_realtime(duration=args.seconds, present=present)
        except KeyboardInterrupt:
            result = None
    else:
        result = cpu.run()

    # Output
    if args.trace:
        cpu.print_trace()

    print(render_text(cpu.framebuffer(), border=True))

    if not args.quiet:
        summary = cpu.get_summary()
        print()
        if result is not None:
            print(f"Stopped: {result.reason.value}")
        print(f"Cycles: {summary['cycles']}")
        print(f"PC: 0x{summary['pc']:03X}  I: 0x{summary['index']:03X}")
        print(f"Registers: {' '.join(f'{k}={v:02X}' for k, v in summary['registers'].items())}")
        print(f"Timers: DT={summary['delay_timer']} ST={summary['sound_timer']}")
        if summary['fault']:
            print(f"Fault: {summary['fault']}")

    # Return exit code based on fault state
    if result is not None and result.reason is StopReason.FAULT:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
