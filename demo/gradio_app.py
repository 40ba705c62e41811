"""CHIP-8 VM Interactive Demo.

A Gradio web interface acting as the I/O bridge for the CHIP-8 VM: it
loads ROMs, feeds the hex keypad and renders the framebuffer.

Usage:
    cd /path/to/chip8-vm
    python demo/gradio_app.py

Features:
    - Upload a ROM or pick a bundled sample program
    - Advance emulated time frame by frame (timers run at 60 Hz)
    - Tap keys on the 4x4 hex keypad
    - Inspect registers, timers and the disassembly
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import gradio as gr
import numpy as np

from chip8_vm import Chip8CPU, Chip8Error, disassemble


# =============================================================================
# Sample Programs
# =============================================================================

SAMPLE_PROGRAMS = {
    "Font digits": bytes([
        0x00, 0xE0,  # CLS
        0x60, 0x00,  # LD V0, 0
        0x61, 0x02,  # LD V1, 2
        0x62, 0x02,  # LD V2, 2
        0xF0, 0x29,  # LD F, V0
        0xD1, 0x25,  # DRW V1, V2, 5
        0x70, 0x01,  # ADD V0, 1
        0x71, 0x06,  # ADD V1, 6
        0x30, 0x08,  # SE V0, 8
        0x12, 0x08,  # JP 0x208
        0x61, 0x02,  # LD V1, 2
        0x62, 0x0A,  # LD V2, 10
        0xF0, 0x29,  # LD F, V0
        0xD1, 0x25,  # DRW V1, V2, 5
        0x70, 0x01,  # ADD V0, 1
        0x71, 0x06,  # ADD V1, 6
        0x30, 0x10,  # SE V0, 16
        0x12, 0x18,  # JP 0x218
        0x12, 0x24,  # JP 0x224 (idle)
    ]),
    "Key echo": bytes([
        0x00, 0xE0,  # CLS
        0xF0, 0x0A,  # LD V0, K
        0x00, 0xE0,  # CLS
        0xF0, 0x29,  # LD F, V0
        0x61, 0x1C,  # LD V1, 28
        0x62, 0x0D,  # LD V2, 13
        0xD1, 0x25,  # DRW V1, V2, 5
        0x12, 0x02,  # JP 0x202
    ]),
    "Seconds counter": bytes([
        0x63, 0x00,  # LD V3, 0
        0xA3, 0x00,  # LD I, 0x300
        0xF3, 0x33,  # LD B, V3
        0xF2, 0x65,  # LD V2, [I]
        0x00, 0xE0,  # CLS
        0x6A, 0x14,  # LD VA, 20
        0x6B, 0x0D,  # LD VB, 13
        0xF0, 0x29,  # LD F, V0
        0xDA, 0xB5,  # DRW VA, VB, 5
        0x7A, 0x06,  # ADD VA, 6
        0xF1, 0x29,  # LD F, V1
        0xDA, 0xB5,  # DRW VA, VB, 5
        0x7A, 0x06,  # ADD VA, 6
        0xF2, 0x29,  # LD F, V2
        0xDA, 0xB5,  # DRW VA, VB, 5
        0x64, 0x3C,  # LD V4, 60
        0xF4, 0x15,  # LD DT, V4
        0xF4, 0x07,  # LD V4, DT
        0x34, 0x00,  # SE V4, 0
        0x12, 0x22,  # JP 0x222
        0x73, 0x01,  # ADD V3, 1
        0x12, 0x02,  # JP 0x202
    ]),
}

KEYPAD_LAYOUT = [
    [0x1, 0x2, 0x3, 0xC],
    [0x4, 0x5, 0x6, 0xD],
    [0x7, 0x8, 0x9, 0xE],
    [0xA, 0x0, 0xB, 0xF],
]

SCALE = 10
ON_COLOR = np.array([80, 255, 120], dtype=np.uint8)
OFF_COLOR = np.array([16, 24, 16], dtype=np.uint8)
FRAME_SECONDS = 1 / 60


class SimulatedClock:
    """Clock whose sleep() advances time instantly, for stepping in frames."""

    def __init__(self):
        self.now = 0.0

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Rendering
# =============================================================================

def framebuffer_image(cpu) -> np.ndarray:
    """Convert the CPU framebuffer to a scaled RGB image."""
    if cpu is None or cpu.state is None:
        pixels = np.zeros((32, 64), dtype=bool)
    else:
        pixels = np.array(cpu.framebuffer(), dtype=bool)
    image = np.where(pixels[..., None], ON_COLOR, OFF_COLOR)
    return np.repeat(np.repeat(image, SCALE, axis=0), SCALE, axis=1)


def status_text(cpu) -> str:
    if cpu is None or cpu.state is None:
        return "No program loaded"
    summary = cpu.get_summary()
    lines = [
        "MACHINE STATE",
        "=" * 40,
        f"Cycles: {summary['cycles']}",
        f"PC: 0x{summary['pc']:03X}   I: 0x{summary['index']:03X}   SP: {summary['stack_depth']}",
        f"DT: {summary['delay_timer']}   ST: {summary['sound_timer']}"
        + ("   (beep)" if cpu.sound_active() else ""),
        f"Waiting for key: {'Yes' if summary['waiting_for_key'] else 'No'}",
        "",
        "REGISTERS",
        "-" * 40,
    ]
    regs = list(summary["registers"].items())
    for i in range(0, len(regs), 4):
        lines.append("   ".join(f"{name}={value:02X}" for name, value in regs[i:i + 4]))
    if summary["fault"]:
        lines += ["", f"FAULT: {summary['fault']}"]
    return "\n".join(lines)


def outputs(cpu, message: str = ""):
    status = status_text(cpu)
    if message:
        status = f"{message}\n\n{status}"
    return cpu, framebuffer_image(cpu), status


# =============================================================================
# Event Handlers
# =============================================================================

def load_program(rom_file, sample_name: str, ips: int, seed: float):
    """Create a fresh CPU with an uploaded ROM or a sample program."""
    cpu = Chip8CPU(instructions_per_second=int(ips), seed=int(seed) if seed is not None else None)
    try:
        if rom_file is not None:
            rom = Path(upload_path(rom_file)).read_bytes()
        else:
            rom = SAMPLE_PROGRAMS[sample_name]
        cpu.load_rom(rom)
    except (Chip8Error, OSError, KeyError) as e:
        return (None, framebuffer_image(None), f"Error: {e}", "")
    listing = "\n".join(disassemble(rom))
    cpu_state, image, status = outputs(cpu, f"Loaded {len(rom)} bytes")
    return cpu_state, image, status, listing


def upload_path(rom_file) -> str:
    """Gradio passes a path string or a tempfile wrapper depending on version."""
    return rom_file if isinstance(rom_file, str) else rom_file.name


def run_frames(cpu, frames: int):
    """Advance emulated time by a number of 60 Hz frames."""
    if cpu is None or cpu.state is None:
        return outputs(cpu, "Load a program first")
    clock = SimulatedClock()
    result = cpu.run_realtime(
        duration=int(frames) * FRAME_SECONDS,
        clock=clock.time,
        sleep=clock.sleep
    )
    return outputs(cpu, f"Ran {result.cycles} instructions ({result.reason.value})")


def tap_key(cpu, key: int, hold_frames: int):
    """Press a key, let the program see it for a few frames, release it."""
    if cpu is None or cpu.state is None:
        return outputs(cpu, "Load a program first")
    cpu.press_key(key)
    run_frames(cpu, hold_frames)
    cpu.release_key(key)
    return outputs(cpu, f"Tapped key {key:X}")


# =============================================================================
# Gradio Interface
# =============================================================================

def create_demo():
    """Create and return the Gradio demo interface."""

    with gr.Blocks(title="CHIP-8 VM Demo", theme=gr.themes.Soft()) as demo:
        gr.Markdown("""
        # CHIP-8 VM

        A CHIP-8 interpreter: 4 KB memory, 16 registers, 60 Hz timers and a
        64x32 XOR-drawn display. Load a ROM, advance time in frames, and use
        the hex keypad.

        **Pipeline**: `fetch -> decode -> key -> registry -> execute -> state`
        """)

        cpu_state = gr.State(None)

        with gr.Row():
            with gr.Column(scale=2):
                gr.Markdown("### Program")
                rom_upload = gr.File(label="ROM file (.ch8)", type="filepath")
                sample_dropdown = gr.Dropdown(
                    choices=list(SAMPLE_PROGRAMS.keys()),
                    value="Font digits",
                    label="Sample program (used when no ROM is uploaded)"
                )
                with gr.Row():
                    ips_slider = gr.Slider(
                        minimum=60,
                        maximum=2000,
                        value=Chip8CPU.DEFAULT_INSTRUCTIONS_PER_SECOND,
                        step=10,
                        label="Instructions per second"
                    )
                    seed_input = gr.Number(value=0, label="Random seed", precision=0)
                load_button = gr.Button("Load", variant="primary")

                gr.Markdown("### Run")
                with gr.Row():
                    frames_slider = gr.Slider(
                        minimum=1,
                        maximum=600,
                        value=60,
                        step=1,
                        label="Frames (1/60 s each)"
                    )
                    run_button = gr.Button("Run frames")

                gr.Markdown("### Keypad")
                hold_slider = gr.Slider(minimum=1, maximum=60, value=6, step=1, label="Hold frames")
                key_buttons = []
                for row in KEYPAD_LAYOUT:
                    with gr.Row():
                        for key in row:
                            key_buttons.append((key, gr.Button(f"{key:X}", size="sm")))

            with gr.Column(scale=3):
                display_output = gr.Image(label="Display", interactive=False)
                status_output = gr.Textbox(label="State", lines=14, interactive=False)

        with gr.Accordion("Disassembly", open=False):
            listing_output = gr.Textbox(label="Program", lines=20, interactive=False)

        with gr.Accordion("Instruction Reference", open=False):
            gr.Markdown("""
            | Opcode | Mnemonic | Effect |
            |--------|----------|--------|
            | `00E0` | `CLS` | Clear display |
            | `00EE` | `RET` | Return from subroutine |
            | `1NNN` | `JP NNN` | Jump |
            | `2NNN` | `CALL NNN` | Call subroutine |
            | `3XNN` / `4XNN` | `SE/SNE Vx, NN` | Skip if equal / not equal |
            | `5XY0` / `9XY0` | `SE/SNE Vx, Vy` | Skip if registers equal / not equal |
            | `6XNN` / `7XNN` | `LD/ADD Vx, NN` | Load / add immediate |
            | `8XY0`-`8XYE` | `LD OR AND XOR ADD SUB SHR SUBN SHL` | Register ALU, VF = flag |
            | `ANNN` / `BNNN` | `LD I, NNN` / `JP V0, NNN` | Set I / jump with offset |
            | `CXNN` | `RND Vx, NN` | Random byte AND NN |
            | `DXYN` | `DRW Vx, Vy, N` | XOR sprite, VF = collision |
            | `EX9E` / `EXA1` | `SKP/SKNP Vx` | Skip on key state |
            | `FX07` `FX15` `FX18` | `LD Vx, DT` / `LD DT, Vx` / `LD ST, Vx` | Timers |
            | `FX0A` | `LD Vx, K` | Wait for key press |
            | `FX1E` `FX29` `FX33` | `ADD I, Vx` / `LD F, Vx` / `LD B, Vx` | Index, font, BCD |
            | `FX55` / `FX65` | `LD [I], Vx` / `LD Vx, [I]` | Store / load V0..Vx |
            """)

        # Event handlers
        load_button.click(
            fn=load_program,
            inputs=[rom_upload, sample_dropdown, ips_slider, seed_input],
            outputs=[cpu_state, display_output, status_output, listing_output]
        )

        run_button.click(
            fn=run_frames,
            inputs=[cpu_state, frames_slider],
            outputs=[cpu_state, display_output, status_output]
        )

        for key, button in key_buttons:
            button.click(
                fn=lambda cpu, hold, key=key: tap_key(cpu, key, hold),
                inputs=[cpu_state, hold_slider],
                outputs=[cpu_state, display_output, status_output]
            )

    return demo


# =============================================================================
# Main
# =============================================================================

if __name__ == "__main__":
    demo = create_demo()
    demo.launch(
        share=False,
        server_name="0.0.0.0",
        server_port=7861,
        show_error=True
    )
