"""Tests for text rendering of framebuffers."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from chip8_vm import Chip8CPU
from chip8_vm.render import lit_pixels, render_text


class TestRenderText:
    """Test terminal rendering."""

    def test_pixels_to_characters(self):
        assert render_text([[1, 0, 1], [0, 1, 0]], on="#", off=".") == "#.#\n.#."

    def test_border(self):
        text = render_text([[1, 0]], on="#", off=".", border=True)
        assert text.splitlines() == ["+--+", "|#.|", "+--+"]

    def test_full_display(self):
        """A CPU framebuffer renders as 32 lines of 64 characters."""
        cpu = Chip8CPU()
        cpu.load_rom(bytes([0x12, 0x00]))
        lines = render_text(cpu.framebuffer()).splitlines()
        assert len(lines) == 32
        assert all(len(line) == 64 for line in lines)

    def test_lit_pixels(self):
        assert lit_pixels([[1, 0, 1], [0, 1, 0]]) == 3
