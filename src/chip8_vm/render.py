"""Text rendering of framebuffer snapshots for terminals and logs."""

from typing import Sequence

ON_PIXEL = "█"
OFF_PIXEL = " "


def render_text(framebuffer: Sequence[Sequence[int]], on: str = ON_PIXEL, off: str = OFF_PIXEL,
                border: bool = False) -> str:
    """Render a framebuffer as one text line per display row.

    Args:
        framebuffer: Rows of 0/1 pixels, e.g. Chip8CPU.framebuffer()
        on: Character for lit pixels
        off: Character for dark pixels
        border: Surround the picture with a box

    Returns:
        Multi-line string (no trailing newline)
    """
    lines = ["".join(on if pixel else off for pixel in row) for row in framebuffer]
    if border:
        width = len(lines[0]) if lines else 0
        lines = ["+" + "-" * width + "+"] + [f"|{line}|" for line in lines] + ["+" + "-" * width + "+"]
    return "\n".join(lines)


def lit_pixels(framebuffer: Sequence[Sequence[int]]) -> int:
    """Count lit pixels in a framebuffer."""
    return sum(sum(row) for row in framebuffer)
