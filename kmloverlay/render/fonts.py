from functools import lru_cache
from pathlib import Path
from typing import Optional

from PIL import ImageFont

FontType = ImageFont.FreeTypeFont | ImageFont.ImageFont

_CANDIDATES = {
    False: [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/dejavu/DejaVuSans.ttf",
        "/Library/Fonts/Arial.ttf",
        "/System/Library/Fonts/Supplemental/Arial.ttf",
    ],
    True: [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/dejavu/DejaVuSans-Bold.ttf",
        "/Library/Fonts/Arial Bold.ttf",
        "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
    ],
}


@lru_cache(maxsize=64)
def load_font(size: int, bold: bool = False, font_path: Optional[str] = None) -> FontType:
    """Pick a readable font; fall back to Pillow's bundled default."""
    candidates = ([font_path] if font_path else []) + _CANDIDATES[bold]
    for candidate in candidates:
        if Path(candidate).is_file():
            try:
                return ImageFont.truetype(candidate, size=size)
            except OSError:
                continue
    return ImageFont.load_default(size=size)
