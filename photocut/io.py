from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image

from .contracts import ExportFormat


def load_image_rgba(path: str) -> np.ndarray:
    """
    Load an image as straight-alpha RGBA uint8 ndarray of shape (H, W, 4).
    """
    if not Path(path).is_file():
        raise FileNotFoundError(f"Could not read image: {path}")
    with Image.open(path) as img:
        rgba = img.convert("RGBA")
    return np.array(rgba, dtype=np.uint8)


def _flatten_alpha_to_white(img: Image.Image) -> Image.Image:
    if img.mode == "RGBA":
        bg = Image.new("RGBA", img.size, (255, 255, 255, 255))
        return Image.alpha_composite(bg, img).convert("RGB")
    return img.convert("RGB")


def save_image(arr: np.ndarray, path: str, fmt: ExportFormat = ExportFormat.PNG, quality: int = 90) -> None:
    """
    Save an RGBA array. JPEG has no alpha, so it is flattened onto white first.
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    img = Image.fromarray(np.ascontiguousarray(arr))

    if fmt == ExportFormat.JPEG:
        _flatten_alpha_to_white(img).save(str(p), format="JPEG", quality=int(quality))
    elif fmt == ExportFormat.WEBP:
        img.save(str(p), format="WEBP", quality=int(quality))
    else:
        img.save(str(p), format="PNG", optimize=False)
