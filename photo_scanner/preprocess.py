from __future__ import annotations

import io
from pathlib import Path

from .errors import ImageUnreadable


def _load_pillow():
    try:
        from PIL import Image, ImageOps

        return Image, ImageOps
    except Exception as exc:
        raise RuntimeError("Pillow is required for image preparation. Install with: pip install pillow") from exc


def prepare_for_inference(image_path: Path, max_dim: int, quality: int = 90) -> bytes:
    """Downscale to fit max_dim x max_dim and re-encode as JPEG."""
    Image, ImageOps = _load_pillow()

    try:
        with Image.open(image_path) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode != "RGB":
                img = img.convert("RGB")
            img.thumbnail((max_dim, max_dim), Image.Resampling.LANCZOS)

            buffer = io.BytesIO()
            img.save(buffer, format="JPEG", quality=quality, optimize=True)
            return buffer.getvalue()
    except (OSError, ValueError) as exc:
        raise ImageUnreadable(f"Cannot prepare image: {exc}", image_path) from exc


def image_size(image_path: Path) -> tuple[int, int]:
    """Stored pixel size, without applying the orientation tag."""
    Image, _ = _load_pillow()

    try:
        with Image.open(image_path) as img:
            return img.size
    except (OSError, ValueError) as exc:
        raise ImageUnreadable(f"Cannot read image size: {exc}", image_path) from exc


def render_preview(image_path: Path, width: int, height: int, quality: int = 75) -> bytes:
    Image, _ = _load_pillow()

    try:
        with Image.open(image_path) as img:
            if img.mode != "RGB":
                img = img.convert("RGB")
            img.thumbnail((width, height), Image.Resampling.LANCZOS)

            # Fresh image so no EXIF/ICC data is carried into the preview.
            stripped = Image.new("RGB", img.size)
            stripped.paste(img)
            buffer = io.BytesIO()
            stripped.save(buffer, format="JPEG", quality=quality)
            return buffer.getvalue()
    except (OSError, ValueError) as exc:
        raise ImageUnreadable(f"Cannot render preview: {exc}", image_path) from exc
