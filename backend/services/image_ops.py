"""
Image decode and pixel helpers used by the mask builders and the pipeline.

Everything here works on encoded bytes or numpy arrays so callers never have
to share PIL image objects across steps.
"""
from __future__ import annotations

from io import BytesIO
import logging
from typing import Tuple

import numpy as np
from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError
import pillow_heif

from domain.errors import InvalidGeometry

logger = logging.getLogger(__name__)


def register_heif_opener() -> None:
    """
    Register the HEIF/HEIC opener with Pillow.

    Call this at application startup so phone photos can be uploaded as subjects.
    Safe to call multiple times.
    """
    pillow_heif.register_heif_opener()


def open_image(data: bytes) -> Image.Image:
    """Decode bytes into a PIL image with EXIF orientation applied."""
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidGeometry(f"Could not decode image: {e}") from e

    # if animated gif or webp, grab first frame
    if getattr(img, "is_animated", False):
        img.seek(0)
    return ImageOps.exif_transpose(img)


def image_dimensions(data: bytes) -> Tuple[int, int]:
    """Return (width, height) of an encoded image."""
    img = open_image(data)
    width, height = img.size
    if width <= 0 or height <= 0:
        raise InvalidGeometry("Failed to read image dimensions for mask generation")
    return width, height


# EXIF tag 0x0112; 1 means the stored pixels are already upright.
EXIF_ORIENTATION_TAG = 0x0112


def stored_image_info(data: bytes) -> Tuple[int, int, int]:
    """
    Return (width, height, exif_orientation) of the pixels as stored.

    Unlike `image_dimensions`, no EXIF rotation is applied, so this is the
    size a consumer that ignores EXIF will see.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            width, height = img.size
            orientation = img.getexif().get(EXIF_ORIENTATION_TAG, 1) or 1
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidGeometry(f"Could not decode image: {e}") from e
    return width, height, int(orientation)


def to_rgb(img: Image.Image) -> Image.Image:
    if img.mode == "RGB":
        return img
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        # flatten transparency onto white so hidden pixels don't count as content
        rgba = img.convert("RGBA")
        bg = Image.new("RGB", rgba.size, "#FFFFFF")
        bg.paste(rgba, mask=rgba.split()[-1])
        return bg
    return img.convert("RGB")


def decode_rgb(data: bytes) -> np.ndarray:
    """Decode bytes into an (H, W, 3) uint8 array."""
    return np.asarray(to_rgb(open_image(data)), dtype=np.uint8)


def encode_png(img: Image.Image) -> bytes:
    buf = BytesIO()
    img.save(buf, format="PNG", optimize=True)
    return buf.getvalue()


def fill_resize(data: bytes, size: Tuple[int, int]) -> bytes:
    """
    Resize to exactly `size` without cropping or padding.

    Aspect ratio is not preserved, which keeps percentage polygon coordinates
    aligned with the same template features after resizing.
    """
    img = open_image(data)
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA" if "transparency" in img.info else "RGB")
    return encode_png(img.resize(size, Image.Resampling.LANCZOS))


def crop_rgb(img: Image.Image, box: Tuple[int, int, int, int]) -> np.ndarray:
    """Crop (left, top, right, bottom) exclusive box and return an (h, w, 3) array."""
    return np.asarray(to_rgb(img).crop(box), dtype=np.int16)


def blurred_crop_rgb(img: Image.Image, box: Tuple[int, int, int, int], radius: float) -> np.ndarray:
    """Crop the box first, then Gaussian-blur the crop."""
    region = to_rgb(img).crop(box).filter(ImageFilter.GaussianBlur(radius=radius))
    return np.asarray(region, dtype=np.int16)


def dilate(mask: np.ndarray, radius: int) -> np.ndarray:
    """Grow a boolean mask by a square neighbourhood of `radius` pixels."""
    if radius <= 0:
        return mask.copy()
    img = Image.fromarray(np.where(mask, 255, 0).astype(np.uint8))
    grown = img.filter(ImageFilter.MaxFilter(size=2 * radius + 1))
    return np.asarray(grown) > 0


def alpha_mask_to_png(alpha: np.ndarray) -> bytes:
    """
    Encode an (H, W) alpha raster as an RGBA PNG mask.

    RGB channels are black; alpha=0 marks editable pixels, 255 protected ones.
    """
    height, width = alpha.shape
    rgba = np.zeros((height, width, 4), dtype=np.uint8)
    rgba[:, :, 3] = alpha
    img = Image.fromarray(rgba)
    buf = BytesIO()
    img.save(buf, format="PNG", compress_level=9)
    return buf.getvalue()


def png_alpha(data: bytes) -> np.ndarray:
    """Read back the alpha channel of a PNG mask as an (H, W) array."""
    img = Image.open(BytesIO(data)).convert("RGBA")
    return np.asarray(img)[:, :, 3].copy()


def enhance_subject_image(data: bytes, min_dimension: int = 1024) -> bytes:
    """
    Upscale small subject uploads so the short side reaches `min_dimension`.

    Images already large enough are returned untouched to avoid re-encoding.
    Undecodable input is returned as-is; the edit API reports it if it matters.
    """
    try:
        img = open_image(data)
    except InvalidGeometry:
        logger.warning("subject image could not be decoded; uploading original bytes")
        return data
    w, h = img.size
    if not w or not h:
        return data
    short_side = min(w, h)
    if short_side >= min_dimension:
        return data
    scale = min_dimension / short_side
    new_size = (max(1, round(w * scale)), max(1, round(h * scale)))
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA" if "transparency" in img.info else "RGB")
    return encode_png(img.resize(new_size, Image.Resampling.LANCZOS))
