"""Source metadata carried from the HEIC input into the JPEG output."""

from __future__ import annotations

import struct
from dataclasses import dataclass

from PIL import Image

ORIENTATION_TAG = 0x0112

# Transpose that reverts the transform a decoder applied for each EXIF orientation.
_UNDO_TRANSPOSE: dict[int, Image.Transpose] = {
    2: Image.Transpose.FLIP_LEFT_RIGHT,
    3: Image.Transpose.ROTATE_180,
    4: Image.Transpose.FLIP_TOP_BOTTOM,
    5: Image.Transpose.TRANSPOSE,
    6: Image.Transpose.ROTATE_90,
    7: Image.Transpose.TRANSVERSE,
    8: Image.Transpose.ROTATE_270,
}


@dataclass(slots=True)
class ImageMetadata:
    orientation: int = 1
    exif: bytes | None = None
    icc_profile: bytes | None = None
    transform_applied: bool = False


def _coerce_orientation(value: object) -> int:
    try:
        orientation = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 1
    return orientation if 1 <= orientation <= 8 else 1


def read_metadata(image: Image.Image) -> ImageMetadata:
    """Collect EXIF, orientation and ICC profile from an opened image.

    pillow-heif rotates pixels while decoding, resets the EXIF orientation
    to 1 and keeps the declared value in ``info["original_orientation"]``.
    The returned EXIF block always carries the declared orientation.
    """

    exif = Image.Exif()
    raw_exif = image.info.get("exif")
    if raw_exif:
        try:
            exif.load(raw_exif)
        except (SyntaxError, ValueError, struct.error):
            # Unreadable EXIF is dropped; the orientation is still written below.
            exif = Image.Exif()

    if "original_orientation" in image.info:
        orientation = _coerce_orientation(image.info["original_orientation"] or 1)
        applied = orientation != 1
    else:
        orientation = _coerce_orientation(exif.get(ORIENTATION_TAG, 1))
        applied = False

    if orientation != 1 or ORIENTATION_TAG in exif:
        exif[ORIENTATION_TAG] = orientation

    return ImageMetadata(
        orientation=orientation,
        exif=exif.tobytes() if len(exif) else None,
        icc_profile=image.info.get("icc_profile") or None,
        transform_applied=applied,
    )


def undo_applied_orientation(image: Image.Image, metadata: ImageMetadata) -> Image.Image:
    if not metadata.transform_applied:
        return image
    return image.transpose(_UNDO_TRANSPOSE[metadata.orientation])


__all__ = [
    "ImageMetadata",
    "ORIENTATION_TAG",
    "read_metadata",
    "undo_applied_orientation",
]
