from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .constraint import DEFAULT_EXTENSIONS

HEIF_BRANDS = frozenset(
    {
        b"heic",
        b"heix",
        b"heim",
        b"heis",
        b"hevc",
        b"hevx",
        b"hevm",
        b"hevs",
        b"mif1",
        b"msf1",
    }
)

MIME_MAP: dict[bytes, str] = {
    b"heic": "image/heic",
    b"heix": "image/heic",
    b"heim": "image/heic",
    b"heis": "image/heic",
    b"hevc": "image/heic-sequence",
    b"hevx": "image/heic-sequence",
    b"hevm": "image/heic-sequence",
    b"hevs": "image/heic-sequence",
    b"mif1": "image/heif",
    b"msf1": "image/heif-sequence",
}


@dataclass(slots=True)
class DetectionResult:
    brand: str
    mime_type: str
    extension: str


class DetectionError(RuntimeError):
    """Raised when a file is not a HEIC/HEIF container."""


def sniff_brand(path: Path) -> bytes | None:
    with path.open("rb") as handle:
        header = handle.read(12)
    if len(header) < 12 or header[4:8] != b"ftyp":
        return None
    return header[8:12]


def detect_heic(path: Path, extensions: Iterable[str] = DEFAULT_EXTENSIONS) -> DetectionResult:
    extension = path.suffix.lower()
    if extension not in {suffix.lower() for suffix in extensions}:
        raise DetectionError(f"Unsupported file extension: {extension or '<none>'}")
    brand = sniff_brand(path)
    if brand is None:
        raise DetectionError("Missing ISO-BMFF ftyp box")
    if brand not in HEIF_BRANDS:
        raise DetectionError(f"Unsupported major brand: {brand.decode('ascii', 'replace')}")
    return DetectionResult(
        brand=brand.decode("ascii"),
        mime_type=MIME_MAP[brand],
        extension=extension,
    )
