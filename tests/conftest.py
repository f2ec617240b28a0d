from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest
from PIL import Image
from pillow_heif import register_heif_opener

register_heif_opener()

HeicFactory = Callable[..., Path]


@pytest.fixture
def make_heic() -> HeicFactory:
    def _make(path: Path, size: tuple[int, int] = (32, 16), color: tuple[int, int, int] = (200, 40, 90)) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new("RGB", size, color).save(path, format="HEIF", quality=90)
        return path

    return _make
