"""测试公共夹具。"""

from __future__ import annotations

import io
from typing import Callable, Optional

import pytest
from PIL import Image

from ultraart.core.config import UpscaleSettings
from ultraart.core.models import Item, ItemStatus, ProcessedOutput, Submission


def _encode(image: Image.Image, fmt: str = "PNG", **params) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **params)
    return buffer.getvalue()


@pytest.fixture()
def png_bytes() -> Callable[..., bytes]:
    """生成左半不透明、右半完全透明的 PNG。"""

    def factory(
        size: tuple[int, int] = (8, 6),
        color: tuple[int, int, int] = (200, 30, 30),
        hidden: tuple[int, int, int] = (0, 255, 0),
        transparent: bool = True,
    ) -> bytes:
        width, height = size
        image = Image.new("RGBA", size, (*color, 255))
        if transparent:
            for x in range(width // 2, width):
                for y in range(height):
                    image.putpixel((x, y), (*hidden, 0))
        return _encode(image)

    return factory


@pytest.fixture()
def encode_image_bytes() -> Callable[..., bytes]:
    return _encode


@pytest.fixture()
def make_submission(png_bytes) -> Callable[..., Submission]:
    def factory(name: str = "art.png", data: Optional[bytes] = None, mime_type: str = "image/png") -> Submission:
        return Submission(name=name, data=data if data is not None else png_bytes(), mime_type=mime_type)

    return factory


@pytest.fixture()
def make_item() -> Callable[..., Item]:
    """直接构造指定状态的条目。"""

    def factory(
        item_id: str,
        status: ItemStatus = ItemStatus.IDLE,
        settings: Optional[UpscaleSettings] = None,
        name: Optional[str] = None,
        output: Optional[ProcessedOutput] = None,
    ) -> Item:
        if status is ItemStatus.COMPLETED and output is None:
            output = ProcessedOutput(width=2, height=2, dpi=300, data=b"result")
        return Item(
            item_id=item_id,
            original_name=name or f"{item_id}.png",
            mime_type="image/png",
            source=b"",
            settings=settings or UpscaleSettings(),
            status=status,
            output=output,
        )

    return factory
