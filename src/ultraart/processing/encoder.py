"""结果编码。"""

from __future__ import annotations

import io
import logging

from PIL import Image

from ultraart.core.exceptions import ImageWriteError

LOGGER = logging.getLogger(__name__)

OUTPUT_FORMAT = "PNG"


def encode_image(image: Image.Image) -> bytes:
    """将结果编码为无损 PNG 字节，保留 alpha 通道。"""

    image_to_save = image
    if image.mode not in {"RGB", "RGBA"}:
        image_to_save = image.convert("RGBA" if "A" in image.getbands() else "RGB")

    buffer = io.BytesIO()
    try:
        image_to_save.save(buffer, format=OUTPUT_FORMAT, compress_level=6)
    except (OSError, ValueError) as exc:
        raise ImageWriteError("编码 PNG 失败") from exc
    LOGGER.debug("编码完成 %sx%s %s，%d 字节", image.width, image.height, image_to_save.mode, buffer.tell())
    return buffer.getvalue()
