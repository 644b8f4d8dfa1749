"""图片解码与尺寸探测。"""

from __future__ import annotations

import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

from ultraart.core.exceptions import DecodeError

LOGGER = logging.getLogger(__name__)

ALPHA_MODES = {"RGBA", "LA", "PA", "RGBa", "La"}


def decode_image(data: bytes) -> Image.Image:
    """解码图片字节并执行 EXIF 旋转与模式归一化。

    带透明信息的图片统一为 RGBA，其余统一为 RGB。
    返回值为新的 Image 对象，调用者负责关闭。
    """

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()

            # EXIF Orientation 校正
            img = ImageOps.exif_transpose(img)
            normalized = _normalize_mode(img)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        LOGGER.debug("无法识别图像数据: %s", exc)
        raise DecodeError("无法解码图像数据") from exc

    if normalized.width == 0 or normalized.height == 0:
        normalized.close()
        raise DecodeError("图像尺寸为零")
    return normalized


def probe_dimensions(data: bytes) -> tuple[int, int]:
    """只读取文件头获取宽高（考虑 EXIF 旋转）。"""

    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            orientation = img.getexif().get(0x0112, 1)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError("无法读取图像尺寸") from exc

    if width == 0 or height == 0:
        raise DecodeError("图像尺寸为零")
    # 5~8 为包含 90 度旋转的方向值
    if orientation in (5, 6, 7, 8):
        return height, width
    return width, height


def _normalize_mode(img: Image.Image) -> Image.Image:
    if img.mode == "RGBA":
        return img
    if img.mode in ALPHA_MODES or "transparency" in img.info:
        return img.convert("RGBA")
    if img.mode == "RGB":
        return img
    # P、L、CMYK、I 等模式直接转换
    return img.convert("RGB")
