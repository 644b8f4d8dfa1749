"""整数倍放大与透明通道保护。

颜色先按 alpha 预乘，预乘颜色与 alpha 作为独立的浮点平面分别重采样，
再做反预乘。完全透明像素下的颜色因此不会渗入新插值出的像素。
最后用源 alpha>0 的最近邻掩码约束输出 alpha：源图完全透明的像素
放大后对应的整块区域 alpha 必为 0。
"""

from __future__ import annotations

import logging

import numpy as np
from PIL import Image

from ultraart.core.config import UPSCALE_FACTORS
from ultraart.core.exceptions import DecodeError, InvalidConfigurationError

LOGGER = logging.getLogger(__name__)

# 保留风格：最近邻，无模糊、无振铃，适合扁平色插画与线稿。
SHARP_KERNEL = Image.Resampling.NEAREST
# 照片类内容：Lanczos 平滑插值，振铃产生的越界值在后面裁剪。
SMOOTH_KERNEL = Image.Resampling.LANCZOS

_EPSILON = 1e-6


def select_kernel(preserve_style: bool) -> Image.Resampling:
    """根据风格保留开关选择插值核。"""

    return SHARP_KERNEL if preserve_style else SMOOTH_KERNEL


def upscale_image(image: Image.Image, factor: int, preserve_style: bool) -> Image.Image:
    """将图片宽高各放大 ``factor`` 倍，返回新的 Image。

    factor 为 1 时直接返回副本，不做任何重采样。
    """

    if factor not in UPSCALE_FACTORS:
        raise InvalidConfigurationError(f"不支持的放大倍数: {factor}")

    width, height = image.size
    if width == 0 or height == 0:
        raise DecodeError("图像尺寸为零")

    if factor == 1:
        return image.copy()

    target_size = (width * factor, height * factor)
    kernel = select_kernel(preserve_style)
    LOGGER.debug("放大 %sx%s -> %sx%s，插值核 %s", width, height, *target_size, kernel.name)

    if image.mode == "RGBA":
        return _upscale_rgba(image, target_size, factor, kernel)

    rgb = image if image.mode == "RGB" else image.convert("RGB")
    return rgb.resize(target_size, kernel)


def _upscale_rgba(
    image: Image.Image,
    target_size: tuple[int, int],
    factor: int,
    kernel: Image.Resampling,
) -> Image.Image:
    rgba = np.asarray(image, dtype=np.float32) / 255.0
    alpha = rgba[..., 3]

    if alpha.min() >= 1.0:
        # 完全不透明，alpha 保持 255，只需放大颜色
        rgb = image.convert("RGB").resize(target_size, kernel)
        rgb.putalpha(255)
        return rgb

    premultiplied = rgba[..., :3] * alpha[..., None]

    alpha_up = np.clip(_resize_plane(alpha, target_size, kernel), 0.0, 1.0)
    color_up = np.stack(
        [_resize_plane(premultiplied[..., channel], target_size, kernel) for channel in range(3)],
        axis=-1,
    )

    coverage = np.repeat(np.repeat(alpha > 0.0, factor, axis=0), factor, axis=1)
    alpha_up = np.where(coverage, alpha_up, 0.0)

    safe_alpha = np.where(alpha_up > _EPSILON, alpha_up, 1.0)
    color = np.clip(color_up / safe_alpha[..., None], 0.0, 1.0)
    color = np.where(alpha_up[..., None] > _EPSILON, color, 0.0)

    out = np.empty((target_size[1], target_size[0], 4), dtype=np.uint8)
    out[..., :3] = np.rint(color * 255.0).astype(np.uint8)
    out[..., 3] = np.rint(alpha_up * 255.0).astype(np.uint8)
    return Image.fromarray(out)


def _resize_plane(plane: np.ndarray, target_size: tuple[int, int], kernel: Image.Resampling) -> np.ndarray:
    """以 32 位浮点模式重采样单个通道。"""

    resized = Image.fromarray(np.ascontiguousarray(plane, dtype=np.float32)).resize(target_size, kernel)
    return np.asarray(resized, dtype=np.float32)
