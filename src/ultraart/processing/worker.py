"""单张图片的完整处理流程：解码、放大、编码、写入 DPI。"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image

from ultraart.core.config import UpscaleSettings
from ultraart.core.models import ProcessedOutput
from ultraart.processing.density import embed_density
from ultraart.processing.encoder import encode_image
from ultraart.processing.image_loader import decode_image
from ultraart.processing.resampler import upscale_image

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class UpscaleTask:
    """描述单个放大任务，settings 为本次运行冻结的快照。"""

    item_id: str
    source: bytes
    settings: UpscaleSettings
    spill_dir: Optional[Path] = None


def run_upscale(task: UpscaleTask) -> ProcessedOutput:
    """在工作线程中执行，异常直接向上抛出由编排层处理。"""

    image: Optional[Image.Image] = None
    upscaled: Optional[Image.Image] = None
    try:
        image = decode_image(task.source)
        upscaled = upscale_image(image, task.settings.upscale_factor, task.settings.preserve_style)
        encoded = encode_image(upscaled)
        width, height = upscaled.size
    finally:
        _close_if_needed(image, upscaled)

    payload = embed_density(encoded, task.settings.target_dpi)
    LOGGER.info(
        "条目 %s 放大完成：%dx%d @ %d DPI (%d 字节)",
        task.item_id,
        width,
        height,
        task.settings.target_dpi,
        len(payload),
    )

    if task.spill_dir is None:
        return ProcessedOutput(width=width, height=height, dpi=task.settings.target_dpi, data=payload)
    return ProcessedOutput(
        width=width,
        height=height,
        dpi=task.settings.target_dpi,
        path=_spill(payload, task.spill_dir, task.item_id),
    )


def _spill(payload: bytes, spill_dir: Path, item_id: str) -> Path:
    """把结果写入临时文件，条目只持有路径。"""

    spill_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        dir=spill_dir, prefix=f"{item_id}-", suffix=".png", delete=False
    ) as handle:
        handle.write(payload)
    return Path(handle.name)


def _close_if_needed(*images: Optional[Image.Image]) -> None:
    for img in images:
        if img is not None:
            img.close()
