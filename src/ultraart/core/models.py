"""核心数据模型定义。"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from ultraart.core.config import UpscaleSettings

LOGGER = logging.getLogger(__name__)


class ItemStatus(str, Enum):
    """条目生命周期状态。"""

    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(slots=True, eq=False)
class ProcessedOutput:
    """处理结果。数据保存在内存中，或落盘后只保留文件路径。

    由所属条目独占，条目移除或被替换时调用 ``release`` 释放。
    """

    width: int
    height: int
    dpi: int
    data: Optional[bytes] = None
    path: Optional[Path] = None
    released: bool = False

    def read_bytes(self) -> bytes:
        """读取编码后的结果字节。"""

        # release() 可能在另一线程中同时执行，只读取一次 data
        data = self.data
        if self.released:
            raise OSError("输出已释放")
        if data is not None:
            return data
        if self.path is not None:
            return self.path.read_bytes()
        raise OSError("输出没有可读取的数据")

    def release(self) -> None:
        """释放内存数据并删除落盘文件，可重复调用。"""

        if self.released:
            return
        self.released = True
        self.data = None
        if self.path is not None:
            try:
                self.path.unlink(missing_ok=True)
            except OSError as exc:
                LOGGER.warning("删除临时输出失败 %s: %s", self.path, exc)


@dataclass(slots=True, frozen=True)
class Item:
    """批次中的一张图片。

    不可变对象，所有更新都通过 ``dataclasses.replace`` 生成新实例后整体替换。
    """

    item_id: str
    original_name: str
    mime_type: str
    source: bytes = field(repr=False)
    settings: UpscaleSettings
    width: int = 0
    height: int = 0
    status: ItemStatus = ItemStatus.IDLE
    output: Optional[ProcessedOutput] = None
    analysis: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.output is not None) != (self.status is ItemStatus.COMPLETED):
            raise ValueError(f"条目 {self.item_id} 的输出与状态不一致: {self.status.value}")

    @property
    def stem(self) -> str:
        return Path(self.original_name).stem

    @property
    def has_dimensions(self) -> bool:
        return self.width > 0 and self.height > 0


@dataclass(slots=True)
class Submission:
    """一次提交中的单个文件。"""

    name: str
    data: bytes = field(repr=False)
    mime_type: str


@dataclass(slots=True)
class BatchSummary:
    """批处理结束后按条目状态重新统计的结果。"""

    processed: list[str]
    completed: list[str]
    failed: list[str]
    stopped: bool = False

    @property
    def total(self) -> int:
        return len(self.processed)
