"""输出写入与冲突处理模块。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import count
from pathlib import Path
from typing import Optional

from ultraart.core.config import CONFLICT_STRATEGIES, OutputConfig
from ultraart.core.exceptions import ImageWriteError, InvalidConfigurationError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class DestinationDecision:
    """封装输出文件决策。"""

    destination: Optional[Path]
    action: str
    note: Optional[str] = None


class OutputManager:
    """负责处理输出目录、冲突策略与结果写入。"""

    def __init__(self, config: OutputConfig) -> None:
        if config.conflict_strategy not in CONFLICT_STRATEGIES:
            raise InvalidConfigurationError(f"未知的冲突策略: {config.conflict_strategy}")
        self.config = config
        self.output_dir = config.output_dir.resolve()
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._reserved: set[Path] = set()

    def decide_destination(self, filename: str) -> DestinationDecision:
        """根据冲突策略确定输出路径。同一次运行中已分配的路径视为已存在。"""

        destination = self.output_dir / filename

        if not self._is_taken(destination):
            self._reserved.add(destination)
            return DestinationDecision(destination=destination, action="write")

        strategy = self.config.conflict_strategy
        existing_msg = f"目标已存在: {destination.name}"

        if strategy == "overwrite":
            self._reserved.add(destination)
            return DestinationDecision(destination=destination, action="overwrite", note=existing_msg)
        if strategy == "skip":
            return DestinationDecision(destination=destination, action="skip", note=existing_msg)

        new_destination = self._generate_renamed_path(destination)
        self._reserved.add(new_destination)
        return DestinationDecision(
            destination=new_destination,
            action="rename",
            note=f"{existing_msg} -> 重命名为 {new_destination.name}",
        )

    def write_bytes(self, payload: bytes, destination: Path) -> None:
        """将编码后的结果写入磁盘。"""

        try:
            destination.write_bytes(payload)
        except OSError as exc:
            raise ImageWriteError(f"写入文件失败: {destination}") from exc
        LOGGER.debug("已写入 %s (%d 字节)", destination, len(payload))

    def _is_taken(self, destination: Path) -> bool:
        return destination in self._reserved or destination.exists()

    def _generate_renamed_path(self, destination: Path) -> Path:
        """在 rename 策略下生成新的文件名。"""

        stem = destination.stem
        suffix = destination.suffix

        for idx in count(1):
            candidate = destination.with_name(f"{stem}_{idx}{suffix}")
            if not self._is_taken(candidate):
                return candidate

        # 理论上不会执行到此处
        return destination
