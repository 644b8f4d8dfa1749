"""处理任务的配置模型。"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from ultraart.core.exceptions import InvalidConfigurationError

UPSCALE_FACTORS = (1, 2, 4, 8)
DPI_OPTIONS = (72, 150, 300, 600)
CONFLICT_STRATEGIES = ("overwrite", "skip", "rename")


@dataclass(slots=True, frozen=True)
class UpscaleSettings:
    """单张图片的放大设置。

    实例不可变：批量默认值与条目设置的每次修改都会生成新对象，
    处理开始时取到的对象即为本次运行冻结的快照。
    """

    upscale_factor: int = 4
    target_dpi: int = 300
    preserve_style: bool = True
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.upscale_factor not in UPSCALE_FACTORS:
            raise InvalidConfigurationError(f"不支持的放大倍数: {self.upscale_factor}")
        if self.target_dpi not in DPI_OPTIONS:
            raise InvalidConfigurationError(f"不支持的 DPI: {self.target_dpi}")

    def merged(self, partial: Mapping[str, Any]) -> "UpscaleSettings":
        """返回合并部分更新后的新设置。"""

        known = {f.name for f in fields(self)}
        unknown = set(partial) - known
        if unknown:
            raise InvalidConfigurationError(f"未知的设置项: {', '.join(sorted(unknown))}")
        return replace(self, **partial)


@dataclass(slots=True)
class BatchConfig:
    """批次级别的限制与命名约定。"""

    max_items: int = 20
    output_suffix: str = "_UPSCALED"
    output_extension: str = ".png"
    bundle_prefix: str = "UltraArt_Batch"
    analysis_preview_chars: int = 200
    spill_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.max_items <= 0:
            raise InvalidConfigurationError("max_items 必须大于 0")
        if not self.output_extension.startswith("."):
            raise InvalidConfigurationError(f"输出扩展名必须以 . 开头: {self.output_extension}")


@dataclass(slots=True)
class OutputConfig:
    """输出目录与冲突策略配置。"""

    output_dir: Path
    conflict_strategy: str = "rename"  # overwrite | skip | rename


@dataclass(slots=True)
class JobConfig:
    """命令行单次批处理任务的配置集合。"""

    sources: Sequence[Path]
    output: OutputConfig
    settings: UpscaleSettings = field(default_factory=UpscaleSettings)
    batch: BatchConfig = field(default_factory=BatchConfig)
    allow_recursive: bool = True
    include_patterns: Sequence[str] = field(default_factory=lambda: ("*.png", "*.jpg", "*.jpeg", "*.webp"))
    exclude_patterns: Sequence[str] = field(default_factory=tuple)
    write_bundle: bool = False
    validate_outputs: bool = False
    report_filename: str = "report.csv"
