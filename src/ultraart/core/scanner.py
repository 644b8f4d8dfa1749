"""文件扫描与筛选逻辑。"""

from __future__ import annotations

import mimetypes
from fnmatch import fnmatch
from pathlib import Path
from typing import Iterator, Sequence

from ultraart.core.config import JobConfig
from ultraart.core.models import Submission

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}

# 部分平台的 mimetypes 表缺少 webp
_MIME_BY_SUFFIX = {".webp": "image/webp"}


def _iter_candidate_files(path: Path, recursive: bool) -> Iterator[Path]:
    """遍历路径下的所有文件。"""

    if path.is_file():
        yield path
        return

    if not path.is_dir():
        return

    iterator = path.rglob("*") if recursive else path.glob("*")
    for candidate in iterator:
        if candidate.is_file():
            yield candidate


def _matches_any(name: str, patterns: Sequence[str]) -> bool:
    lowered = name.lower()
    return any(fnmatch(lowered, pattern.lower()) for pattern in patterns)


def guess_mime_type(path: Path) -> str:
    """根据扩展名推断 MIME 类型，未知时返回 application/octet-stream。"""

    suffix = path.suffix.lower()
    if suffix in _MIME_BY_SUFFIX:
        return _MIME_BY_SUFFIX[suffix]
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or "application/octet-stream"


def collect_source_files(config: JobConfig) -> list[Path]:
    """根据配置扫描源文件夹，返回匹配的图片路径（按路径排序）。"""

    collected: list[Path] = []
    seen_paths: set[Path] = set()

    include_patterns = config.include_patterns or ("*.png", "*.jpg", "*.jpeg", "*.webp")
    exclude_patterns = config.exclude_patterns or ()

    for root in config.sources:
        resolved_root = root.resolve()
        for candidate in _iter_candidate_files(resolved_root, config.allow_recursive):
            if candidate in seen_paths:
                continue
            seen_paths.add(candidate)

            name = candidate.name
            if not _matches_any(name, include_patterns):
                continue
            if exclude_patterns and _matches_any(name, exclude_patterns):
                continue

            if candidate.suffix.lower() not in IMAGE_EXTENSIONS:
                continue

            collected.append(candidate)

    collected.sort(key=lambda x: str(x).lower())
    return collected


def load_submissions(paths: Sequence[Path]) -> list[Submission]:
    """读取文件内容，构造提交条目。"""

    return [Submission(name=path.name, data=path.read_bytes(), mime_type=guess_mime_type(path)) for path in paths]
