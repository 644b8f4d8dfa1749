"""外部图片分析服务的窄接口。

服务只需实现 ``describe(image_bytes) -> str``，返回任意文本。
"""

from __future__ import annotations

import logging
from typing import Protocol

from ultraart.core.exceptions import AnalysisServiceError

LOGGER = logging.getLogger(__name__)

NO_ANALYSIS_MESSAGE = "暂无分析结果"


class AnalysisService(Protocol):
    def describe(self, image_bytes: bytes) -> str:
        ...


def request_analysis(service: AnalysisService, image_bytes: bytes, limit: int) -> str:
    """调用分析服务并截取前 ``limit`` 个字符。

    服务抛出的任何异常都包装为 AnalysisServiceError。
    """

    try:
        text = service.describe(image_bytes)
    except AnalysisServiceError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise AnalysisServiceError(f"分析服务调用失败: {exc}") from exc

    if not isinstance(text, str):
        raise AnalysisServiceError(f"分析服务返回了非文本结果: {type(text).__name__}")
    return text.strip()[:limit]
