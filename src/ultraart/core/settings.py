"""批量默认设置与单条目设置的合并。"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ultraart.core.config import UpscaleSettings
from ultraart.core.models import ItemStatus
from ultraart.core.store import ItemStore

LOGGER = logging.getLogger(__name__)


class SettingsResolver:
    """维护批量默认设置，并在更新时一次性同步到空闲条目。

    默认值与条目设置之间没有持续绑定：合并只在调用时对当时处于
    IDLE 的条目执行一次。
    """

    def __init__(self, store: ItemStore, defaults: Optional[UpscaleSettings] = None) -> None:
        self._store = store
        self._defaults = defaults or UpscaleSettings()

    def snapshot(self) -> UpscaleSettings:
        """新提交条目使用的默认设置。"""

        return self._defaults

    def apply_batch_settings(self, **partial: Any) -> None:
        """更新默认设置，并把同一部分更新应用到所有 IDLE 条目。"""

        self._defaults = self._defaults.merged(partial)
        touched = 0
        for item in self._store.items():
            if item.status is not ItemStatus.IDLE:
                continue
            self._store.update(item.item_id, settings=item.settings.merged(partial))
            touched += 1
        LOGGER.debug("批量设置已更新 %s，同步 %d 个空闲条目", partial, touched)

    def apply_item_settings(self, item_id: str, **partial: Any) -> None:
        """更新单个 IDLE 条目的设置；非 IDLE 条目忽略并记录警告。"""

        item = self._store.require(item_id)
        if item.status is not ItemStatus.IDLE:
            LOGGER.warning("条目 %s 当前状态为 %s，忽略设置修改", item_id, item.status.value)
            return
        self._store.update(item_id, settings=item.settings.merged(partial))
