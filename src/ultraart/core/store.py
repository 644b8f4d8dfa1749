"""批次条目的有序集合。

集合只在事件循环线程中修改；每次更新都是按标识整体替换条目，
读者在两个挂起点之间看到的状态/输出始终成对一致。
"""

from __future__ import annotations

import logging
from dataclasses import replace
from itertools import count
from typing import Any, Iterable, Iterator, Optional

from ultraart.core.exceptions import ItemBusyError
from ultraart.core.models import Item, ItemStatus

LOGGER = logging.getLogger(__name__)


class ItemStore:
    """按提交顺序保存条目，负责标识分配与资源释放。"""

    def __init__(self) -> None:
        self._items: dict[str, Item] = {}
        self._counter = count(1)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Item]:
        return iter(list(self._items.values()))

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def next_id(self) -> str:
        """生成批次内唯一的条目标识。"""

        return f"item-{next(self._counter):04d}"

    def items(self) -> list[Item]:
        """返回当前条目的快照列表（提交顺序）。"""

        return list(self._items.values())

    def get(self, item_id: str) -> Optional[Item]:
        return self._items.get(item_id)

    def require(self, item_id: str) -> Item:
        item = self._items.get(item_id)
        if item is None:
            raise KeyError(item_id)
        return item

    def extend(self, items: Iterable[Item]) -> None:
        for item in items:
            if item.item_id in self._items:
                raise ValueError(f"重复的条目标识: {item.item_id}")
            self._items[item.item_id] = item

    def replace(self, item: Item) -> Item:
        """整体替换同标识的条目；旧输出不再被引用时释放。"""

        previous = self.require(item.item_id)
        self._items[item.item_id] = item
        if previous.output is not None and previous.output is not item.output:
            previous.output.release()
        return item

    def update(self, item_id: str, **changes: Any) -> Optional[Item]:
        """按标识查找并合并字段；条目已被移除时静默忽略并返回 None。"""

        current = self._items.get(item_id)
        if current is None:
            LOGGER.debug("条目 %s 已不存在，忽略更新: %s", item_id, sorted(changes))
            return None
        return self.replace(replace(current, **changes))

    def remove(self, item_id: str) -> Item:
        """移除条目并释放其独占资源。处理中的条目不可移除。"""

        item = self.require(item_id)
        if item.status is ItemStatus.PROCESSING:
            raise ItemBusyError(f"条目正在处理，无法移除: {item.original_name}")
        del self._items[item_id]
        if item.output is not None:
            item.output.release()
        LOGGER.info("已移除条目 %s (%s)", item_id, item.original_name)
        return item

    def clear(self) -> None:
        """移除全部条目。存在处理中条目时整体拒绝。"""

        busy = [item.original_name for item in self._items.values() if item.status is ItemStatus.PROCESSING]
        if busy:
            raise ItemBusyError(f"存在处理中的条目，无法清空: {', '.join(busy)}")
        for item_id in list(self._items):
            self.remove(item_id)
