"""
延遲 Action 的 FIFO 佇列。

Store 正在分發時到達的 dispatch 會被包裝成無參數的工作單元放入此佇列，
由 flush 依序取出執行。
"""
import threading
from collections import deque
from typing import Callable, Deque, Optional

Unit = Callable[..., None]


class ActionQueue:
    """
    執行緒安全的嚴格 FIFO 佇列。

    不設容量上限、不支援優先級、不去重，也不能取消已入列的工作單元。
    """

    def __init__(self) -> None:
        self._units: Deque[Unit] = deque()
        self._lock = threading.Lock()

    def enqueue(self, unit: Unit) -> None:
        """
        將工作單元加入佇列尾端。

        Args:
            unit: 延遲執行的工作單元
        """
        with self._lock:
            self._units.append(unit)

    def dequeue(self) -> Optional[Unit]:
        """
        取出佇列頭部的工作單元。

        Returns:
            工作單元；佇列為空時返回 None
        """
        with self._lock:
            if not self._units:
                return None
            return self._units.popleft()

    def clear(self) -> int:
        """清空佇列，返回被丟棄的單元數量。"""
        with self._lock:
            count = len(self._units)
            self._units.clear()
            return count

    @property
    def is_empty(self) -> bool:
        with self._lock:
            return not self._units

    def __len__(self) -> int:
        with self._lock:
            return len(self._units)

    def __repr__(self) -> str:
        return f"ActionQueue(pending={len(self)})"
