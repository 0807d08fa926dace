"""
執行佇列親和性檢查。

在第一次被詢問時為佇列貼上唯一標記，之後只比較「目前所在佇列的標記」
與「目標佇列的標記」，不需要任何阻塞或鎖。
"""
import uuid
from typing import Any

from .dispatch_queue import current_specific

# 存放佇列標記所用的 specific key
QUEUE_IDENTIFIER_KEY = "reactivestore.queue_identifier"


class QueueAffinityGuard:
    """
    判斷呼叫端是否已經在指定的執行佇列上。

    Args:
        key: 佇列標記使用的 specific key
    """

    def __init__(self, key: Any = QUEUE_IDENTIFIER_KEY):
        self.key = key

    def marker_for(self, queue: Any) -> uuid.UUID:
        """取得（必要時建立）佇列的標記，同一個佇列永遠返回同一個標記。"""
        marker = queue.get_specific(self.key)
        if marker is None:
            marker = queue.setdefault_specific(self.key, uuid.uuid4())
        return marker

    def is_current(self, queue: Any) -> bool:
        return current_specific(self.key) == self.marker_for(queue)


default_guard = QueueAffinityGuard()


def is_running_on(queue: Any) -> bool:
    """
    判斷目前的程式碼是否正在 queue 上執行。

    Args:
        queue: 目標 DispatchQueue

    Returns:
        已在該佇列上時為 True
    """
    return default_guard.is_current(queue)
