"""
Action 主體的完成延續 (continuation)。

每個被執行的 Action 都會收到一個 Completion。主體無論走哪條路徑
（成功、提前返回、非同步回調），都必須恰好呼叫它一次。
"""
import threading
from typing import Callable, Optional

from .errors import CompletionError


class Completion:
    """
    只能被呼叫一次的完成回調。

    第二次呼叫（或 fail 之後再呼叫）會拋出 CompletionError，
    讓「恰好一次」成為可檢查的性質。
    """

    __slots__ = ("_callback", "_on_error", "_lock", "_done", "action_type")

    def __init__(self, callback: Optional[Callable[[], None]] = None,
                 action_type: str = "<unknown>",
                 on_error: Optional[Callable[[BaseException], None]] = None) -> None:
        self._callback = callback
        self._on_error = on_error
        self._lock = threading.Lock()
        self._done = False
        self.action_type = action_type

    @property
    def done(self) -> bool:
        """主體是否已經發出完成訊號。"""
        return self._done

    def _claim(self) -> None:
        with self._lock:
            if self._done:
                raise CompletionError(
                    "completion invoked more than once", action_type=self.action_type
                )
            self._done = True

    def __call__(self) -> None:
        self._claim()
        callback = self._callback
        self._callback = self._on_error = None
        if callback is not None:
            callback()

    def fail(self, error: BaseException) -> None:
        """
        以失敗結束主體。

        有 on_error 時交給它處理，否則與正常完成相同。

        Args:
            error: 主體拋出的異常
        """
        self._claim()
        callback, on_error = self._callback, self._on_error
        self._callback = self._on_error = None
        if on_error is not None:
            on_error(error)
        elif callback is not None:
            callback()

    def __repr__(self) -> str:
        state = "done" if self._done else "pending"
        return f"Completion(action_type={self.action_type!r}, {state})"
