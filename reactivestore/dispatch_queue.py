"""
基於 reactivex 排程器的執行佇列。

DispatchQueue 是 Store 可指定的執行上下文：預設以 EventLoopScheduler
在單一專屬執行緒上依序執行工作；也可以改用 ThreadPoolScheduler 並行執行，
此時以 barrier 模式提交的工作仍會與同佇列的其他工作互斥。
"""
import contextvars
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional, Set

from reactivex.abc import SchedulerBase
from reactivex.scheduler import EventLoopScheduler, ThreadPoolScheduler

from .errors import StoreError, global_error_handler
from .log import get_logger
from .types import T, WorkItem

logger = get_logger("dispatch_queue")

# 目前正在執行工作的 DispatchQueue
_current_queue: "contextvars.ContextVar[Optional[DispatchQueue]]" = contextvars.ContextVar(
    "reactivestore_current_queue", default=None
)


class _BarrierGate:
    """
    依提交順序實作 barrier 語意。

    一般工作只需等待比它早提交的 barrier 完成；
    barrier 工作需等待所有比它早提交的工作完成。
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._next_seq = 0
        self._unfinished: Set[int] = set()
        self._barriers: Set[int] = set()

    def ticket(self, barrier: bool) -> int:
        with self._cond:
            seq = self._next_seq
            self._next_seq += 1
            self._unfinished.add(seq)
            if barrier:
                self._barriers.add(seq)
            return seq

    def _can_start(self, seq: int) -> bool:
        if seq in self._barriers:
            return min(self._unfinished) == seq
        return not self._barriers or min(self._barriers) > seq

    def enter(self, seq: int) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._can_start(seq))

    def leave(self, seq: int) -> None:
        with self._cond:
            self._unfinished.discard(seq)
            self._barriers.discard(seq)
            self._cond.notify_all()


class DispatchQueue:
    """
    帶標籤的執行佇列。

    屬性:
        label: 佇列名稱，用於日誌
        concurrent: 是否允許非 barrier 工作並行執行
    """

    def __init__(self, label: str, scheduler: Optional[SchedulerBase] = None,
                 concurrent: bool = False, max_workers: Optional[int] = None):
        self.label = label
        self.concurrent = concurrent
        if scheduler is None:
            scheduler = ThreadPoolScheduler(max_workers) if concurrent else EventLoopScheduler()
        self._scheduler = scheduler
        self._gate = _BarrierGate()
        # 取號與交給排程器必須是同一個原子步驟，排程器才會依序號順序收到工作
        self._submit_lock = threading.Lock()
        self._specifics: Dict[Any, Any] = {}
        self._closed = False

    # ———— 佇列專屬值 ————
    def set_specific(self, key: Any, value: Any) -> None:
        self._specifics[key] = value

    def get_specific(self, key: Any) -> Any:
        return self._specifics.get(key)

    def setdefault_specific(self, key: Any, value: Any) -> Any:
        """若 key 尚未設定則寫入 value，返回最終生效的值。"""
        return self._specifics.setdefault(key, value)

    # ———— 提交工作 ————
    def _submit(self, work: WorkItem, barrier: bool) -> None:
        if self._closed:
            raise StoreError(f"queue {self.label!r} is shut down", operation="submit")

        def run(_scheduler: Any, _state: Any = None) -> None:
            self._gate.enter(seq)
            token = _current_queue.set(self)
            try:
                work()
            except Exception as err:
                # 排程器執行緒上沒有呼叫者可以接手異常
                global_error_handler.handle(err)
            finally:
                _current_queue.reset(token)
                self._gate.leave(seq)

        with self._submit_lock:
            seq = self._gate.ticket(barrier)
            self._scheduler.schedule(run)

    def async_(self, work: WorkItem) -> None:
        """非同步提交一般工作。"""
        self._submit(work, barrier=False)

    def barrier_async(self, work: WorkItem) -> None:
        """
        以 barrier 模式非同步提交工作。

        此工作會等待所有先前提交的工作完成，且在它完成前不會開始任何後續工作。
        """
        self._submit(work, barrier=True)

    def after(self, delay: float, work: WorkItem) -> None:
        """
        延遲 delay 秒後提交一般工作。

        工作在延遲結束、真正提交時才取得序號，因此相對於 barrier 的順序
        取決於提交的時間點，而不是呼叫 after 的時間點。
        """
        self._scheduler.schedule_relative(delay, lambda *_: self.async_(work))

    def sync(self, fn: Callable[[], T], timeout: Optional[float] = None) -> T:
        """
        在佇列上執行 fn 並等待結果。

        已經在此佇列上時直接就地執行，避免等待自己造成死結。
        """
        if _current_queue.get() is self:
            return fn()
        future: "Future[T]" = Future()

        def work() -> None:
            try:
                future.set_result(fn())
            except Exception as err:
                future.set_exception(err)

        self.async_(work)
        return future.result(timeout)

    def shutdown(self) -> None:
        """停止接受新工作並釋放排程器資源。"""
        self._closed = True
        dispose = getattr(self._scheduler, "dispose", None)
        if dispose is not None:
            dispose()
            return
        executor = getattr(self._scheduler, "executor", None)
        if executor is not None:
            executor.shutdown(wait=False)

    def __repr__(self) -> str:
        kind = "concurrent" if self.concurrent else "serial"
        return f"DispatchQueue({self.label!r}, {kind})"


def current_queue() -> Optional[DispatchQueue]:
    """返回目前程式碼所在的 DispatchQueue，不在任何佇列上時為 None。"""
    return _current_queue.get()


def current_specific(key: Any) -> Any:
    """讀取目前所在佇列上 key 對應的值。"""
    queue = _current_queue.get()
    if queue is None:
        return None
    return queue.get_specific(key)
