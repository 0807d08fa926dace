"""
Action 分發控制器。

控制器擁有「是否正在分發」旗標與延遲佇列，決定 dispatch 要立即執行還是入列，
並在每個 Action 完成後透過 flush 依序取出下一個。
整個排空過程由完成回調驅動，而不是由鎖驅動：Action 主體可以任意長時間
地非同步執行，期間不持有任何鎖。
"""
import threading
import weakref
from concurrent.futures import Future
from typing import Any, Callable, Optional

from .action_queue import ActionQueue
from .affinity import QueueAffinityGuard, default_guard
from .errors import ActionError, ReentrantDispatchError, global_error_handler
from .execution import ExecutionRunner
from .log import get_logger
from .types import CompletionCallback, ExecutionContext

logger = get_logger("dispatcher")

# 工作單元：以 _Step 呼叫
Unit = Callable[["_Step"], None]


class _Step:
    """
    一個工作單元的執行回合。

    用來判斷 Action 是在 unit() 返回前同步完成，
    還是在之後由其他執行緒或回調非同步完成。
    """

    __slots__ = ("_lock", "_returned", "_finished")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._returned = False
        self._finished = False

    def finish(self) -> bool:
        """標記 Action 已完成；返回 True 表示需要由呼叫者繼續排空佇列。"""
        with self._lock:
            self._finished = True
            return self._returned

    def returned(self) -> bool:
        """標記 unit() 已返回；返回 True 表示 Action 已同步完成。"""
        with self._lock:
            self._returned = True
            return self._finished


def _chain_future(source: "Future[Any]", target: "Future[Any]") -> None:
    def copy(done: "Future[Any]") -> None:
        error = done.exception()
        if error is not None:
            target.set_exception(error)
        else:
            target.set_result(done.result())
    source.add_done_callback(copy)


def call_completion(completion: Optional[CompletionCallback], action: Any) -> None:
    """
    呼叫使用者的完成回調。

    回調拋出的異常只交給 global_error_handler，不會中斷佇列的排空。
    """
    if completion is None:
        return
    try:
        completion()
    except Exception as err:
        action_type = getattr(action, "type", type(action).__name__)
        error = ActionError(f"completion callback failed: {err}", action_type)
        error.__cause__ = err
        global_error_handler.handle(error)


def _accepted_future() -> "Future[Any]":
    # 已被接受的 dispatch 不可取消
    future: "Future[Any]" = Future()
    future.set_running_or_notify_cancel()
    return future


class DispatchController:
    """
    單一 Store 的分發控制器。

    不變式：is_dispatching 為 True 若且唯若有 Action 正在執行，
    或佇列中仍有待排空的 Action。
    """

    def __init__(self, store: Any, runner: ExecutionRunner,
                 strict_reentrancy: bool = True,
                 guard: Optional[QueueAffinityGuard] = None):
        self._store_ref = weakref.ref(store)
        self._runner = runner
        self._queue = ActionQueue()
        self._lock = threading.Lock()
        self._is_dispatching = False
        self._guard = guard or default_guard
        self.strict_reentrancy = strict_reentrancy
        self.name = getattr(store, "name", type(store).__name__)

    @property
    def is_dispatching(self) -> bool:
        return self._is_dispatching

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    # ———— 旗標的檢查與設定 ————
    def _begin_or_enqueue(self, unit: Unit) -> bool:
        """
        閒置時設定旗標並返回 True（呼叫者應立即執行）；
        忙碌時將 unit 入列並返回 False。
        """
        with self._lock:
            if self._is_dispatching:
                self._queue.enqueue(unit)
                return False
            self._is_dispatching = True
            return True

    def _next_or_idle(self) -> Optional[Unit]:
        """取出下一個單元；佇列為空時清除旗標並返回 None。"""
        with self._lock:
            unit = self._queue.dequeue()
            if unit is None:
                self._is_dispatching = False
            return unit

    # ———— 分發 ————
    def dispatch(self, action: Any, completion: Optional[CompletionCallback] = None) -> "Future[Any]":
        """
        立即執行 action，或在另一個 Action 執行中時將其入列。

        Args:
            action: 要分發的 Action
            completion: Action 處理完成後呼叫的回調

        Returns:
            Future：主體執行時結果為 True，被中介軟體否決時為 False，
            Store 已被回收而跳過時為 None；主體拋出的異常會設定在 Future 上。
        """
        self._check_reentrancy(action)
        future = _accepted_future()
        unit = self._make_unit(action, completion, future)
        if self._begin_or_enqueue(unit):
            self._drain(unit)
        else:
            logger.debug("[%s] queued %s (pending=%d)", self.name,
                         getattr(action, "type", action), len(self._queue))
        return future

    def dispatch_on(self, action: Any, queue: ExecutionContext,
                    completion: Optional[CompletionCallback] = None) -> "Future[Any]":
        """
        在指定的執行佇列上分發 action。

        已在該佇列上時直接同步分發，避免等待自己；
        否則以 barrier 模式排程，與同佇列上的其他工作互斥。
        """
        if self._guard.is_current(queue):
            return self.dispatch(action, completion)

        future = _accepted_future()
        store_ref = self._store_ref

        def work() -> None:
            if store_ref() is None:
                logger.debug("[%s] store released before %s ran on %s",
                             self.name, getattr(action, "type", action), queue.label)
                future.set_result(None)
                return
            try:
                inner = self.dispatch(action, completion)
            except Exception as err:
                future.set_exception(err)
                raise
            _chain_future(inner, future)

        queue.barrier_async(work)
        return future

    def flush(self) -> None:
        """取出並執行下一個延遲的 Action，佇列為空時回到閒置狀態。"""
        self._drain(self._next_or_idle())

    # ———— 內部 ————
    def _drain(self, unit: Optional[Unit]) -> None:
        # 同步完成的 Action 在此迴圈內接續，不會遞迴加深呼叫堆疊
        while unit is not None:
            step = _Step()
            unit(step)
            if not step.returned():
                return
            unit = self._next_or_idle()

    def _finish(self, step: _Step) -> None:
        if step.finish():
            self.flush()

    def _make_unit(self, action: Any, completion: Optional[CompletionCallback],
                   future: "Future[Any]") -> Unit:
        store_ref = self._store_ref

        def unit(step: _Step) -> None:
            store = store_ref()
            if store is None:
                logger.debug("[%s] store released, skipping %s", self.name,
                             getattr(action, "type", action))
                future.set_result(None)
                self._finish(step)
                return

            def done(executed: bool, error: Optional[BaseException]) -> None:
                call_completion(completion, action)
                if error is not None:
                    future.set_exception(error)
                else:
                    future.set_result(executed)
                self._finish(step)

            self._runner.execute(store, action, done)

        return unit

    def _check_reentrancy(self, action: Any) -> None:
        if not self._runner.in_precheck():
            return
        action_type = getattr(action, "type", type(action).__name__)
        if self.strict_reentrancy:
            raise ReentrantDispatchError(
                "dispatch called from inside should_execute",
                operation="dispatch", store=self.name, action_type=action_type,
            )
        # 經由 dispatch 執行時旗標已設定，內層 Action 會入列；
        # 經由 Store.execute 繞過旗標時，內層 Action 會立即巢狀執行
        logger.warning("[%s] re-entrant dispatch of %s from should_execute (%s)",
                       self.name, action_type,
                       "queued" if self._is_dispatching else "running nested")

    def __repr__(self) -> str:
        state = "dispatching" if self._is_dispatching else "idle"
        return f"DispatchController({self.name!r}, {state}, pending={len(self._queue)})"
