"""
Action 執行器。

依序進行中介軟體預檢、執行 Action 主體、通知中介軟體，最後呼叫完成回調。
"""
import contextlib
import threading
from typing import Any, Callable, Iterator, Optional

from .completion import Completion
from .errors import ActionError, CompletionError, MiddlewareError, global_error_handler
from .log import get_logger
from .middleware import MiddlewareChain

logger = get_logger("execution")

# 執行器完成回調：(主體是否執行, 錯誤)
Finished = Callable[[bool, Optional[BaseException]], None]


def _action_type(action: Any) -> str:
    return getattr(action, "type", type(action).__name__)


class ExecutionRunner:
    """
    無條件執行單一 Action 的執行器。

    不檢查也不修改分發旗標，排隊與排空由 DispatchController 負責。
    """

    def __init__(self) -> None:
        self._local = threading.local()

    def in_precheck(self) -> bool:
        """目前執行緒是否正在執行中介軟體的 should_execute。"""
        return getattr(self._local, "depth", 0) > 0

    @contextlib.contextmanager
    def _prechecking(self) -> Iterator[None]:
        self._local.depth = getattr(self._local, "depth", 0) + 1
        try:
            yield
        finally:
            self._local.depth -= 1

    def execute(self, store: Any, action: Any, finished: Finished,
                chain: Optional[MiddlewareChain] = None) -> None:
        """
        執行 action。

        1. 依附加順序詢問中介軟體，遇到否決即短路。
        2. 被否決時跳過主體，仍通知所有中介軟體 did_execute，再呼叫 finished(False, None)。
        3. 放行時呼叫 action.execute(store, completion)。
        4. 主體呼叫 completion 後通知所有中介軟體 did_execute，再呼叫 finished(True, None)。

        主體拋出異常時，中介軟體收到 on_error，錯誤交給 global_error_handler，
        並以 finished(True, error) 結束，讓後續的 Action 可以繼續排空。
        預檢本身拋出異常時同樣通知 on_error，並以 finished(False, error) 結束。

        Args:
            store: 目標 Store
            action: 要執行的 Action
            finished: 完成回調
            chain: 使用的中介軟體鏈，預設取 store.middleware_chain
        """
        if chain is None:
            chain = getattr(store, "middleware_chain", None)
            if chain is None:
                chain = MiddlewareChain()
        action_type = _action_type(action)

        try:
            with self._prechecking():
                approved = chain.should_execute(store, action)
        except Exception as err:
            error = MiddlewareError(f"should_execute failed: {err}", "MiddlewareChain", action_type)
            error.__cause__ = err
            chain.on_error(store, action, error)
            global_error_handler.handle(error)
            finished(False, error)
            return

        if not approved:
            logger.debug("skipped %s: vetoed by middleware", action_type)
            chain.did_execute(store, action)
            finished(False, None)
            return

        def on_done() -> None:
            chain.did_execute(store, action)
            finished(True, None)

        def on_error(err: BaseException) -> None:
            finished(True, self._report(store, action, chain, err))

        completion = Completion(on_done, action_type, on_error=on_error)
        try:
            action.execute(store, completion)
        except Exception as err:
            try:
                completion.fail(err)
            except CompletionError:
                # 主體已經完成後才拋出，只回報
                self._report(store, action, chain, err)

    def _report(self, store: Any, action: Any, chain: MiddlewareChain,
                err: BaseException) -> BaseException:
        chain.on_error(store, action, err)
        if isinstance(err, ActionError):
            error = err
        else:
            error = ActionError(f"action body failed: {err}", _action_type(action))
            error.__cause__ = err
        global_error_handler.handle(error)
        return error
