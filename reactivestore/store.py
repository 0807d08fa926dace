import asyncio
import inspect
from concurrent.futures import Future
from typing import Any, Optional, Tuple

from .config import StoreConfig
from .dispatcher import DispatchController, call_completion
from .errors import ActionError, StoreError
from .execution import ExecutionRunner
from .log import configure_logging
from .middleware import MiddlewareChain
from .types import CompletionCallback, ExecutionContext


class Store:
    """
    單一寫入者的狀態容器。

    Store 接受 Action 並保證它們一次一個、依提交順序修改狀態，
    即使 Action 本身的工作是非同步的。具體的狀態由子類定義。

    範例:
        ```python
        class CounterStore(Store):
            def __init__(self):
                super().__init__()
                self.count = 0

        store = CounterStore()
        store.dispatch(increment())
        ```
    """

    def __init__(self, *middlewares: Any, config: Optional[StoreConfig] = None):
        """
        初始化 Store。

        Args:
            *middlewares: 初始的中介軟體，可以是類或實例
            config: 可選的 StoreConfig；提供時會一併套用日誌設定
        """
        if config is not None:
            configure_logging(config)
        self.config = config or StoreConfig(name=type(self).__name__)
        self.name = self.config.name
        # 中介軟體鏈
        self._chain = MiddlewareChain()
        # 執行器
        self._runner = ExecutionRunner()
        # 分發控制器，持有旗標與延遲佇列，只以弱引用指回 Store
        self._controller = DispatchController(
            self, self._runner, strict_reentrancy=self.config.strict_reentrancy
        )
        if middlewares:
            self.apply_middleware(*middlewares)

    @property
    def middleware_chain(self) -> MiddlewareChain:
        return self._chain

    @property
    def middlewares(self) -> Tuple[Any, ...]:
        """依附加順序排列的中介軟體。"""
        return tuple(self._chain)

    @property
    def is_dispatching(self) -> bool:
        """是否有 Action 正在執行或仍在佇列中等待。"""
        return self._controller.is_dispatching

    @property
    def pending_count(self) -> int:
        """佇列中等待執行的 Action 數量。"""
        return self._controller.pending_count

    def apply_middleware(self, *middlewares: Any) -> None:
        """
        一次註冊多個中介軟體。

        Args:
            *middlewares: 要註冊的中介軟體，可以是類或實例。
        """
        # 接受類和實例，如果是類則直接實例化
        instances = [m() if inspect.isclass(m) else m for m in middlewares]
        self._chain = self._chain.extend(*instances)

    def _check_action(self, action: Any) -> None:
        accepts = getattr(action, "accepts", None)
        if accepts is not None:
            ok = accepts(self)
        else:
            store_type = getattr(action, "store_type", None)
            ok = store_type is None or isinstance(self, store_type)
        if not ok:
            raise ActionError(
                f"{type(action).__name__} cannot be dispatched on {type(self).__name__}",
                action_type=getattr(action, "type", type(action).__name__),
                store_type=getattr(getattr(action, "store_type", None), "__name__", None),
            )

    def dispatch(self, action: Any, completion: Optional[CompletionCallback] = None) -> "Future[Any]":
        """
        立即執行 action；若另一個 Action 正在執行，則將其放入佇列。

        佇列中的 Action 依 FIFO 順序，在前一個 Action 完成後才開始執行。

        Args:
            action: 要分發的 Action
            completion: Action 處理完成後呼叫的回調

        Returns:
            代表此次分發結果的 Future
        """
        self._check_action(action)
        return self._controller.dispatch(action, completion)

    def dispatch_on(self, action: Any, queue: ExecutionContext,
                    completion: Optional[CompletionCallback] = None) -> "Future[Any]":
        """
        以 barrier 模式在指定佇列上分發 action；已在該佇列上時同步分發。

        Args:
            action: 要分發的 Action
            queue: 目標 DispatchQueue
            completion: Action 處理完成後呼叫的回調

        Returns:
            代表此次分發結果的 Future
        """
        self._check_action(action)
        return self._controller.dispatch_on(action, queue, completion)

    async def dispatch_async(self, action: Any) -> Any:
        """
        在 asyncio 中分發 action 並等待其完成。

        Returns:
            與 dispatch 返回的 Future 相同的結果
        """
        return await asyncio.wrap_future(self.dispatch(action))

    def execute(self, action: Any, completion: Optional[CompletionCallback] = None) -> "Future[Any]":
        """
        不經過佇列，直接在目前執行緒上執行 action。

        注意：一般不建議直接執行。僅適合在已分發的非同步 Action 內
        立即套用另一個 Action，而不阻塞佇列。
        """
        self._check_action(action)
        future: "Future[Any]" = Future()
        future.set_running_or_notify_cancel()

        def finished(executed: bool, error: Optional[BaseException]) -> None:
            call_completion(completion, action)
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(executed)

        self._runner.execute(self, action, finished, self._chain)
        return future

    def teardown(self) -> None:
        """
        清理中介軟體資源。仍在分發中時拋出 StoreError。
        """
        if self.is_dispatching:
            raise StoreError("cannot tear down while dispatching", operation="teardown",
                             pending=self.pending_count)
        self._chain.teardown()

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if not self.is_dispatching:
            self.teardown()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, {self._controller!r})"


def create_store(*middlewares: Any, config: Optional[StoreConfig] = None) -> Store:
    """
    創建一個新的 Store 實例。

    Returns:
        Store: 新創建的 Store 實例。
    """
    return Store(*middlewares, config=config)
