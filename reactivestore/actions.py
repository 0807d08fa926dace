"""
基於 ReactiveStore 的 Action 定義模組。

Action 描述一次對 Store 的變更意圖，並自行負責如何在 Store 上執行。
每個 Action 綁定一種 Store 類型，執行完成後必須呼叫一次 completion。
"""
import asyncio
from typing import Any, Callable, ClassVar, Dict, Generic, Optional, Union

from immutables import Map

from .completion import Completion
from .errors import ActionError
from .types import S


class Action(Generic[S]):
    """
    表示一個綁定在某種 Store 上的變更動作。

    泛型參數:
        S: 此 Action 作用的 Store 類型

    屬性:
        type: 動作的類型字符串，預設為類別名稱
        payload: 動作的負載數據（可選）
        store_type: 可執行此 Action 的 Store 類別，None 表示不限制
    """

    store_type: ClassVar[Optional[type]] = None

    def __init__(self, payload: Any = None, type: Optional[str] = None):
        self.type = type or self.__class__.__name__
        self.payload = _process_payload(payload)

    def accepts(self, store: Any) -> bool:
        """判斷此 Action 是否能在指定的 Store 上執行。"""
        return self.store_type is None or isinstance(store, self.store_type)

    def execute(self, store: S, completion: Completion) -> None:
        """
        在 Store 上執行變更，完成後呼叫 completion。

        子類必須覆寫此方法。主體可以是同步也可以是非同步的，
        但無論如何都要恰好呼叫一次 completion。

        Args:
            store: 目標 Store
            completion: 完成延續
        """
        raise NotImplementedError(f"{self.__class__.__name__}.execute is not implemented")

    def __repr__(self):
        return f"{self.__class__.__name__}(type='{self.type}', payload={repr(self.payload)})"


class SyncAction(Action[S]):
    """同步 Action：子類實作 apply，執行後立即完成。"""

    def apply(self, store: S) -> None:
        raise NotImplementedError(f"{self.__class__.__name__}.apply is not implemented")

    def execute(self, store: S, completion: Completion) -> None:
        self.apply(store)
        completion()


class AsyncAction(Action[S]):
    """
    非同步 Action：子類實作 coroutine run，任務結束時完成。

    在事件迴圈執行緒內 dispatch 時會直接建立 task；
    從其他執行緒 dispatch 時則需要透過 loop 屬性指定事件迴圈。

    範例:
        ```python
        class LoadProfile(AsyncAction[ProfileStore]):
            store_type = ProfileStore

            async def run(self, store):
                store.profile = await api.fetch_profile(self.payload)

        store.dispatch(LoadProfile("user123"))
        ```
    """

    def __init__(self, payload: Any = None, type: Optional[str] = None,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        super().__init__(payload, type)
        self.loop = loop
        self.task: Optional["asyncio.Future[Any]"] = None

    async def run(self, store: S) -> None:
        raise NotImplementedError(f"{self.__class__.__name__}.run is not implemented")

    def execute(self, store: S, completion: Completion) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and (self.loop is None or self.loop is running):
            future = running.create_task(self.run(store))
        elif self.loop is not None:
            future = asyncio.run_coroutine_threadsafe(self.run(store), self.loop)
        else:
            raise ActionError(
                "AsyncAction dispatched outside of an event loop without a loop",
                action_type=self.type,
            )
        self.task = future
        future.add_done_callback(lambda fut: _settle(fut, completion))


def _settle(future: Any, completion: Completion) -> None:
    """依據任務結果結束 completion。"""
    if future.cancelled():
        completion.fail(asyncio.CancelledError())
        return
    error = future.exception()
    if error is not None:
        completion.fail(error)
    else:
        completion()


class FunctionAction(Action[Any]):
    """由 create_action 產生、以函數描述變更的 Action。"""

    def __init__(self, type: str, payload: Any,
                 handler: Callable[[Any, Any], None],
                 store_type: Optional[type] = None):
        super().__init__(payload, type)
        self._handler = handler
        if store_type is not None:
            self.store_type = store_type

    def execute(self, store: Any, completion: Completion) -> None:
        self._handler(store, self.payload)
        completion()


def _process_payload(payload: Any) -> Any:
    """
    處理 payload，將字典轉換為不可變結構。

    Args:
        payload: 原始 payload

    Returns:
        處理後的 payload
    """
    if isinstance(payload, dict):
        return Map(payload)
    return payload


def create_action(action_type: str, handler: Callable[[Any, Any], None],
                  store_type: Optional[type] = None) -> Callable[..., FunctionAction]:
    """
    創建一個 Action 生成器函數。

    Args:
        action_type: Action 的類型標識符
        handler: 以 (store, payload) 呼叫的同步變更函數
        store_type: 可選，限制可執行的 Store 類別

    Returns:
        一個可調用的函數，用於生成指定類型的 Action

    範例:
        >>> increment = create_action("[Counter] Increment", lambda store, _: store.add(1))
        >>> store.dispatch(increment())
        >>>
        >>> add = create_action("[Counter] Add", lambda store, amount: store.add(amount))
        >>> store.dispatch(add(5))
    """
    def action_creator(*args: Any, **kwargs: Any) -> FunctionAction:
        payload: Union[None, Any, Dict[Union[int, str], Any]]
        if len(args) == 1 and not kwargs:
            payload = args[0]
        elif args or kwargs:
            payload = dict(zip(range(len(args)), args))
            payload.update(kwargs)
        else:
            # 無參數，無負載
            payload = None
        return FunctionAction(action_type, payload, handler, store_type)

    # 添加 type 屬性以便於識別
    action_creator.type = action_type  # type: ignore
    return action_creator
