"""
ReactiveStore 的共用類型定義。

集中宣告 Store、Action、Middleware 與執行上下文之間的協議，
讓各模組以鴨子類型 (duck typing) 互相協作。
"""
from typing import Any, Callable, Optional, TypeVar

from typing_extensions import Protocol, runtime_checkable


S = TypeVar("S")
T = TypeVar("T")

# 不帶參數的延遲工作單元
WorkItem = Callable[[], None]
# 使用者提供的完成回調
CompletionCallback = Callable[[], None]


@runtime_checkable
class ActionProtocol(Protocol):
    """Action 協作者必須提供的能力。"""

    store_type: Optional[type]

    def execute(self, store: Any, completion: Callable[[], None]) -> None:
        ...


@runtime_checkable
class MiddlewareProtocol(Protocol):
    """中介軟體協作者必須提供的能力。"""

    def should_execute(self, store: Any, action: Any) -> bool:
        ...

    def did_execute(self, store: Any, action: Any) -> None:
        ...


@runtime_checkable
class ExecutionContext(Protocol):
    """序列執行上下文：已在其上則同步執行，否則以 barrier 模式排程。"""

    label: str

    def barrier_async(self, work: WorkItem) -> None:
        ...

    def get_specific(self, key: Any) -> Any:
        ...

    def setdefault_specific(self, key: Any, value: Any) -> Any:
        ...
