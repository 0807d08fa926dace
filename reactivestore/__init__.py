"""
ReactiveStore：單一寫入者的 Action 分發核心。

Store 接受 Action，保證它們一次一個、依提交順序修改狀態，
即使 Action 本身的工作是非同步的。
"""

from .errors import (
    ReactiveStoreError, ActionError, CompletionError, StoreError,
    ReentrantDispatchError, MiddlewareError, ConfigurationError,
    ErrorHandler, global_error_handler, handle_error
)
from .config import StoreConfig
from .log import configure_logging, get_logger
from .action_queue import ActionQueue
from .completion import Completion
from .actions import Action, SyncAction, AsyncAction, FunctionAction, create_action
from .middleware import (
    BaseMiddleware, MiddlewareChain, LoggerMiddleware, FilterMiddleware,
    DevToolsMiddleware, PerformanceMonitorMiddleware, AnalyticsMiddleware
)
from .dispatch_queue import DispatchQueue, current_queue, current_specific
from .affinity import QueueAffinityGuard, is_running_on
from .execution import ExecutionRunner
from .dispatcher import DispatchController
from .store import Store, create_store

__version__ = "0.1.0"

# 匯出所有公開 API
__all__ = [
    # Errors
    "ReactiveStoreError", "ActionError", "CompletionError", "StoreError",
    "ReentrantDispatchError", "MiddlewareError", "ConfigurationError",
    "ErrorHandler", "global_error_handler", "handle_error",

    # Config & logging
    "StoreConfig", "configure_logging", "get_logger",

    # Actions
    "Action", "SyncAction", "AsyncAction", "FunctionAction", "create_action",
    "Completion",

    # Middleware
    "BaseMiddleware", "MiddlewareChain", "LoggerMiddleware", "FilterMiddleware",
    "DevToolsMiddleware", "PerformanceMonitorMiddleware", "AnalyticsMiddleware",

    # Queues
    "ActionQueue", "DispatchQueue", "current_queue", "current_specific",
    "QueueAffinityGuard", "is_running_on",

    # Store
    "ExecutionRunner", "DispatchController", "Store", "create_store",
]
