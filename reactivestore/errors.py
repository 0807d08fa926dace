"""
ReactiveStore 錯誤處理模組。

分發核心本身不會產生錯誤：中介軟體否決屬於正常流程，
Store 被回收後的排隊工作也只是靜默跳過。
此模組提供的是周邊層的結構化異常與集中式錯誤處理器。
"""
import functools
import logging
import traceback
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

T = TypeVar("T")

logger = logging.getLogger("reactivestore.errors")


class ReactiveStoreError(Exception):
    """所有 ReactiveStore 異常的基礎類。"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.traceback = traceback.format_exc()

    def to_dict(self) -> Dict[str, Any]:
        """
        將錯誤轉換為可序列化的字典。

        Returns:
            包含錯誤類型、訊息與細節的字典
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": dict(self.details),
        }

    def __str__(self) -> str:
        if not self.details:
            return self.message
        details = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
        return f"{self.message} ({details})"


class ActionError(ReactiveStoreError):
    """與 Action 相關的錯誤。"""

    def __init__(self, message: str, action_type: str, **kwargs: Any) -> None:
        details = {"action_type": action_type}
        details.update(kwargs)
        super().__init__(message, details)
        self.action_type = action_type


class CompletionError(ActionError):
    """Action 的完成回調被呼叫超過一次。"""


class StoreError(ReactiveStoreError):
    """與 Store 相關的錯誤。"""

    def __init__(self, message: str, operation: str, **kwargs: Any) -> None:
        details = {"operation": operation}
        details.update(kwargs)
        super().__init__(message, details)
        self.operation = operation


class ReentrantDispatchError(StoreError):
    """在中介軟體的 should_execute 內對同一個 Store 再次 dispatch。"""


class MiddlewareError(ReactiveStoreError):
    """與 Middleware 相關的錯誤。"""

    def __init__(self, message: str, middleware_name: str,
                 action_type: Optional[str] = None, **kwargs: Any) -> None:
        details: Dict[str, Any] = {"middleware": middleware_name}
        if action_type is not None:
            details["action_type"] = action_type
        details.update(kwargs)
        super().__init__(message, details)
        self.middleware_name = middleware_name


class ConfigurationError(ReactiveStoreError):
    """配置相關的錯誤。"""

    def __init__(self, message: str, component: str,
                 config_key: Optional[str] = None, **kwargs: Any) -> None:
        details: Dict[str, Any] = {"component": component}
        if config_key is not None:
            details["config_key"] = config_key
        details.update(kwargs)
        super().__init__(message, details)
        self.component = component
        self.config_key = config_key


class ErrorHandler:
    """集中式錯誤處理器，用於捕獲、日誌記錄和錯誤報告。"""

    def __init__(self, log_to_console: bool = True, log_to_file: bool = False,
                 log_file: Optional[str] = None) -> None:
        """
        初始化錯誤處理器。

        Args:
            log_to_console: 是否將錯誤寫入 console 日誌
            log_to_file: 是否同時寫入檔案
            log_file: 日誌檔案路徑，log_to_file 為 True 時必須提供
        """
        if log_to_file and not log_file:
            raise ConfigurationError(
                "log_file is required when log_to_file is enabled",
                component="ErrorHandler", config_key="log_file",
            )
        self.log_to_console = log_to_console
        self.log_to_file = log_to_file
        self.log_file = log_file
        self.handlers: List[Callable[[ReactiveStoreError], None]] = []
        self._file_logger: Optional[logging.Logger] = None
        if log_to_file:
            self._file_logger = logging.getLogger(f"reactivestore.errors.file.{id(self)}")
            self._file_logger.propagate = False
            handler = logging.FileHandler(log_file, encoding="utf-8")
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
            self._file_logger.addHandler(handler)

    def register_handler(self, handler: Callable[[ReactiveStoreError], None]) -> None:
        """註冊一個在每次錯誤發生時被呼叫的回調。"""
        self.handlers.append(handler)

    def unregister_handler(self, handler: Callable[[ReactiveStoreError], None]) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)

    def handle(self, error: Union[ReactiveStoreError, Exception]) -> ReactiveStoreError:
        """
        處理一個錯誤：轉換為結構化錯誤、記錄日誌並通知所有處理器。

        Args:
            error: 要處理的錯誤

        Returns:
            結構化後的 ReactiveStoreError
        """
        if not isinstance(error, ReactiveStoreError):
            wrapped = ReactiveStoreError(str(error), {"error_type": type(error).__name__})
            wrapped.__cause__ = error
            error = wrapped

        if self.log_to_console:
            logger.error("❌ %s", error, exc_info=error.__cause__ or error)
        if self._file_logger is not None:
            self._file_logger.error("%s %s", error.__class__.__name__, error.to_dict())

        for handler in list(self.handlers):
            try:
                handler(error)
            except Exception:
                # 處理器本身失敗時只記錄，不影響其他處理器
                logger.exception("error handler %r failed", handler)
        return error


# 單例錯誤處理器
global_error_handler = ErrorHandler()


def handle_error(func: Callable[..., T]) -> Callable[..., T]:
    """
    裝飾器：將函數拋出的異常交給 global_error_handler 處理後再重新拋出。
    """
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return func(*args, **kwargs)
        except Exception as err:
            global_error_handler.handle(err)
            raise
    return wrapper
