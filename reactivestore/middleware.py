"""
基於 ReactiveStore 的中介軟體定義模組。

中介軟體在每個 Action 執行前被詢問是否放行 (should_execute)，
並在 Action 主體完成後收到通知 (did_execute)。
此模組提供中介軟體基礎類、有序的中介軟體鏈，
以及日誌記錄、過濾、歷史記錄、性能監控與行為埋點等實作。
"""

import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import ConfigurationError, MiddlewareError, global_error_handler
from .log import get_logger
from .types import MiddlewareProtocol

logger = get_logger("middleware")


def _action_type(action: Any) -> str:
    return getattr(action, "type", type(action).__name__)


# ———— Base Middleware ————
class BaseMiddleware:
    """
    基礎中介類，定義所有中介可能實現的鉤子。

    預設放行所有 Action，其餘鉤子皆為空操作。
    鉤子都在 Action 所在的執行緒上同步呼叫，
    不可在 should_execute 內對同一個 Store 再次 dispatch。
    """

    def should_execute(self, store: Any, action: Any) -> bool:
        """
        在 Action 主體執行之前調用。

        Args:
            store: 目標 Store
            action: 即將執行的 Action

        Returns:
            False 表示否決此 Action
        """
        return True

    def did_execute(self, store: Any, action: Any) -> None:
        """
        在 Action 處理完成之後調用：主體呼叫 completion 之後，
        或 Action 被否決、主體被跳過之後。

        Args:
            store: 目標 Store
            action: 剛剛處理完成的 Action
        """
        pass

    def on_error(self, store: Any, action: Any, error: BaseException) -> None:
        """
        如果 Action 主體或其他中介軟體的 should_execute 拋出異常，則調用此鉤子。
        此時不會再收到 did_execute。

        Args:
            store: 目標 Store
            action: 導致異常的 Action
            error: 拋出的異常
        """
        pass

    def teardown(self) -> None:
        """
        當 Store 清理資源時調用，用於清理中間件持有的資源。
        """
        pass


# ———— MiddlewareChain ————
class MiddlewareChain:
    """
    依附加順序排列的中介軟體序列。

    鏈本身不可變，新增中介軟體會產生新的鏈，
    正在執行中的 Action 因此總是看到一致的中介軟體集合。
    """

    __slots__ = ("_middlewares",)

    def __init__(self, middlewares: Iterable[MiddlewareProtocol] = ()) -> None:
        self._middlewares: Tuple[Any, ...] = tuple(middlewares)

    def extend(self, *middlewares: MiddlewareProtocol) -> "MiddlewareChain":
        return MiddlewareChain(self._middlewares + tuple(middlewares))

    def should_execute(self, store: Any, action: Any) -> bool:
        """
        依序詢問每個中介軟體，遇到第一個否決即停止。

        Returns:
            所有被詢問的中介軟體都放行時為 True
        """
        for mw in self._middlewares:
            if not mw.should_execute(store, action):
                logger.debug("⛔ %s vetoed by %s", _action_type(action), type(mw).__name__)
                return False
        return True

    def did_execute(self, store: Any, action: Any) -> None:
        """
        通知每一個中介軟體 Action 已處理完成，不會短路。

        單一中介軟體失敗時交給 global_error_handler，其餘中介軟體仍會收到通知。
        """
        for mw in self._middlewares:
            try:
                mw.did_execute(store, action)
            except Exception as err:
                error = MiddlewareError(
                    f"did_execute failed: {err}", type(mw).__name__, _action_type(action)
                )
                error.__cause__ = err
                global_error_handler.handle(error)

    def on_error(self, store: Any, action: Any, error: BaseException) -> None:
        for mw in self._middlewares:
            hook = getattr(mw, "on_error", None)
            if hook is None:
                continue
            try:
                hook(store, action, error)
            except Exception:
                logger.exception("on_error hook of %s failed", type(mw).__name__)

    def teardown(self) -> None:
        for mw in self._middlewares:
            hook = getattr(mw, "teardown", None)
            if hook is not None:
                hook()

    def __iter__(self) -> Iterator[Any]:
        return iter(self._middlewares)

    def __len__(self) -> int:
        return len(self._middlewares)

    def __getitem__(self, index: int) -> Any:
        return self._middlewares[index]

    def __repr__(self) -> str:
        names = ", ".join(type(mw).__name__ for mw in self._middlewares)
        return f"MiddlewareChain([{names}])"


# ———— LoggerMiddleware ————
class LoggerMiddleware(BaseMiddleware):
    """
    日誌中介，記錄每個 Action 的執行前後。

    使用場景:
    - 偵錯時需要觀察 Action 的執行順序。
    - 確認非同步 Action 何時真正完成。
    """

    def __init__(self, level: str = "INFO", name: Optional[str] = None):
        self.level = logging.getLevelName(level.upper())
        if not isinstance(self.level, int):
            raise ConfigurationError(
                f"unknown log level {level!r}", component="LoggerMiddleware", config_key="level"
            )
        self._logger = get_logger(name or "actions")

    def _log(self, message: str, *args: Any) -> None:
        self._logger.log(self.level, message, *args)

    def should_execute(self, store: Any, action: Any) -> bool:
        self._log("▶️ dispatching %s on %s", _action_type(action), type(store).__name__)
        return True

    def did_execute(self, store: Any, action: Any) -> None:
        self._log("✅ executed %s on %s", _action_type(action), type(store).__name__)

    def on_error(self, store: Any, action: Any, error: BaseException) -> None:
        self._logger.error("❌ error in %s: %s", _action_type(action), error)


# ———— FilterMiddleware ————
class FilterMiddleware(BaseMiddleware):
    """
    依據條件否決 Action。

    使用場景:
    - 在特定狀態下（例如未登入）阻擋某些 Action。
    - 暫時停用某些 Action 類型。
    """

    def __init__(self, predicate: Optional[Callable[[Any, Any], bool]] = None,
                 blocked_types: Iterable[str] = ()) -> None:
        """
        初始化 FilterMiddleware。

        Args:
            predicate: 以 (store, action) 呼叫，返回 False 即否決
            blocked_types: 一律否決的 Action 類型
        """
        self.predicate = predicate
        self.blocked_types = frozenset(blocked_types)

    def should_execute(self, store: Any, action: Any) -> bool:
        if _action_type(action) in self.blocked_types:
            return False
        if self.predicate is not None:
            return bool(self.predicate(store, action))
        return True


# ———— DevToolsMiddleware ————
class DevToolsMiddleware(BaseMiddleware):
    """
    記錄每次被詢問與執行完成的 Action，方便回溯執行歷史。

    使用場景:
    - 當需要確認 Action 的實際執行順序時。
    """

    def __init__(self, max_history: Optional[int] = None) -> None:
        """初始化 DevToolsMiddleware。"""
        self.max_history = max_history
        self.attempts: List[Tuple[float, Any]] = []
        self.history: List[Tuple[float, Any]] = []
        self._lock = threading.Lock()

    def _append(self, records: List[Tuple[float, Any]], action: Any) -> None:
        with self._lock:
            records.append((time.time(), action))
            if self.max_history is not None and len(records) > self.max_history:
                del records[0]

    def should_execute(self, store: Any, action: Any) -> bool:
        self._append(self.attempts, action)
        return True

    def did_execute(self, store: Any, action: Any) -> None:
        self._append(self.history, action)

    def get_history(self) -> List[Any]:
        """
        返回已處理完成的 Action 列表（依完成順序，包含被否決的 Action）。
        """
        with self._lock:
            return [action for _, action in self.history]

    def teardown(self) -> None:
        with self._lock:
            self.attempts.clear()
            self.history.clear()


# ———— PerformanceMonitorMiddleware ————
class PerformanceMonitorMiddleware(BaseMiddleware):
    """
    性能監控中間件，記錄從放行到主體完成所耗的時間。

    非同步主體的等待時間也會被計入。
    """

    def __init__(self, threshold_ms: float = 100, log_all: bool = False):
        """
        初始化 PerformanceMonitorMiddleware。

        Args:
            threshold_ms: 性能警告閾值，單位為毫秒，預設為 100 毫秒
            log_all: 是否記錄所有 action 的性能指標，預設為 False (只記錄超過閾值的)
        """
        self.threshold_ms = threshold_ms
        self.log_all = log_all
        self.metrics: Dict[str, List[float]] = {}
        # 失敗的 Action 只記錄到失敗為止的耗時，不計入 metrics
        self.failures: Dict[str, List[float]] = {}
        self._started: Dict[int, float] = {}
        self._lock = threading.Lock()

    def should_execute(self, store: Any, action: Any) -> bool:
        with self._lock:
            self._started[id(action)] = time.perf_counter()
        return True

    def did_execute(self, store: Any, action: Any) -> None:
        with self._lock:
            start = self._started.pop(id(action), None)
            if start is None:
                return
            elapsed_ms = (time.perf_counter() - start) * 1000
            action_type = _action_type(action)
            self.metrics.setdefault(action_type, []).append(elapsed_ms)
        if self.log_all or elapsed_ms > self.threshold_ms:
            logger.info("⏱️ Performance: Action %s took %.2fms", action_type, elapsed_ms)
            if elapsed_ms > self.threshold_ms:
                logger.warning("⚠️ Action %s exceeded threshold (%sms)", action_type, self.threshold_ms)

    def on_error(self, store: Any, action: Any, error: BaseException) -> None:
        with self._lock:
            start = self._started.pop(id(action), None)
            if start is None:
                return
            elapsed_ms = (time.perf_counter() - start) * 1000
            action_type = _action_type(action)
            self.failures.setdefault(action_type, []).append(elapsed_ms)
        logger.info("⏱️ Performance: Action %s failed after %.2fms", action_type, elapsed_ms)

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        """
        獲取性能指標統計信息。
        """
        result = {}
        with self._lock:
            for action_type, times in self.metrics.items():
                if not times:
                    continue
                result[action_type] = {
                    'avg': sum(times) / len(times),
                    'max': max(times),
                    'min': min(times),
                    'count': len(times)
                }
        return result

    def teardown(self) -> None:
        with self._lock:
            self._started.clear()


# ———— AnalyticsMiddleware ————
class AnalyticsMiddleware(BaseMiddleware):
    """
    行為埋點中介，前後都會調用 callback(action, phase, session_id)。

    同一個 Action 的 "should_execute" 與 "did_execute"（失敗時為 "on_error"）回調共用一個 session_id。

    使用場景:
    - 當需要記錄用戶行為數據以進行分析時，例如埋點統計。
    """

    def __init__(self, callback: Callable[..., None]) -> None:
        """
        初始化 AnalyticsMiddleware。

        Args:
            callback: 分析回調函數，接收 (action, phase, session_id)
        """
        self.callback = callback
        self._sessions: Dict[int, str] = {}
        self._lock = threading.Lock()

    def should_execute(self, store: Any, action: Any) -> bool:
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[id(action)] = session_id
        self.callback(action, "should_execute", session_id)
        return True

    def did_execute(self, store: Any, action: Any) -> None:
        with self._lock:
            session_id = self._sessions.pop(id(action), None)
        self.callback(action, "did_execute", session_id)

    def on_error(self, store: Any, action: Any, error: BaseException) -> None:
        with self._lock:
            session_id = self._sessions.pop(id(action), None)
        self.callback(action, "on_error", session_id)

    def teardown(self) -> None:
        with self._lock:
            self._sessions.clear()
