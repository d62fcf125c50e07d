"""
restorex 錯誤處理模組。

定義 Store 在 dispatch、訂閱與副作用處理過程中可能拋出的異常，
以及集中式的錯誤處理器 ErrorHandler。
"""

import logging
import traceback
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class RestorexError(Exception):
    """所有 restorex 異常的基礎類。"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.traceback = "".join(traceback.format_stack()[:-1])

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


class StoreError(RestorexError):
    """與 Store 操作相關的錯誤。"""

    def __init__(self, message: str, operation: str, **kwargs: Any) -> None:
        super().__init__(message, {"operation": operation, **kwargs})


class ReentrantDispatchError(StoreError):
    """
    Reducer 在執行期間同步呼叫了同一個 Store 的 dispatch。

    這是違反單一寫入者協定的程式錯誤，而不是可恢復的狀況；
    Store 會拒絕提交該次 reducer 的結果。
    """

    def __init__(self, action: Any) -> None:
        super().__init__(
            "Reducers may not dispatch actions",
            operation="dispatch",
            action=type(action).__name__,
        )


class ReducerError(RestorexError):
    """與 Reducer 相關的錯誤。"""

    def __init__(self, message: str, reducer_name: str, action_type: str, **kwargs: Any) -> None:
        super().__init__(message, {"reducer": reducer_name, "action": action_type, **kwargs})


class SubscriptionError(RestorexError):
    """與訂閱相關的錯誤。"""

    def __init__(self, message: str, subscriber_type: str, **kwargs: Any) -> None:
        super().__init__(message, {"subscriber": subscriber_type, **kwargs})


class MiddlewareError(RestorexError):
    """與 Middleware 相關的錯誤。"""

    def __init__(self, message: str, middleware_name: str, **kwargs: Any) -> None:
        super().__init__(message, {"middleware": middleware_name, **kwargs})


class EffectError(RestorexError):
    """與 Effect 相關的錯誤。"""

    def __init__(self, message: str, effect_name: str, cause: Optional[BaseException] = None, **kwargs: Any) -> None:
        super().__init__(message, {"effect": effect_name, **kwargs})
        self.cause = cause


class ConfigurationError(RestorexError):
    """配置相關的錯誤。"""

    def __init__(self, message: str, component: str, config_key: Optional[str] = None, **kwargs: Any) -> None:
        details: Dict[str, Any] = {"component": component, **kwargs}
        if config_key is not None:
            details["config_key"] = config_key
        super().__init__(message, details)


ErrorCallback = Callable[[RestorexError], None]


class ErrorHandler:
    """
    集中式錯誤處理器，用於記錄日誌並將錯誤分發給已註冊的處理函數。

    副作用失敗等不會回拋到 Store 的錯誤都會經過這裡，
    應用程式可以註冊自己的處理函數來上報或轉換為後續的 action。
    """

    def __init__(self, log_level: int = logging.WARNING) -> None:
        """
        初始化 ErrorHandler。

        Args:
            log_level: 記錄錯誤時使用的日誌等級
        """
        self.log_level = log_level
        self.handlers: List[ErrorCallback] = []

    def register_handler(self, handler: ErrorCallback) -> None:
        """註冊一個錯誤處理函數。"""
        if handler not in self.handlers:
            self.handlers.append(handler)

    def unregister_handler(self, handler: ErrorCallback) -> None:
        """移除一個錯誤處理函數，未註冊時不做任何事。"""
        if handler in self.handlers:
            self.handlers.remove(handler)

    def handle(self, error: Union[RestorexError, Exception]) -> None:
        """
        處理一個錯誤：記錄日誌後依序呼叫所有處理函數。

        非 RestorexError 的異常會先包裝為 RestorexError。
        單一處理函數失敗不會影響其他處理函數。

        Args:
            error: 要處理的錯誤
        """
        if not isinstance(error, RestorexError):
            error = RestorexError(str(error), {"error_type": error.__class__.__name__})
        logger.log(self.log_level, "%s: %s", error.__class__.__name__, error)
        for handler in list(self.handlers):
            try:
                handler(error)
            except Exception:
                logger.exception("error handler %r failed", handler)


# 單例錯誤處理器
global_error_handler = ErrorHandler()
