"""
restorex：單向資料流的狀態容器。

Store 以 reducer 回應 action 替換狀態，透過 middleware 管線攔截或注入 action，
以弱引用持有訂閱者並在狀態變更時通知（可選擇子狀態並去除重複），
reducer 返回的 Effect 則在 dispatch 之外非同步執行並把結果 action 送回 Store。
"""

from .errors import (
    RestorexError, StoreError, ReentrantDispatchError, ReducerError,
    SubscriptionError, MiddlewareError, EffectError, ConfigurationError,
    ErrorHandler, global_error_handler
)
from .synchronized import Synchronized
from .subscription import Subscription, SubscriptionBox, BlockSubscriber, supports_equality
from .middleware import (
    MiddlewareChain, MiddlewareLink, BaseMiddleware, LoggerMiddleware,
    ThunkMiddleware, DevToolsMiddleware, PerformanceMonitorMiddleware
)
from .effects import Effect, EffectScheduler
from .reducers import on, create_reducer, chain_reducers
from .store_selectors import create_selector
from .immutable_utils import to_immutable
from .options import StoreOptions
from .store import Store, create_store
from .types import StoreSubscriber

__version__ = "0.1.0"

# 匯出所有公開 API
__all__ = [
    # Errors
    "RestorexError", "StoreError", "ReentrantDispatchError", "ReducerError",
    "SubscriptionError", "MiddlewareError", "EffectError", "ConfigurationError",
    "ErrorHandler", "global_error_handler",

    # Synchronized
    "Synchronized",

    # Subscriptions
    "Subscription", "SubscriptionBox", "BlockSubscriber", "supports_equality",
    "StoreSubscriber",

    # Middleware
    "MiddlewareChain", "MiddlewareLink", "BaseMiddleware", "LoggerMiddleware",
    "ThunkMiddleware", "DevToolsMiddleware", "PerformanceMonitorMiddleware",

    # Effects
    "Effect", "EffectScheduler",

    # Reducers & Selectors
    "on", "create_reducer", "chain_reducers", "create_selector",

    # Store
    "Store", "create_store", "StoreOptions", "to_immutable",
]
