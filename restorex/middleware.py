"""
restorex 中介軟體模組。

中介軟體是一個工廠 (dispatch, get_state) -> (next -> handler)。
MiddlewareChain 依列表順序把它們折疊成一條 dispatch 管線，
每個環節可以轉換、吞掉、重複或原樣傳遞 action，也可以呼叫外層 dispatch 注入新的 action。

此模組同時提供基於鉤子的 BaseMiddleware 以及幾個常用中介軟體。
"""

import contextlib
import datetime
import logging
import time
from typing import Any, Callable, Dict, Generator, List, Sequence, Tuple

from .errors import MiddlewareError
from .types import (
    DispatchFunction, GetState, MiddlewareFactory, MiddlewareFunction, NextDispatch, ThunkFunction
)

logger = logging.getLogger(__name__)

ActionContext = Dict[str, Any]


def _action_name(action: Any) -> str:
    return str(getattr(action, "type", type(action).__name__))


def _middleware_name(middleware: Any) -> str:
    return getattr(middleware, "__name__", type(middleware).__name__)


# ———— Middleware Chain ————
class MiddlewareLink:
    """
    中介軟體鏈中的單一環節。

    保存原始中介軟體以及它以 (dispatch, get_state) 建構出的包裹函數，
    wrap(next) 返回此環節的 handler。
    """

    def __init__(self, middleware: MiddlewareFactory, wrapper: MiddlewareFunction) -> None:
        self.middleware = middleware
        self.name = _middleware_name(middleware)
        self._wrapper = wrapper

    def wrap(self, next_dispatch: NextDispatch) -> DispatchFunction:
        handler = self._wrapper(next_dispatch)
        if not callable(handler):
            raise MiddlewareError("Middleware must return a callable handler", middleware_name=self.name)
        return handler

    def __repr__(self) -> str:
        return f"MiddlewareLink({self.name})"


class MiddlewareChain:
    """
    由中介軟體列表折疊而成的 dispatch 函數。

    由右至左折疊，使中介軟體在進入時依列表順序執行，
    最後一層的 next 為 terminal（呼叫 reducer 的函數）。
    """

    def __init__(
        self,
        middleware: Sequence[MiddlewareFactory],
        dispatch: DispatchFunction,
        get_state: GetState,
        terminal: DispatchFunction,
    ) -> None:
        self.source: Tuple[MiddlewareFactory, ...] = tuple(middleware)
        self.links: List[MiddlewareLink] = []
        for mw in self.source:
            if not callable(mw):
                raise MiddlewareError("Middleware must be callable", middleware_name=_middleware_name(mw))
            self.links.append(MiddlewareLink(mw, mw(dispatch, get_state)))

        handler = terminal
        for link in reversed(self.links):
            handler = link.wrap(handler)
        self._handler = handler

    def matches(self, middleware: Sequence[MiddlewareFactory]) -> bool:
        """此鏈是否仍對應同一組（以身份比較的）中介軟體。"""
        return len(middleware) == len(self.source) and all(
            a is b for a, b in zip(middleware, self.source)
        )

    def __call__(self, action: Any) -> None:
        self._handler(action)

    def __len__(self) -> int:
        return len(self.links)

    def __repr__(self) -> str:
        return f"MiddlewareChain({[link.name for link in self.links]})"


# ———— Base Middleware ————
class BaseMiddleware:
    """
    基礎中介類，定義所有中介可能實現的鉤子。

    中介軟體可以介入動作分發的流程，在動作到達 Reducer 前、
    動作處理完成後或出現錯誤時執行自定義邏輯。
    子類只需覆寫需要的鉤子；需要改變控制流程（吞掉或注入 action）時覆寫 __call__。
    """

    def __call__(self, dispatch: DispatchFunction, get_state: GetState) -> MiddlewareFunction:
        """
        配置中介軟體。

        Args:
            dispatch: Store 的外層 dispatch
            get_state: 取得目前狀態的函數

        Returns:
            接收 next_dispatch 並返回新 handler 的函數
        """
        def middleware(next_dispatch: NextDispatch) -> DispatchFunction:
            def handler(action: Any) -> None:
                with self.action_context(action, get_state()) as context:
                    next_dispatch(action)
                    context["next_state"] = get_state()
            return handler
        return middleware

    def on_next(self, action: Any, prev_state: Any) -> None:
        """
        在 action 傳給下一層之前調用。

        Args:
            action: 正在 dispatch 的 Action
            prev_state: dispatch 之前的 store.state
        """

    def on_complete(self, next_state: Any, action: Any) -> None:
        """
        在下一層（最終為 reducer 與通知）處理完 action 之後調用。

        Args:
            next_state: dispatch 之後的最新 store.state
            action: 剛剛 dispatch 的 Action
        """

    def on_error(self, error: Exception, action: Any) -> None:
        """
        如果 dispatch 過程中拋出異常，則調用此鉤子。異常之後仍會繼續拋出。
        """

    def teardown(self) -> None:
        """
        當 Store 清理資源時調用，用於清理中間件持有的資源。
        """

    @contextlib.contextmanager
    def action_context(self, action: Any, prev_state: Any) -> Generator[ActionContext, None, None]:
        """
        以上下文管理器包裝一次 action 分發的生命週期。

        Yields:
            上下文字典，內部可寫入 next_state 供 on_complete 使用
        """
        context: ActionContext = {
            "action": action,
            "prev_state": prev_state,
            "next_state": None,
        }
        self.on_next(action, prev_state)
        try:
            yield context
        except Exception as err:
            context["error"] = err
            self.on_error(err, action)
            raise
        self.on_complete(context["next_state"], action)


# ———— LoggerMiddleware ————
class LoggerMiddleware(BaseMiddleware):
    """
    日誌中介，記錄每個 action 發送前和發送後的 state。

    使用場景:
    - 偵錯時需要觀察每次 state 的變化。
    - 確保 action 的執行順序正確。
    """

    def __init__(self, level: int = logging.INFO, log: logging.Logger = logger) -> None:
        self.level = level
        self.log = log

    def on_next(self, action: Any, prev_state: Any) -> None:
        self.log.log(self.level, "[%s] dispatching %s", datetime.datetime.now().isoformat(), _action_name(action))
        self.log.log(self.level, "state before %s: %r", _action_name(action), prev_state)

    def on_complete(self, next_state: Any, action: Any) -> None:
        self.log.log(self.level, "state after %s: %r", _action_name(action), next_state)

    def on_error(self, error: Exception, action: Any) -> None:
        self.log.error("error in %s: %s", _action_name(action), error)


# ———— ThunkMiddleware ————
class ThunkMiddleware(BaseMiddleware):
    """
    支援 dispatch 函數 (thunk)，thunk 以 (dispatch, get_state) 被呼叫，可在其中多次 dispatch。

    thunk 不會到達 reducer；其內部的 dispatch 會從鏈的頂端重新進入。

    範例:
        ```python
        def load_user(user_id):
            def thunk(dispatch, get_state):
                dispatch(UserRequested(user_id))
                if get_state().cache_enabled:
                    dispatch(UserLoaded(cache[user_id]))
            return thunk

        store.dispatch(load_user("user123"))
        ```
    """

    def __call__(self, dispatch: DispatchFunction, get_state: GetState) -> MiddlewareFunction:
        def middleware(next_dispatch: NextDispatch) -> DispatchFunction:
            def handler(action: Any) -> None:
                if callable(action):
                    thunk: ThunkFunction = action
                    thunk(dispatch, get_state)
                    return
                next_dispatch(action)
            return handler
        return middleware


# ———— DevToolsMiddleware ————
class DevToolsMiddleware(BaseMiddleware):
    """
    記錄每次 action 與 state 快照，支援回溯調試。

    使用場景:
    - 當需要回溯 state 的變化歷史以進行調試時。
    """

    def __init__(self, limit: int = 0) -> None:
        """
        Args:
            limit: 最多保留的歷史筆數，0 表示不限制
        """
        self.limit = limit
        self.history: List[Tuple[Any, Any, Any]] = []

    def __call__(self, dispatch: DispatchFunction, get_state: GetState) -> MiddlewareFunction:
        def middleware(next_dispatch: NextDispatch) -> DispatchFunction:
            def handler(action: Any) -> None:
                prev_state = get_state()
                next_dispatch(action)
                self.history.append((prev_state, action, get_state()))
                if self.limit and len(self.history) > self.limit:
                    del self.history[: len(self.history) - self.limit]
            return handler
        return middleware

    def get_history(self) -> List[Tuple[Any, Any, Any]]:
        """
        返回整個歷史快照列表。

        Returns:
            歷史快照列表，每項為 (prev_state, action, next_state)
        """
        return list(self.history)

    def teardown(self) -> None:
        self.history.clear()


# ———— PerformanceMonitorMiddleware ————
class PerformanceMonitorMiddleware(BaseMiddleware):
    """
    性能監控中間件，記錄 action 處理時間（包含 reducer 與通知）。
    """

    def __init__(self, threshold_ms: float = 100, log_all: bool = False,
                 clock: Callable[[], float] = time.perf_counter) -> None:
        """
        Args:
            threshold_ms: 性能警告閾值，單位為毫秒
            log_all: 是否記錄所有 action 的耗時，預設只記錄超過閾值的
            clock: 計時函數，以秒為單位
        """
        self.threshold_ms = threshold_ms
        self.log_all = log_all
        self.clock = clock
        self.metrics: Dict[str, List[float]] = {}

    def __call__(self, dispatch: DispatchFunction, get_state: GetState) -> MiddlewareFunction:
        def middleware(next_dispatch: NextDispatch) -> DispatchFunction:
            def handler(action: Any) -> None:
                start = self.clock()
                try:
                    next_dispatch(action)
                finally:
                    self._record(action, (self.clock() - start) * 1000)
            return handler
        return middleware

    def _record(self, action: Any, elapsed_ms: float) -> None:
        action_type = _action_name(action)
        self.metrics.setdefault(action_type, []).append(elapsed_ms)
        if elapsed_ms > self.threshold_ms:
            logger.warning("action %s exceeded threshold (%.2fms > %sms)", action_type, elapsed_ms, self.threshold_ms)
        elif self.log_all:
            logger.info("action %s took %.2fms", action_type, elapsed_ms)

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        """
        獲取性能指標統計信息。

        Returns:
            以 action 類型為鍵的 avg/max/min/count 統計
        """
        result = {}
        for action_type, times in self.metrics.items():
            if not times:
                continue
            result[action_type] = {
                "avg": sum(times) / len(times),
                "max": max(times),
                "min": min(times),
                "count": len(times),
            }
        return result

    def teardown(self) -> None:
        self.metrics.clear()
