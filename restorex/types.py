"""
restorex 共用的類型定義。
"""

from typing import Any, Callable, Optional, Protocol, Tuple, TypeVar, runtime_checkable

S = TypeVar("S")  # 狀態類型
E = TypeVar("E")  # 環境類型
T = TypeVar("T")  # 子狀態類型
A = TypeVar("A")  # Action 類型
T_contra = TypeVar("T_contra", contravariant=True)

# dispatch 函數：接收任意 action，無返回值
DispatchFunction = Callable[[Any], None]
# middleware 鏈中的下一層
NextDispatch = Callable[[Any], None]
# 取得目前狀態
GetState = Callable[[], Any]
# middleware 工廠返回的包裹函數
MiddlewareFunction = Callable[[NextDispatch], DispatchFunction]
# middleware 工廠：(dispatch, get_state) -> (next -> handler)
MiddlewareFactory = Callable[[DispatchFunction, GetState], MiddlewareFunction]

# reducer 的返回值：(新狀態, 可選的 Effect)
Reduction = Tuple[Any, Optional[Any]]
Reducer = Callable[[Any, Any, Any], Reduction]

# 比較函數：(舊值, 新值) -> bool
Comparator = Callable[[Any, Any], bool]
Selector = Callable[[Any], Any]

# thunk：由 ThunkMiddleware 以 (dispatch, get_state) 呼叫
ThunkFunction = Callable[[DispatchFunction, GetState], Any]


@runtime_checkable
class StoreSubscriber(Protocol[T_contra]):
    """訂閱者協定：只需實現 new_state。"""

    def new_state(self, state: T_contra) -> None:
        ...
