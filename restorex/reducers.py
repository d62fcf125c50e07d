from typing import Any, Callable, Dict, Type

from .errors import ReducerError
from .types import Reducer, Reduction

Handler = Callable[[Any, Any, Any], Reduction]


def on(action_class: Type[Any], handler: Handler) -> Dict[Type[Any], Handler]:
    """
    創建一個 action 類別與處理函式的映射。

    Args:
        action_class: Action 的類別，子類別的實例同樣會匹配
        handler: 處理函式，接收 (state, action, environment) 並返回 (新狀態, effect)

    Returns:
        一個包含 {action_class: handler} 的字典。
    """
    if not isinstance(action_class, type):
        raise TypeError(f"on() expects an action class, got {action_class!r}")
    return {action_class: handler}


def create_reducer(*handlers: Dict[Type[Any], Handler]) -> Reducer:
    """
    由多個 on(...) 映射組成一個 reducer。

    查找依 action 的 MRO 進行，因此為基底類別註冊的處理函式也會處理其子類別；
    沒有對應處理函式時返回 (原狀態, None)。

    範例:
        ```python
        reducer = create_reducer(
            on(Increment, lambda state, action, env: (state + 1, None)),
            on(Reset, lambda state, action, env: (0, None)),
        )
        ```
    """
    action_handlers: Dict[Type[Any], Handler] = {}
    for mapping in handlers:
        action_handlers.update(mapping)

    def reducer(state: Any, action: Any, environment: Any) -> Reduction:
        for cls in type(action).__mro__:
            handler = action_handlers.get(cls)
            if handler is None:
                continue
            result = handler(state, action, environment)
            if not isinstance(result, tuple) or len(result) != 2:
                raise ReducerError(
                    "Handlers must return a (state, effect) tuple",
                    reducer_name=getattr(handler, "__name__", repr(handler)),
                    action_type=type(action).__name__,
                )
            return result
        return state, None

    reducer.handlers = action_handlers  # type: ignore[attr-defined]
    return reducer


def chain_reducers(*reducers: Reducer) -> Reducer:
    """
    依序串接多個 reducer：前一個的輸出狀態是下一個的輸入。

    由於每次 reducer 呼叫最多只能返回一個 Effect，
    當多於一個 reducer 返回 Effect 時拋出 ReducerError。
    """
    def reducer(state: Any, action: Any, environment: Any) -> Reduction:
        effect = None
        for sub in reducers:
            state, sub_effect = sub(state, action, environment)
            if sub_effect is not None:
                if effect is not None:
                    raise ReducerError(
                        "Only one effect may be returned per action",
                        reducer_name=getattr(sub, "__name__", repr(sub)),
                        action_type=type(action).__name__,
                    )
                effect = sub_effect
        return state, effect

    return reducer
