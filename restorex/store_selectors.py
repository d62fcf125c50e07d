import functools
from typing import Any, Callable, Optional, Tuple

from .types import Selector


def create_selector(*selectors: Selector, result_fn: Optional[Callable[..., Any]] = None, deep: bool = False) -> Selector:
    """
    創建一個複合選擇器，記住最近一次的輸入與結果。

    當所有輸入選擇器的輸出與上一次相同（淺比較以身份、深比較以 ==）時，
    直接返回上一次的結果，不重新呼叫 result_fn；
    這讓 skip_repeats 可以用身份比較快速判斷子狀態未變。

    Args:
        *selectors: 多個輸入選擇器，這些函數會從 state 中提取對應的值
        result_fn: 處理輸出結果的函數，將多個選擇器的輸出進行處理
        deep: 是否以 == 比較輸入（預設為身份比較）

    Returns:
        經過記憶化的 selector 函數

    範例:
        ```python
        select_visible = create_selector(
            lambda s: s.todos,
            lambda s: s.filter,
            result_fn=lambda todos, f: tuple(t for t in todos if f(t)),
        )
        store.subscribe(view, lambda sub: sub.select(select_visible))
        ```
    """
    if not selectors:
        raise ValueError("create_selector requires at least one input selector")

    # 如果沒有 result_fn 且只有一個選擇器，直接返回該選擇器
    if result_fn is None and len(selectors) == 1:
        return selectors[0]

    # 如果沒有提供 result_fn，預設為返回所有輸入值的元組
    combine: Callable[..., Any] = result_fn or (lambda *args: args)
    last_inputs: Optional[Tuple[Any, ...]] = None
    last_result: Any = None

    def matches(inputs: Tuple[Any, ...], cached: Tuple[Any, ...]) -> bool:
        if deep:
            return inputs == cached
        return all(a is b for a, b in zip(inputs, cached))

    @functools.wraps(combine)
    def selector(state: Any) -> Any:
        nonlocal last_inputs, last_result
        inputs = tuple(select(state) for select in selectors)
        if last_inputs is not None and matches(inputs, last_inputs):
            return last_result
        last_result = combine(*inputs)
        last_inputs = inputs
        return last_result

    def cache_clear() -> None:
        nonlocal last_inputs, last_result
        last_inputs = None
        last_result = None

    selector.cache_clear = cache_clear  # type: ignore[attr-defined]
    return selector
