"""
restorex 訂閱模組。

Subscription 描述「如何從狀態中選出子狀態、以及何時略過通知」，
SubscriptionBox 則把一個 Subscription 綁定到一個以弱引用持有的訂閱者。
"""

import operator
import weakref
from typing import Any, Callable, Generic, Optional, Tuple, Union

from .errors import SubscriptionError
from .types import Comparator, S, Selector, T

# 表示「尚未有任何值」的哨兵，None 本身是合法的狀態
_UNSET: Any = object()


def supports_equality(value: Any) -> bool:
    """
    判斷值是否具備值相等比較能力。

    None 視為可比較；型別的 __eq__ 若仍是 object.__eq__（僅比較身份）則視為不可比較。
    """
    if value is None:
        return True
    eq = getattr(type(value), "__eq__", None)
    return eq is not None and eq is not object.__eq__


class _Select:
    __slots__ = ("selector",)

    def __init__(self, selector: Selector) -> None:
        self.selector = selector


class _Skip:
    """比較階段：when(old, new) 為 True 時略過通知。"""

    __slots__ = ("when", "implicit")

    def __init__(self, when: Comparator, implicit: bool = False) -> None:
        self.when = when
        self.implicit = implicit


def _skip_equal_values(old: Any, new: Any) -> bool:
    # 自動 skip_repeats：只有兩側都具備值相等能力時才比較
    return supports_equality(old) and supports_equality(new) and old == new


_Step = Union[_Select, _Skip]


class Subscription(Generic[S]):
    """
    不可變的訂閱描述：由 select 與比較階段組成的管線。

    每個建構方法都返回新的 Subscription，原物件不變。

    範例:
        ```python
        store.subscribe(
            subscriber,
            lambda s: s.select(lambda state: state.user).skip_repeats(),
        )
        ```
    """

    __slots__ = ("_steps",)

    def __init__(self, steps: Tuple[_Step, ...] = ()) -> None:
        self._steps = steps

    def select(self, selector: Callable[[S], T]) -> "Subscription[T]":
        """
        以投影函數選取子狀態。

        Args:
            selector: 接收目前值並返回子狀態的函數
        """
        return Subscription(self._steps + (_Select(selector),))

    def skip_repeats(self, is_repeat: Optional[Comparator] = None) -> "Subscription[S]":
        """
        當 is_repeat(old, new) 為 True 時略過通知。

        Args:
            is_repeat: 比較函數，預設為 ==
        """
        return Subscription(self._steps + (_Skip(is_repeat or operator.eq),))

    def skip(self, when: Comparator) -> "Subscription[S]":
        """當 when(old, new) 為 True 時略過通知。"""
        return Subscription(self._steps + (_Skip(when),))

    def only(self, when: Comparator) -> "Subscription[S]":
        """只有當 when(old, new) 為 True 時才通知。"""
        return Subscription(self._steps + (_Skip(lambda old, new: not when(old, new)),))

    def automatically_skip_repeats(self) -> "Subscription[S]":
        """附加一個依值相等自動略過重複的隱式階段。"""
        return Subscription(self._steps + (_Skip(_skip_equal_values, implicit=True),))

    @property
    def has_comparator(self) -> bool:
        """是否含有任何明確指定的比較階段。"""
        return any(isinstance(step, _Skip) and not step.implicit for step in self._steps)

    def evaluate(self, old_state: Any, new_state: Any) -> Tuple[bool, Any]:
        """
        讓舊、新兩個來源狀態同時流過管線。

        old_state 為 _UNSET 時（首次投遞）不會略過任何通知。

        Returns:
            (是否投遞, 投影後的新值)
        """
        old, new = old_state, new_state
        for step in self._steps:
            if isinstance(step, _Select):
                new = step.selector(new)
                if old is not _UNSET:
                    old = step.selector(old)
            elif old is not _UNSET and step.when(old, new):
                return False, None
        return True, new

    def __len__(self) -> int:
        return len(self._steps)

    def __repr__(self) -> str:
        names = []
        for step in self._steps:
            if isinstance(step, _Select):
                names.append("select")
            else:
                names.append("auto_skip_repeats" if step.implicit else "skip")
        return f"Subscription({' -> '.join(names) or 'identity'})"


class SubscriptionBox(Generic[S]):
    """
    把 Subscription 綁定到單一訂閱者。

    訂閱者以弱引用持有，Store 不會延長它的生命週期；
    訂閱者被回收後 is_alive 變為 False，Store 會在下一輪通知時移除此 box。
    """

    def __init__(self, subscription: Subscription[S], subscriber: Any) -> None:
        try:
            self._subscriber_ref = weakref.ref(subscriber)
        except TypeError as err:
            raise SubscriptionError(
                "Subscribers must support weak references",
                subscriber_type=type(subscriber).__name__,
            ) from err
        self.subscription = subscription
        self.active = True
        self.delivery_count = 0
        self._last_state: Any = _UNSET
        self._last_value: Any = _UNSET

    @property
    def subscriber(self) -> Optional[Any]:
        """返回訂閱者，若已被回收則返回 None。"""
        return self._subscriber_ref()

    @property
    def is_alive(self) -> bool:
        return self._subscriber_ref() is not None

    @property
    def has_delivered(self) -> bool:
        return self._last_state is not _UNSET

    @property
    def last_value(self) -> Any:
        """最近一次投遞給訂閱者的值。尚未投遞時拋出 LookupError。"""
        if self._last_value is _UNSET:
            raise LookupError("nothing has been delivered yet")
        return self._last_value

    def refers_to(self, subscriber: Any) -> bool:
        """是否綁定到同一個訂閱者（身份比較）。"""
        return self._subscriber_ref() is subscriber

    def new_values(self, state: Any, force: bool = False) -> bool:
        """
        以新的來源狀態評估訂閱，必要時通知訂閱者。

        Args:
            state: 已提交的完整狀態
            force: 為 True 時忽略比較階段（訂閱時的初始投遞）

        Returns:
            是否實際呼叫了訂閱者
        """
        subscriber = self._subscriber_ref()
        if subscriber is None:
            return False
        previous = _UNSET if force else self._last_state
        deliver, value = self.subscription.evaluate(previous, state)
        if not deliver:
            return False
        self._last_state = state
        self._last_value = value
        self.delivery_count += 1
        subscriber.new_state(value)
        return True

    def __repr__(self) -> str:
        subscriber = self._subscriber_ref()
        target = type(subscriber).__name__ if subscriber is not None else "<dead>"
        return f"SubscriptionBox({target}, {self.subscription!r})"


class BlockSubscriber(Generic[T]):
    """
    以普通函數充當訂閱者的轉接器。

    注意 Store 只弱引用訂閱者，呼叫端必須自行持有 BlockSubscriber 實例。
    """

    def __init__(self, block: Callable[[T], Any]) -> None:
        self.block = block

    def new_state(self, state: T) -> None:
        self.block(state)
