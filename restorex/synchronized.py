"""
以互斥鎖保護的共享值容器。

Store 自身的狀態只在單一寫入者上下文中修改；
當其他值需要在多個執行緒之間共享時，使用 Synchronized 包裝。
"""

import copy
import threading
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class Synchronized(Generic[T]):
    """
    線程安全的值容器。

    讀取時返回快照，寫入與讀改寫操作都在鎖內執行。
    使用可重入鎖，因此在 update/access 的回調內再次讀取不會死鎖。

    範例:
        ```python
        counter = Synchronized(0)
        counter.update(lambda n: n + 1)

        registry = Synchronized({})
        registry.access(lambda d: d.__setitem__("key", True))
        ```
    """

    def __init__(self, value: T) -> None:
        self._value = value
        self._lock = threading.RLock()

    @property
    def value(self) -> T:
        """返回目前值的淺拷貝快照。"""
        with self._lock:
            return copy.copy(self._value)

    @value.setter
    def value(self, new_value: T) -> None:
        with self._lock:
            self._value = new_value

    def update(self, transform: Callable[[T], T]) -> T:
        """
        在鎖內以 transform 的返回值取代目前值。

        Args:
            transform: 接收舊值並返回新值的函數

        Returns:
            更新後的值
        """
        with self._lock:
            self._value = transform(self._value)
            return self._value

    def access(self, fn: Callable[[T], R]) -> R:
        """
        在鎖內以目前值呼叫 fn，並返回其結果。

        適合就地修改可變容器，或計算衍生值。
        """
        with self._lock:
            return fn(self._value)

    def __repr__(self) -> str:
        return f"Synchronized({self.value!r})"
