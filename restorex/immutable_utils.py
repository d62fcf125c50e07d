# restorex/immutable_utils.py
from collections.abc import Mapping
from typing import Any

from immutables import Map


def to_immutable(obj: Any) -> Any:
    """
    凍結 environment：遞歸把映射轉為 Map、list/tuple 轉為 tuple、集合轉為 frozenset。

    Pydantic 模型、dataclass 等其他對象保持原樣，由呼叫端自行決定其可變性。
    """
    if isinstance(obj, (Map, Mapping)):
        # Map 本身不可變，但其中的值仍可能是可變容器
        return Map({key: to_immutable(value) for key, value in obj.items()})
    if isinstance(obj, (list, tuple)):
        return tuple(map(to_immutable, obj))
    if isinstance(obj, (set, frozenset)):
        return frozenset(map(to_immutable, obj))
    return obj
