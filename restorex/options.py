"""
Store 的配置模型。
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, PositiveInt, ValidationError

from .errors import ConfigurationError


class StoreOptions(BaseModel):
    """
    create_store 接受的配置選項。

    Attributes:
        auto_skip_repeats: 子狀態可比較且未指定比較階段時，自動略過相等的重複通知
        freeze_environment: 是否把 dict/list/set 形式的 environment 轉為不可變結構
        effect_max_workers: 預設 EffectScheduler 執行緒池大小
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    auto_skip_repeats: bool = True
    freeze_environment: bool = True
    effect_max_workers: PositiveInt = 4

    @classmethod
    def parse(cls, **options: Any) -> "StoreOptions":
        """驗證關鍵字參數，失敗時拋出 ConfigurationError。"""
        try:
            return cls(**options)
        except ValidationError as err:
            first = err.errors()[0]
            key = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ConfigurationError(
                f"Invalid store option: {first.get('msg')}",
                component="Store",
                config_key=key,
            ) from err
