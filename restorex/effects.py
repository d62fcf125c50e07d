"""
restorex 副作用模組。

Reducer 可以返回一個 Effect：它只是一段非同步工作的「描述」，
真正的執行交給 EffectScheduler，完成後產生的 action 會重新送回 Store 的 dispatch。
Reducer 本身永遠拿不到能呼叫 dispatch 的句柄。
"""

import asyncio
import inspect
import logging
import threading
from typing import Any, Awaitable, Callable, Generic, Optional, Union

import reactivex
from reactivex import Observable, operators as ops
from reactivex.abc import DisposableBase, SchedulerBase
from reactivex.scheduler import (
    ImmediateScheduler, NewThreadScheduler, ThreadPoolScheduler, TrampolineScheduler
)

from .errors import ConfigurationError, EffectError, ErrorHandler, global_error_handler
from .types import A, DispatchFunction

logger = logging.getLogger(__name__)

EffectWork = Callable[[], Union[Optional[A], Awaitable[Optional[A]]]]


def _work_name(work: Any) -> str:
    return getattr(work, "__qualname__", None) or getattr(work, "__name__", None) or type(work).__name__


class Effect(Generic[A]):
    """
    一段延遲執行的非同步工作，完成後可產生一個 action。

    work 可以是：
    - 無參數的普通函數，返回 action 或 None（在執行緒池上執行）
    - 無參數的 coroutine function，返回 action 或 None
    - 使用 Effect.from_observable 包裝的 Observable（取第一個元素）

    Effect 交給排程器後由持有者自行管理生命週期，可透過 cancel() 取消；
    Store 不保存、也不會自動取消未完成的 Effect。

    範例:
        ```python
        def reducer(state, action, env):
            if isinstance(action, LoadCount):
                async def load():
                    return CountLoaded(await env.api.fetch_count())
                return state.model_copy(update={"loading": True}), Effect(load)
            return state, None
        ```
    """

    def __init__(self, work: Union[EffectWork, Observable], name: Optional[str] = None) -> None:
        if not callable(work) and not isinstance(work, Observable):
            raise EffectError("Effect work must be callable or an Observable", effect_name=repr(work))
        self._work = work
        self.name = name or _work_name(work)
        self._lock = threading.Lock()
        self._disposable: Optional[DisposableBase] = None
        self._scheduled = False
        self._cancelled = False

    @classmethod
    def of(cls, action: A) -> "Effect[A]":
        """建立一個直接產生指定 action 的 Effect。"""
        return cls(lambda: action, name=f"of({type(action).__name__})")

    @classmethod
    def from_observable(cls, source: Observable) -> "Effect[Any]":
        """以 Observable 建立 Effect，只取其第一個元素。"""
        return cls(source)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def scheduled(self) -> bool:
        return self._scheduled

    def cancel(self) -> None:
        """取消此 Effect；已完成或尚未排程時也可安全呼叫。取消後不會產生 dispatch。"""
        with self._lock:
            self._cancelled = True
            disposable, self._disposable = self._disposable, None
        if disposable is not None:
            disposable.dispose()

    def to_observable(self, scheduler: SchedulerBase) -> Observable:
        """
        把工作轉換為最多發出一個元素的 Observable。

        Args:
            scheduler: 執行普通函數工作的排程器
        """
        work = self._work
        if isinstance(work, Observable):
            # 同步的來源也必須離開 reducer 的呼叫堆疊
            return work.pipe(ops.subscribe_on(scheduler), ops.take(1))
        if inspect.iscoroutinefunction(work):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                # 在目前的事件迴圈上執行，完成回調也回到同一個迴圈
                return reactivex.defer(lambda _: reactivex.from_future(loop.create_task(work())))
            return reactivex.from_callable(lambda: asyncio.run(work()), scheduler)
        return reactivex.from_callable(work, scheduler)

    def _attach(self, disposable: DisposableBase) -> None:
        with self._lock:
            if self._scheduled:
                raise EffectError("Effect has already been scheduled", effect_name=self.name)
            self._scheduled = True
            if not self._cancelled:
                self._disposable = disposable
                return
        disposable.dispose()

    def _release(self) -> None:
        with self._lock:
            self._disposable = None

    def __repr__(self) -> str:
        status = "cancelled" if self._cancelled else "scheduled" if self._scheduled else "pending"
        return f"Effect({self.name}, {status})"


class EffectScheduler:
    """
    執行 reducer 返回的 Effect，並把結果 action 送回 dispatch。

    - 成功且有 action：呼叫 dispatch(action)
    - 成功但為 None：不做任何事
    - 失敗：包裝為 EffectError 交給錯誤處理器，不回拋給 Store

    工作永遠在觸發它的 dispatch 之外執行，因此不接受同步排程器
    （ImmediateScheduler、CurrentThreadScheduler 等 trampoline）。

    預設情況下結果在工作執行緒上回送，Store 的鎖負責序列化；
    需要回到「主」執行環境（例如 asyncio 事件迴圈）時，以 observe_on 指定該環境的排程器。
    """

    def __init__(
        self,
        scheduler: Optional[SchedulerBase] = None,
        observe_on: Optional[SchedulerBase] = None,
        max_workers: int = 4,
        error_handler: Optional[ErrorHandler] = None,
    ) -> None:
        """
        Args:
            scheduler: 執行工作的排程器，預設為自有的 ThreadPoolScheduler
            observe_on: 可選，把結果轉回的「主」排程器（例如 AsyncIOScheduler）
            max_workers: 預設執行緒池的大小
            error_handler: 錯誤處理器，預設為 global_error_handler
        """
        if isinstance(scheduler, (ImmediateScheduler, TrampolineScheduler)):
            raise ConfigurationError(
                "Effects cannot run on a synchronous scheduler",
                component="EffectScheduler",
                config_key="scheduler",
            )
        self._owned_pool: Optional[ThreadPoolScheduler] = None
        if scheduler is None:
            self._owned_pool = ThreadPoolScheduler(max_workers)
            scheduler = self._owned_pool
        self._scheduler = scheduler
        self._observe_on = observe_on
        self._error_handler = error_handler or global_error_handler
        self._redispatcher = NewThreadScheduler()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def schedule(self, effect: Effect[Any], dispatch: DispatchFunction) -> Effect[Any]:
        """
        開始執行 effect。

        Args:
            effect: 要執行的 Effect
            dispatch: 結果 action 的接收者

        Returns:
            同一個 Effect，持有者可用它取消
        """
        if effect.scheduled:
            raise EffectError("Effect has already been scheduled", effect_name=effect.name)
        if effect.cancelled:
            logger.debug("skipping cancelled %r", effect)
            return effect
        if self._closed:
            self._error_handler.handle(
                EffectError("EffectScheduler has been shut down", effect_name=effect.name)
            )
            return effect

        source = effect.to_observable(self._scheduler).pipe(
            ops.filter(lambda action: action is not None),
        )
        if self._observe_on is not None:
            source = source.pipe(ops.observe_on(self._observe_on))

        def on_next(action: Any) -> None:
            if effect.cancelled:
                return
            logger.debug("%r produced %s", effect, type(action).__name__)
            dispatch(action)

        def on_error(err: Exception) -> None:
            effect._release()
            self._error_handler.handle(
                EffectError(f"Effect failed: {err}", effect_name=effect.name, cause=err)
            )

        disposable = source.subscribe(
            on_next=on_next,
            on_error=on_error,
            on_completed=effect._release,
        )
        effect._attach(disposable)
        return effect

    def redispatch(self, action: Any, dispatch: DispatchFunction) -> None:
        """
        在新的執行緒上 dispatch 一個結果 action。

        用於結果在 dispatch 進行中、於同一執行緒上到達的情況：
        新執行緒會等待 Store 的鎖，也就是等目前的 dispatch 完整結束。
        """
        def run(scheduler: SchedulerBase, state: Any = None) -> None:
            try:
                dispatch(action)
            except Exception as err:
                self._error_handler.handle(
                    EffectError(f"Effect result dispatch failed: {err}", effect_name=type(action).__name__, cause=err)
                )

        self._redispatcher.schedule(run)

    def shutdown(self) -> None:
        """
        停止接受新的 Effect，並釋放自有的執行緒池。

        已在執行的工作不會被取消，完成後仍會回送結果。
        """
        self._closed = True
        if self._owned_pool is not None:
            self._owned_pool.executor.shutdown(wait=False)
