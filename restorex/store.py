import collections
import contextlib
import logging
import threading
from typing import Any, Callable, Deque, Generic, Iterator, List, Optional, Sequence

import reactivex
from reactivex import Observable
from reactivex.abc import ObserverBase, SchedulerBase
from reactivex.disposable import Disposable

from .effects import Effect, EffectScheduler
from .errors import ReducerError, ReentrantDispatchError
from .immutable_utils import to_immutable
from .middleware import MiddlewareChain
from .options import StoreOptions
from .subscription import BlockSubscriber, Subscription, SubscriptionBox
from .types import E, MiddlewareFactory, Reducer, S

logger = logging.getLogger(__name__)

SubscriptionTransform = Callable[[Subscription[Any]], Subscription[Any]]


class Store(Generic[S, E]):
    """
    狀態容器：以 reducer 回應 action 來替換狀態，並通知訂閱者狀態變更。

    dispatch 的流程為 middleware 鏈 -> reducer -> 提交狀態 -> 通知訂閱者 -> 排程 Effect，
    全程同步完成；只有 Effect 在 dispatch 之外非同步執行，其結果再經由 dispatch 送回。

    Store 是單一寫入者：所有狀態修改、middleware 組合與通知都在同一把可重入鎖下序列化，
    其他執行緒的 dispatch（例如 Effect 完成時）會等待目前的 dispatch 完整結束。
    """

    def __init__(
        self,
        reducer: Reducer,
        state: S,
        environment: E = None,
        middleware: Optional[Sequence[MiddlewareFactory]] = None,
        auto_skip_repeats: bool = True,
        *,
        effect_scheduler: Optional[EffectScheduler] = None,
        freeze_environment: bool = True,
        effect_max_workers: int = 4,
    ) -> None:
        """
        初始化 Store。

        Args:
            reducer: (state, action, environment) -> (new_state, effect_or_None)
            state: 初始狀態
            environment: 注入每次 reducer 呼叫的唯讀依賴
            middleware: 中介軟體工廠列表，建構後仍可透過 store.middleware 修改
            auto_skip_repeats: 子狀態可比較且未指定比較階段時，自動略過相等的重複通知
            effect_scheduler: 執行 Effect 的排程器，預設建立自有的執行緒池，teardown 時一併關閉
            freeze_environment: 是否把 dict/list/set 形式的 environment 轉為不可變結構
            effect_max_workers: 預設執行緒池的大小，指定 effect_scheduler 時不使用
        """
        self._reducer = reducer
        self._state = state
        self._environment = to_immutable(environment) if freeze_environment else environment
        self._middleware: List[MiddlewareFactory] = list(middleware or [])
        self._auto_skip_repeats = auto_skip_repeats
        self._owns_effect_scheduler = effect_scheduler is None
        self._effect_scheduler = effect_scheduler or EffectScheduler(max_workers=effect_max_workers)
        self._subscriptions: List[SubscriptionBox[S]] = []
        self._chain: Optional[MiddlewareChain] = None

        # 單一寫入者的序列化鎖
        self._lock = threading.RLock()
        self._is_reducing = False
        self._reentrant_violation = False
        self._is_notifying = False
        self._is_draining = False
        self._dispatch_depth = 0
        self._pending_actions: Deque[Any] = collections.deque()

    # ———— 狀態與設定 ————
    @property
    def state(self) -> S:
        """目前已提交的狀態。"""
        return self._state

    @property
    def environment(self) -> E:
        return self._environment

    @property
    def middleware(self) -> List[MiddlewareFactory]:
        """
        可變的中介軟體列表，修改會在下一次 dispatch 時生效。
        """
        return self._middleware

    @middleware.setter
    def middleware(self, middleware: Sequence[MiddlewareFactory]) -> None:
        with self._lock:
            self._middleware = list(middleware)

    @property
    def subscriptions(self) -> List[SubscriptionBox[S]]:
        """目前訂閱 box 的快照（可能包含訂閱者已被回收、尚待清理的 box）。"""
        with self._lock:
            return list(self._subscriptions)

    @property
    def auto_skip_repeats(self) -> bool:
        return self._auto_skip_repeats

    @property
    def effect_scheduler(self) -> EffectScheduler:
        return self._effect_scheduler

    # ———— dispatch ————
    def dispatch(self, action: Any) -> None:
        """
        分發一個動作，同步完成 reducer、狀態提交與訂閱者通知。

        - reducer 執行期間呼叫 dispatch 會拋出 ReentrantDispatchError
        - 訂閱者在通知期間呼叫 dispatch，action 會排入佇列，於本輪通知結束後依序處理
        - middleware 呼叫 dispatch 會從鏈的頂端同步重新進入

        Args:
            action: 任意 action，Store 不檢查其內容
        """
        with self._lock:
            if self._is_reducing:
                self._reentrant_violation = True
                logger.critical("reducer attempted to dispatch %s", type(action).__name__)
                raise ReentrantDispatchError(action)
            if self._is_notifying:
                logger.debug("deferring %s until the notification pass completes", type(action).__name__)
                self._pending_actions.append(action)
                return
            # 被回收的訂閱者在下一次 dispatch 前移除，即使 action 被中介軟體吞掉
            self._prune()
            self._dispatch_depth += 1
            try:
                self._dispatch_function()(action)
            except Exception:
                self._discard_pending(action)
                raise
            finally:
                self._dispatch_depth -= 1
            self._drain_pending()

    def _dispatch_function(self) -> MiddlewareChain:
        # 中介軟體列表變動後，下一次 dispatch 重新組合鏈
        if self._chain is None or not self._chain.matches(self._middleware):
            self._chain = MiddlewareChain(
                self._middleware,
                self.dispatch,
                lambda: self._state,
                self._reduce,
            )
            logger.debug("built %r", self._chain)
        return self._chain

    def _reduce(self, action: Any) -> None:
        """
        鏈末端：呼叫 reducer、提交新狀態、通知訂閱者，最後排程 Effect。
        """
        with self._lock:
            self._is_reducing = True
            self._reentrant_violation = False
            try:
                reduction = self._reducer(self._state, action, self._environment)
            finally:
                self._is_reducing = False
            if self._reentrant_violation:
                # 即使 reducer 吞掉了異常，也拒絕提交其結果
                self._reentrant_violation = False
                raise ReentrantDispatchError(action)
            if not isinstance(reduction, tuple) or len(reduction) != 2:
                raise ReducerError(
                    "Reducers must return a (state, effect) tuple",
                    reducer_name=getattr(self._reducer, "__name__", repr(self._reducer)),
                    action_type=type(action).__name__,
                )
            new_state, effect = reduction
            self._state = new_state
            self._notify(new_state)
            if effect is not None:
                self._schedule(effect)

    def _schedule(self, effect: Effect[Any]) -> None:
        if not isinstance(effect, Effect):
            raise ReducerError(
                "Reducers may only return an Effect or None",
                reducer_name=getattr(self._reducer, "__name__", repr(self._reducer)),
                action_type=type(effect).__name__,
            )
        self._effect_scheduler.schedule(effect, self._dispatch_effect_result)

    def _dispatch_effect_result(self, action: Any) -> None:
        with self._lock:
            if self._dispatch_depth or self._is_notifying:
                # 結果在同一執行緒的 dispatch 進行中到達，改由其他執行緒在 dispatch 結束後送回
                logger.debug("re-posting effect result %s until the current dispatch returns", type(action).__name__)
                self._effect_scheduler.redispatch(action, self.dispatch)
                return
        self.dispatch(action)

    def _drain_pending(self) -> None:
        if self._is_notifying or self._is_draining or self._is_reducing:
            return
        self._is_draining = True
        try:
            while self._pending_actions:
                action = self._pending_actions.popleft()
                self._dispatch_depth += 1
                try:
                    self._dispatch_function()(action)
                except Exception:
                    self._discard_pending(action)
                    raise
                finally:
                    self._dispatch_depth -= 1
        finally:
            self._is_draining = False

    def _discard_pending(self, failed_action: Any) -> None:
        # 失敗的 dispatch 所排入的 action 不得延後到之後無關的 dispatch 才執行
        if self._pending_actions:
            logger.warning(
                "dropping %d queued action(s) after %s failed",
                len(self._pending_actions),
                type(failed_action).__name__,
            )
            self._pending_actions.clear()

    # ———— 通知 ————
    @contextlib.contextmanager
    def _notifying(self) -> Iterator[None]:
        previous = self._is_notifying
        self._is_notifying = True
        try:
            yield
        finally:
            self._is_notifying = previous

    def _notify(self, state: S) -> None:
        # 以快照迭代；通知期間新增的訂閱保留在 self._subscriptions 中不會遺失
        with self._notifying():
            for box in list(self._subscriptions):
                if box.active and box.is_alive:
                    box.new_values(state)
        self._prune()

    def _prune(self) -> None:
        dead = [box for box in self._subscriptions if not box.is_alive]
        if not dead:
            return
        for box in dead:
            box.active = False
        self._subscriptions[:] = [box for box in self._subscriptions if box.active]
        logger.debug("pruned %d released subscriber(s)", len(dead))

    # ———— 訂閱 ————
    def subscribe(self, subscriber: Any, transform: Optional[SubscriptionTransform] = None) -> None:
        """
        訂閱狀態變更；同一訂閱者重複訂閱時會取代原有的訂閱。

        訂閱後會立即以目前（投影後的）狀態通知一次訂閱者。

        Args:
            subscriber: 具有 new_state(value) 方法、可被弱引用的對象
            transform: 接收空白 Subscription 並返回配置後 Subscription 的函數

        範例:
            ```python
            store.subscribe(view, lambda s: s.select(lambda state: state.count).skip_repeats())
            ```
        """
        subscription: Subscription[Any] = Subscription()
        if transform is not None:
            subscription = transform(subscription)
        if self._auto_skip_repeats and not subscription.has_comparator:
            subscription = subscription.automatically_skip_repeats()

        box: SubscriptionBox[S] = SubscriptionBox(subscription, subscriber)
        with self._lock:
            self._remove_box(subscriber)
            self._prune()
            self._subscriptions.append(box)
            logger.debug("subscribed %s with %r", type(subscriber).__name__, subscription)
            with self._notifying():
                box.new_values(self._state, force=True)
            self._drain_pending()

    def unsubscribe(self, subscriber: Any) -> None:
        """
        取消訂閱；訂閱者未訂閱時不做任何事。
        """
        with self._lock:
            if self._remove_box(subscriber):
                logger.debug("unsubscribed %s", type(subscriber).__name__)

    def _remove_box(self, subscriber: Any) -> bool:
        for index, box in enumerate(self._subscriptions):
            if box.refers_to(subscriber):
                box.active = False
                del self._subscriptions[index]
                return True
        return False

    def select(self, transform: Optional[SubscriptionTransform] = None) -> Observable:
        """
        以 Observable 的形式觀察（投影後的）狀態。

        每個觀察者都有自己的訂閱，訂閱時立即收到目前值；dispose 即取消訂閱。

        Args:
            transform: 與 subscribe 相同的訂閱配置函數

        Returns:
            發出投影後狀態的 Observable
        """
        def on_subscribe(observer: ObserverBase, scheduler: Optional[SchedulerBase] = None) -> Disposable:
            subscriber = BlockSubscriber(observer.on_next)
            self.subscribe(subscriber, transform)
            # disposable 持有訂閱者，保證其存活到 dispose 為止
            return Disposable(lambda: self.unsubscribe(subscriber))

        return reactivex.create(on_subscribe)

    # ———— 生命週期 ————
    def teardown(self) -> None:
        """
        移除所有訂閱並呼叫中介軟體的 teardown 鉤子，並關閉 Store 自行建立的 EffectScheduler。

        未完成的 Effect 由其持有者管理，不會在此取消，完成後仍會送回結果。
        外部傳入的 EffectScheduler 由呼叫端負責關閉。
        """
        with self._lock:
            for box in self._subscriptions:
                box.active = False
            self._subscriptions.clear()
            self._pending_actions.clear()
            for mw in self._middleware:
                teardown = getattr(mw, "teardown", None)
                if callable(teardown):
                    teardown()
            self._chain = None
            if self._owns_effect_scheduler:
                self._effect_scheduler.shutdown()

    def __enter__(self) -> "Store[S, E]":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.teardown()

    def __repr__(self) -> str:
        return f"Store(state={self._state!r}, subscriptions={len(self._subscriptions)}, middleware={len(self._middleware)})"


def create_store(
    reducer: Reducer,
    state: S,
    environment: E = None,
    middleware: Optional[Sequence[MiddlewareFactory]] = None,
    **options: Any,
) -> Store[S, E]:
    """
    以經過驗證的選項創建 Store。

    Args:
        reducer: (state, action, environment) -> (new_state, effect_or_None)
        state: 初始狀態
        environment: 注入每次 reducer 呼叫的唯讀依賴
        middleware: 中介軟體工廠列表
        **options: StoreOptions 的欄位，未知或不合法的選項會拋出 ConfigurationError

    Returns:
        Store: 新創建的 Store 實例。
    """
    opts = StoreOptions.parse(**options)
    return Store(
        reducer,
        state,
        environment,
        middleware,
        auto_skip_repeats=opts.auto_skip_repeats,
        freeze_environment=opts.freeze_environment,
        effect_max_workers=opts.effect_max_workers,
    )
