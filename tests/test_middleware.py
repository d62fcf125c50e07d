"""中介軟體鏈：裝飾、注入、存取狀態、執行期修改，以及內建中介軟體。"""

import logging
from dataclasses import replace

import pytest

from restorex import (
    BaseMiddleware, DevToolsMiddleware, LoggerMiddleware, MiddlewareChain, MiddlewareError,
    PerformanceMonitorMiddleware, Store, ThunkMiddleware,
)

from .fakes import (
    AppState, NoOp, RecordingSubscriber, SetValue, SetValueString, StringAppState, app_reducer,
    string_reducer,
)


def first_middleware(dispatch, get_state):
    def middleware(next_dispatch):
        def handler(action):
            if isinstance(action, SetValueString):
                action = replace(action, value=action.value + " First Middleware")
            next_dispatch(action)
        return handler
    return middleware


def second_middleware(dispatch, get_state):
    def middleware(next_dispatch):
        def handler(action):
            if isinstance(action, SetValueString):
                action = replace(action, value=action.value + " Second Middleware")
            next_dispatch(action)
        return handler
    return middleware


def dispatching_middleware(dispatch, get_state):
    def middleware(next_dispatch):
        def handler(action):
            if isinstance(action, SetValue):
                dispatch(SetValueString(str(action.value or 0)))
            next_dispatch(action)
        return handler
    return middleware


def state_accessing_middleware(dispatch, get_state):
    def middleware(next_dispatch):
        def handler(action):
            # 只對非 "Not OK" 的 action 注入，避免無限遞迴
            if get_state().test_value == "OK" and getattr(action, "value", None) != "Not OK":
                dispatch(SetValueString("Not OK"))
                next_dispatch(NoOp())
            else:
                next_dispatch(action)
        return handler
    return middleware


def executing(block):
    def factory(dispatch, get_state):
        def middleware(next_dispatch):
            def handler(action):
                block()
            return handler
        return middleware
    return factory


def test_can_decorate_dispatch_function():
    store = Store(string_reducer, StringAppState(), middleware=[first_middleware, second_middleware])
    subscriber = RecordingSubscriber()
    store.subscribe(subscriber)

    store.dispatch(SetValueString("OK"))

    assert store.state.test_value == "OK First Middleware Second Middleware"
    assert subscriber.received_value.test_value == "OK First Middleware Second Middleware"


def test_middleware_can_dispatch_actions():
    store = Store(
        string_reducer,
        StringAppState(),
        middleware=[first_middleware, second_middleware, dispatching_middleware],
    )
    subscriber = RecordingSubscriber()
    store.subscribe(subscriber)

    store.dispatch(SetValue(10))

    assert store.state.test_value == "10 First Middleware Second Middleware"


def test_middleware_can_access_store_state():
    store = Store(string_reducer, StringAppState(test_value="OK"), middleware=[state_accessing_middleware])

    store.dispatch(SetValueString("Action That Won't Go Through"))

    assert store.state.test_value == "Not OK"


def test_can_mutate_middleware_after_init():
    store = Store(string_reducer, StringAppState(), middleware=[])
    calls = []

    store.middleware.append(executing(lambda: calls.append("added")))
    store.dispatch(SetValueString(""))
    assert calls == ["added"]

    store.middleware = []
    store.dispatch(SetValueString(""))
    assert calls == ["added"]


def test_swallowing_middleware_prevents_reducer_and_notification():
    store = Store(app_reducer, AppState(), middleware=[executing(lambda: None)])
    subscriber = RecordingSubscriber()
    store.subscribe(subscriber)

    store.dispatch(SetValue(1))

    assert store.state.test_value is None
    assert subscriber.new_state_call_count == 1


def test_middleware_calling_next_twice_reduces_twice():
    def twice(dispatch, get_state):
        def middleware(next_dispatch):
            def handler(action):
                next_dispatch(action)
                next_dispatch(SetValue(get_state().test_value + 1))
            return handler
        return middleware

    store = Store(app_reducer, AppState(), middleware=[twice], auto_skip_repeats=False)
    subscriber = RecordingSubscriber()
    store.subscribe(subscriber)

    store.dispatch(SetValue(1))

    assert [s.test_value for s in subscriber.received_states] == [None, 1, 2]


def test_middleware_chain_runs_in_list_order():
    order = []

    def tagging(tag):
        def factory(dispatch, get_state):
            def middleware(next_dispatch):
                def handler(action):
                    order.append(tag)
                    next_dispatch(action)
                return handler
            return middleware
        factory.__name__ = tag
        return factory

    chain = MiddlewareChain(
        [tagging("a"), tagging("b"), tagging("c")],
        dispatch=lambda action: None,
        get_state=lambda: None,
        terminal=lambda action: order.append("reducer"),
    )
    chain(NoOp())

    assert order == ["a", "b", "c", "reducer"]
    assert len(chain) == 3
    assert [link.name for link in chain.links] == ["a", "b", "c"]


def test_middleware_chain_matches_by_identity():
    factories = [first_middleware, second_middleware]
    chain = MiddlewareChain(factories, lambda a: None, lambda: None, lambda a: None)

    assert chain.matches(list(factories))
    assert not chain.matches([second_middleware, first_middleware])
    assert not chain.matches([first_middleware])


def test_non_callable_middleware_is_rejected():
    with pytest.raises(MiddlewareError):
        MiddlewareChain([object()], lambda a: None, lambda: None, lambda a: None)


def test_middleware_must_return_callable_handler():
    def broken(dispatch, get_state):
        return lambda next_dispatch: None

    store = Store(app_reducer, AppState(), middleware=[broken])

    with pytest.raises(MiddlewareError):
        store.dispatch(SetValue(1))


def test_thunk_middleware_runs_callable_actions():
    store = Store(app_reducer, AppState(), middleware=[ThunkMiddleware()])
    seen = []

    def thunk(dispatch, get_state):
        dispatch(SetValue(1))
        seen.append(get_state().test_value)
        dispatch(SetValue(get_state().test_value + 1))

    store.dispatch(thunk)

    assert seen == [1]
    assert store.state.test_value == 2


def test_devtools_middleware_records_history():
    devtools = DevToolsMiddleware()
    store = Store(app_reducer, AppState(), middleware=[devtools])

    store.dispatch(SetValue(1))
    store.dispatch(SetValue(2))

    history = devtools.get_history()
    assert [(prev.test_value, action.value, nxt.test_value) for prev, action, nxt in history] == [
        (None, 1, 1),
        (1, 2, 2),
    ]

    store.teardown()
    assert devtools.get_history() == []


def test_devtools_middleware_limits_history():
    devtools = DevToolsMiddleware(limit=2)
    store = Store(app_reducer, AppState(), middleware=[devtools])

    for value in range(5):
        store.dispatch(SetValue(value))

    assert [action.value for _, action, _ in devtools.get_history()] == [3, 4]


def test_performance_monitor_records_metrics(caplog):
    ticks = iter([0.0, 0.010, 1.0, 1.250])
    monitor = PerformanceMonitorMiddleware(threshold_ms=100, clock=lambda: next(ticks))
    store = Store(app_reducer, AppState(), middleware=[monitor])

    with caplog.at_level(logging.WARNING, logger="restorex.middleware"):
        store.dispatch(SetValue(1))
        store.dispatch(SetValue(2))

    metrics = monitor.get_metrics()["SetValue"]
    assert metrics["count"] == 2
    assert metrics["min"] == pytest.approx(10.0)
    assert metrics["max"] == pytest.approx(250.0)
    assert metrics["avg"] == pytest.approx(130.0)
    assert sum("exceeded threshold" in record.getMessage() for record in caplog.records) == 1


def test_logger_middleware_logs_before_and_after(caplog):
    store = Store(app_reducer, AppState(), middleware=[LoggerMiddleware()])

    with caplog.at_level(logging.INFO, logger="restorex.middleware"):
        store.dispatch(SetValue(4))

    messages = [record.getMessage() for record in caplog.records]
    assert any("dispatching SetValue" in message for message in messages)
    assert any(message.startswith("state after SetValue") and "test_value=4" in message for message in messages)


class RecordingMiddleware(BaseMiddleware):
    def __init__(self):
        self.events = []

    def on_next(self, action, prev_state):
        self.events.append(("next", type(action).__name__, prev_state.test_value))

    def on_complete(self, next_state, action):
        self.events.append(("complete", type(action).__name__, next_state.test_value))

    def on_error(self, error, action):
        self.events.append(("error", type(action).__name__, type(error).__name__))

    def teardown(self):
        self.events.append(("teardown",))


def test_base_middleware_hooks():
    recorder = RecordingMiddleware()
    store = Store(app_reducer, AppState(), middleware=[recorder])

    store.dispatch(SetValue(3))
    store.teardown()

    assert recorder.events == [
        ("next", "SetValue", None),
        ("complete", "SetValue", 3),
        ("teardown",),
    ]


def test_base_middleware_reports_errors_and_reraises():
    def failing_reducer(state, action, environment):
        raise ValueError("boom")

    recorder = RecordingMiddleware()
    store = Store(failing_reducer, AppState(), middleware=[recorder])

    with pytest.raises(ValueError):
        store.dispatch(SetValue(1))

    assert recorder.events == [("next", "SetValue", None), ("error", "SetValue", "ValueError")]
