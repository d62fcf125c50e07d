"""測試共用的狀態、actions、reducers 與訂閱者。"""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from restorex import Store


# ====== States ======
class AppState(BaseModel):
    test_value: Optional[int] = None


class StringAppState(BaseModel):
    test_value: str = "Initial"


class CustomSubstate:
    """沒有 __eq__，只能以身份比較。"""

    def __init__(self, value: int) -> None:
        self.value = value


class CustomAppState(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    substate: CustomSubstate


class NonEquatable:
    def __init__(self, test_value: str = "Initial") -> None:
        self.test_value = test_value


class NonEquatableState(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    test_value: NonEquatable = Field(default_factory=NonEquatable)


class OtherState(BaseModel):
    name: Optional[str] = None
    age: Optional[int] = None


class ComplexAppState(BaseModel):
    test_value: Optional[int] = None
    other_state: Optional[OtherState] = None


# ====== Actions ======
@dataclass(frozen=True)
class SetValue:
    value: Optional[int]


@dataclass(frozen=True)
class SetValueString:
    value: str


@dataclass(frozen=True)
class SetCustomSubstate:
    value: int


@dataclass(frozen=True)
class SetNonEquatable:
    value: NonEquatable


@dataclass(frozen=True)
class SetOtherState:
    other_state: OtherState


@dataclass(frozen=True)
class Tracer:
    pass


@dataclass(frozen=True)
class NoOp:
    pass


# ====== Reducers ======
def app_reducer(state: AppState, action: Any, environment: Any):
    if isinstance(action, SetValue):
        return state.model_copy(update={"test_value": action.value}), None
    return state, None


def string_reducer(state: StringAppState, action: Any, environment: Any):
    if isinstance(action, SetValueString):
        return state.model_copy(update={"test_value": action.value}), None
    return state, None


def custom_reducer(state: CustomAppState, action: Any, environment: Any):
    if isinstance(action, SetCustomSubstate):
        return state.model_copy(update={"substate": CustomSubstate(action.value)}), None
    return state, None


def non_equatable_reducer(state: NonEquatableState, action: Any, environment: Any):
    if isinstance(action, SetNonEquatable):
        return state.model_copy(update={"test_value": action.value}), None
    if isinstance(action, SetValueString):
        return state.model_copy(update={"test_value": NonEquatable(action.value)}), None
    return state, None


def complex_reducer(state: ComplexAppState, action: Any, environment: Any):
    if isinstance(action, SetValue):
        return state.model_copy(update={"test_value": action.value}), None
    if isinstance(action, SetOtherState):
        return state.model_copy(update={"other_state": action.other_state}), None
    return state, None


# ====== Subscribers ======
class RecordingSubscriber:
    """記錄收到的每一個值。"""

    def __init__(self) -> None:
        self.received_states: List[Any] = []

    def new_state(self, state: Any) -> None:
        self.received_states.append(state)

    @property
    def received_value(self) -> Any:
        return self.received_states[-1]

    @property
    def new_state_call_count(self) -> int:
        return len(self.received_states)


class DispatchingSubscriber:
    """收到 test_value == 2 時 dispatch SetValue(5)。"""

    def __init__(self, store: Store) -> None:
        self.store = store

    def new_state(self, state: AppState) -> None:
        if state.test_value == 2:
            self.store.dispatch(SetValue(5))


def live_subscribers(store: Store) -> List[Any]:
    return [box.subscriber for box in store.subscriptions if box.subscriber is not None]


def make_store(reducer: Callable = app_reducer, state: Any = None, **kwargs: Any) -> Store:
    return Store(reducer, state if state is not None else AppState(), {"clock": "test"}, **kwargs)
