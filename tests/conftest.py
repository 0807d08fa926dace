"""
測試共用的 Store、Action 與 fixtures。
"""
import threading

import pytest

from reactivestore import (
    Action,
    BaseMiddleware,
    DispatchQueue,
    Store,
    SyncAction,
    global_error_handler,
)


class RecordingStore(Store):
    def __init__(self, *middlewares, config=None):
        super().__init__(*middlewares, config=config)
        self.log = []


class Record(SyncAction):
    """同步 Action：把自己的名稱寫入 store.log"""

    def __init__(self, name):
        super().__init__(type=name)

    def apply(self, store):
        store.log.append(self.type)


class Manual(Action):
    """由測試手動結束的 Action"""

    def __init__(self, name):
        super().__init__(type=name)
        self.completion = None
        self.store = None
        self.started = threading.Event()

    def execute(self, store, completion):
        self.store = store
        self.completion = completion
        store.log.append(f"start {self.type}")
        self.started.set()

    def finish(self):
        self.store.log.append(f"end {self.type}")
        self.completion()


class Spy(BaseMiddleware):
    """記錄每個鉤子的呼叫順序"""

    def __init__(self, name, events, allow=True):
        self.name = name
        self.events = events
        self.allow = allow

    def should_execute(self, store, action):
        self.events.append((self.name, "should", action.type))
        return self.allow

    def did_execute(self, store, action):
        self.events.append((self.name, "did", action.type))

    def on_error(self, store, action, error):
        self.events.append((self.name, "error", action.type))


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def queue():
    q = DispatchQueue("test-queue")
    yield q
    q.shutdown()


@pytest.fixture
def reported_errors():
    errors = []
    global_error_handler.register_handler(errors.append)
    yield errors
    global_error_handler.unregister_handler(errors.append)
