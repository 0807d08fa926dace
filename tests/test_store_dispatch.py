"""
Store 分發協議測試：立即執行或入列、FIFO 排空、中介軟體鉤子與錯誤路徑。
"""
import logging
import random
import threading

import pytest

from reactivestore import (
    Action,
    ActionError,
    BaseMiddleware,
    DispatchQueue,
    FilterMiddleware,
    MiddlewareError,
    ReentrantDispatchError,
    Store,
    StoreConfig,
    StoreError,
    SyncAction,
    create_action,
)
from conftest import Manual, Record, RecordingStore, Spy


class TestImmediateDispatch:

    def test_idle_dispatch_runs_before_returning(self, store):
        future = store.dispatch(Record("a"))

        assert store.log == ["a"]
        assert future.done()
        assert future.result() is True
        assert not store.is_dispatching

    def test_completion_is_invoked(self, store):
        calls = []
        store.dispatch(Record("a"), completion=lambda: calls.append("done"))

        assert calls == ["done"]

    def test_flag_set_while_action_in_flight(self, store):
        action = Manual("a")
        store.dispatch(action)

        assert store.is_dispatching
        action.finish()
        assert not store.is_dispatching


class TestQueuedDispatch:

    def test_dispatch_while_busy_returns_without_running(self, store):
        store.dispatch(Manual("a"))
        future = store.dispatch(Record("b"))

        assert store.log == ["start a"]
        assert not future.done()
        assert store.pending_count == 1

    def test_delayed_first_action_then_two_queued(self, store):
        a = Manual("a")
        b = Manual("b")
        c = Manual("c")

        store.dispatch(a)
        store.dispatch(b)
        store.dispatch(c)
        assert store.log == ["start a"]
        assert store.pending_count == 2

        a.finish()
        assert store.log == ["start a", "end a", "start b"]
        b.finish()
        assert store.log == ["start a", "end a", "start b", "end b", "start c"]
        assert store.is_dispatching

        c.finish()
        assert store.log[-1] == "end c"
        assert not store.is_dispatching
        assert store.pending_count == 0

    def test_queued_actions_run_after_all_previous(self, store):
        blocker = Manual("blocker")
        store.dispatch(blocker)
        for name in "xyz":
            store.dispatch(Record(name))

        blocker.finish()

        assert store.log == ["start blocker", "end blocker", "x", "y", "z"]

    def test_long_run_of_synchronous_actions_does_not_recurse(self, store):
        blocker = Manual("blocker")
        store.dispatch(blocker)
        futures = [store.dispatch(Record(str(i))) for i in range(5000)]

        blocker.finish()

        assert len(store.log) == 5002
        assert store.log[2:] == [str(i) for i in range(5000)]
        assert all(f.result(0) is True for f in futures)
        assert not store.is_dispatching

    def test_completion_callback_fires_before_next_action(self, store):
        a = Manual("a")
        store.dispatch(a, completion=lambda: store.log.append("completion a"))
        store.dispatch(Record("b"))

        a.finish()

        assert store.log == ["start a", "end a", "completion a", "b"]


class DelayedAction(Action):
    """在 worker 佇列上隨機延遲後完成，用來檢查主體不會重疊"""

    def __init__(self, index, worker, tracker):
        super().__init__(index, type=f"delayed-{index}")
        self.worker = worker
        self.tracker = tracker

    def execute(self, store, completion):
        self.tracker.begin(self.payload)

        def finish():
            self.tracker.end()
            completion()

        if self.payload % 3 == 0:
            finish()
        else:
            self.worker.after(random.uniform(0, 0.005), finish)


class Tracker:
    def __init__(self):
        self.lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.begun = []

    def begin(self, index):
        with self.lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.begun.append(index)

    def end(self):
        with self.lock:
            self.active -= 1


def test_bodies_begin_in_acceptance_order_and_never_overlap():
    worker = DispatchQueue("worker")
    tracker = Tracker()
    store = RecordingStore()
    accepted = []
    accept_lock = threading.Lock()
    futures = []

    def producer(start):
        for i in range(start, start + 30):
            with accept_lock:
                accepted.append(i)
                futures.append(store.dispatch(DelayedAction(i, worker, tracker)))

    try:
        threads = [threading.Thread(target=producer, args=(n * 100,)) for n in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        for future in list(futures):
            assert future.result(10) is True
    finally:
        worker.shutdown()

    assert tracker.begun == accepted
    assert tracker.max_active == 1
    assert not store.is_dispatching


class TestMiddleware:

    def test_pre_check_short_circuits(self, store):
        events = []
        store.apply_middleware(
            Spy("first", events),
            Spy("veto", events, allow=False),
            Spy("last", events),
        )

        store.dispatch(Record("a"))

        should = [e for e in events if e[1] == "should"]
        assert should == [("first", "should", "a"), ("veto", "should", "a")]

    def test_post_notify_in_attachment_order_before_completion(self, store):
        events = []
        store.apply_middleware(Spy("m1", events), Spy("m2", events))
        action = Manual("a")
        store.dispatch(action, completion=lambda: events.append("completion"))

        assert events == [("m1", "should", "a"), ("m2", "should", "a")]
        action.finish()

        assert events[2:] == [("m1", "did", "a"), ("m2", "did", "a"), "completion"]

    def test_always_veto_skips_body_but_completes_and_notifies(self, store):
        events = []
        store.apply_middleware(Spy("veto", events, allow=False))
        calls = []

        future = store.dispatch(Record("a"), completion=lambda: calls.append("done"))

        assert store.log == []
        assert calls == ["done"]
        assert ("veto", "did", "a") in events
        assert future.result() is False

    def test_veto_still_drains_next_action(self, store):
        store.apply_middleware(FilterMiddleware(blocked_types={"blocked"}))
        blocker = Manual("blocker")
        store.dispatch(blocker)
        vetoed = store.dispatch(Record("blocked"))
        after = store.dispatch(Record("after"))

        blocker.finish()

        assert vetoed.result(0) is False
        assert after.result(0) is True
        assert store.log == ["start blocker", "end blocker", "after"]
        assert not store.is_dispatching

    def test_apply_middleware_accepts_classes(self, store):
        store.apply_middleware(BaseMiddleware)

        assert isinstance(store.middlewares[0], BaseMiddleware)

    def test_middleware_error_in_pre_check_keeps_draining(self, store, reported_errors):
        class Broken(BaseMiddleware):
            def should_execute(self, store, action):
                if action.type == "bad":
                    raise RuntimeError("broken")
                return True

        store.apply_middleware(Broken())
        blocker = Manual("blocker")
        store.dispatch(blocker)
        bad = store.dispatch(Record("bad"))
        good = store.dispatch(Record("good"))

        blocker.finish()

        with pytest.raises(MiddlewareError):
            bad.result(0)
        assert good.result(0) is True
        assert store.log[-1] == "good"
        assert any(isinstance(e, MiddlewareError) for e in reported_errors)


class Boom(SyncAction):
    def apply(self, store):
        raise ValueError("boom")


class TestErrors:

    def test_body_exception_surfaces_on_future_and_queue_continues(self, store, reported_errors):
        events = []
        store.apply_middleware(Spy("spy", events))
        blocker = Manual("blocker")
        store.dispatch(blocker)
        failed = store.dispatch(Boom(type="boom"))
        after = store.dispatch(Record("after"))

        blocker.finish()

        with pytest.raises(ActionError) as exc:
            failed.result(0)
        assert isinstance(exc.value.__cause__, ValueError)
        assert after.result(0) is True
        assert ("spy", "error", "boom") in events
        assert ("spy", "did", "boom") not in events
        assert reported_errors and reported_errors[0].action_type == "boom"
        assert not store.is_dispatching

    def test_double_completion_raises(self, store, reported_errors):
        action = Manual("a")
        store.dispatch(action)
        action.finish()

        with pytest.raises(ActionError):
            action.completion()

    def test_body_completing_twice_synchronously_is_reported(self, store, reported_errors):
        class Twice(Action):
            def execute(self, store, completion):
                completion()
                completion()

        future = store.dispatch(Twice(type="twice"))
        after = store.dispatch(Record("after"))

        assert future.result(0) is True
        assert after.result(0) is True
        assert reported_errors[0].action_type == "twice"

    def test_raising_completion_on_vetoed_action_keeps_draining(self, store, reported_errors):
        store.apply_middleware(FilterMiddleware(blocked_types={"vetoed"}))

        def boom():
            raise RuntimeError("completion boom")

        blocker = Manual("blocker")
        store.dispatch(blocker)
        vetoed = store.dispatch(Record("vetoed"), completion=boom)
        after = store.dispatch(Record("after"))

        blocker.finish()

        assert vetoed.result(0) is False
        assert after.result(0) is True
        assert not store.is_dispatching
        assert reported_errors[0].action_type == "vetoed"
        assert isinstance(reported_errors[0].__cause__, RuntimeError)

        # 閒置時直接執行的路徑同樣不會卡住
        assert store.dispatch(Record("vetoed"), completion=boom).result(0) is False
        store.dispatch(Record("next"))
        assert store.log[-1] == "next"
        assert not store.is_dispatching

    def test_raising_completion_after_pre_check_error_keeps_draining(self, store, reported_errors):
        class Broken(BaseMiddleware):
            def should_execute(self, store, action):
                raise RuntimeError("broken")

        def boom():
            raise RuntimeError("completion boom")

        store.apply_middleware(Broken())
        failed = store.dispatch(Record("a"), completion=boom)

        with pytest.raises(MiddlewareError):
            failed.result(0)
        assert not store.is_dispatching
        assert any(
            isinstance(e, ActionError) and "completion callback failed" in e.message
            for e in reported_errors
        )

    def test_raising_completion_on_direct_execute(self, store, reported_errors):
        def boom():
            raise RuntimeError("completion boom")

        assert store.execute(Record("a"), completion=boom).result(0) is True
        assert reported_errors[0].action_type == "a"

    def test_store_type_mismatch_raises(self, store):
        class OtherStore(Store):
            pass

        action = create_action("other", lambda s, p: None, store_type=OtherStore)()

        with pytest.raises(ActionError):
            store.dispatch(action)
        assert not store.is_dispatching


class TestReentrancy:

    class Redispatch(BaseMiddleware):
        def should_execute(self, store, action):
            if action.type == "outer":
                store.dispatch(Record("inner"))
            return True

    def test_dispatch_from_should_execute_fails_loudly(self, reported_errors):
        store = RecordingStore(self.Redispatch())

        future = store.dispatch(Record("outer"))

        with pytest.raises(MiddlewareError) as exc:
            future.result(0)
        assert isinstance(exc.value.__cause__, ReentrantDispatchError)
        assert store.log == []
        assert not store.is_dispatching

    def test_lenient_mode_queues_reentrant_dispatch(self):
        store = RecordingStore(self.Redispatch(), config=StoreConfig(strict_reentrancy=False))

        store.dispatch(Record("outer"))

        assert store.log == ["outer", "inner"]
        assert not store.is_dispatching

    def test_lenient_mode_logs_how_reentrant_dispatch_runs(self, caplog):
        store = RecordingStore(self.Redispatch(), config=StoreConfig(strict_reentrancy=False))

        with caplog.at_level(logging.WARNING, logger="reactivestore"):
            store.dispatch(Record("outer"))
        assert "(queued)" in caplog.text

        caplog.clear()
        store.log.clear()
        with caplog.at_level(logging.WARNING, logger="reactivestore"):
            store.execute(Record("outer"))
        # execute 繞過旗標，內層 Action 在預檢中巢狀執行
        assert "(running nested)" in caplog.text
        assert store.log == ["inner", "outer"]


class TestDirectExecute:

    def test_execute_bypasses_queue(self, store):
        blocker = Manual("blocker")
        store.dispatch(blocker)

        future = store.execute(Record("direct"))

        assert store.log == ["start blocker", "direct"]
        assert future.result(0) is True
        assert store.is_dispatching
        blocker.finish()


class TestTeardown:

    def test_teardown_while_dispatching_raises(self, store):
        store.dispatch(Manual("a"))

        with pytest.raises(StoreError):
            store.teardown()

    def test_context_manager_tears_down_middleware(self):
        torn = []

        class Tracked(BaseMiddleware):
            def teardown(self):
                torn.append(True)

        with RecordingStore(Tracked()) as store:
            store.dispatch(Record("a"))

        assert torn == [True]
