"""
Completion 只能被呼叫一次的測試。
"""
import pytest

from reactivestore import ActionError, Completion, CompletionError


def test_calls_callback_once():
    calls = []
    completion = Completion(lambda: calls.append("done"), "a")

    assert not completion.done
    completion()

    assert completion.done
    assert calls == ["done"]


def test_second_call_raises():
    completion = Completion(lambda: None, "twice")
    completion()

    with pytest.raises(CompletionError) as exc:
        completion()
    assert exc.value.action_type == "twice"
    assert isinstance(exc.value, ActionError)


def test_fail_routes_to_on_error():
    calls = []
    completion = Completion(lambda: calls.append("done"), "a",
                            on_error=lambda err: calls.append(("error", str(err))))

    completion.fail(ValueError("boom"))

    assert calls == [("error", "boom")]
    with pytest.raises(CompletionError):
        completion()


def test_fail_without_on_error_completes_normally():
    calls = []
    completion = Completion(lambda: calls.append("done"))

    completion.fail(RuntimeError("x"))

    assert calls == ["done"]
    assert completion.done


def test_without_callback():
    completion = Completion()
    completion()
    assert "done" in repr(completion)
