"""
結構化錯誤與 ErrorHandler 測試。
"""
import pytest

from reactivestore import (
    ActionError,
    ConfigurationError,
    ErrorHandler,
    MiddlewareError,
    ReactiveStoreError,
    StoreError,
    handle_error,
)


def test_to_dict_and_str():
    error = ActionError("bad action", action_type="increment", extra=1)

    assert error.to_dict() == {
        "error_type": "ActionError",
        "message": "bad action",
        "details": {"action_type": "increment", "extra": 1},
    }
    assert str(error) == "bad action (action_type='increment', extra=1)"
    assert str(ReactiveStoreError("plain")) == "plain"


def test_error_attributes():
    assert StoreError("x", operation="teardown").operation == "teardown"
    assert MiddlewareError("x", "Logger", "a").details == {"middleware": "Logger", "action_type": "a"}
    assert ConfigurationError("x", "StoreConfig").config_key is None


class TestErrorHandler:

    def test_wraps_plain_exceptions(self):
        handler = ErrorHandler(log_to_console=False)
        original = KeyError("k")

        error = handler.handle(original)

        assert isinstance(error, ReactiveStoreError)
        assert error.details["error_type"] == "KeyError"
        assert error.__cause__ is original

    def test_failing_handler_does_not_stop_others(self):
        handler = ErrorHandler(log_to_console=False)
        seen = []

        def broken(error):
            raise RuntimeError("handler broke")

        handler.register_handler(broken)
        handler.register_handler(seen.append)
        error = StoreError("x", operation="op")

        assert handler.handle(error) is error
        assert seen == [error]

    def test_unregister(self):
        handler = ErrorHandler(log_to_console=False)
        seen = []
        handler.register_handler(seen.append)
        handler.unregister_handler(seen.append)

        handler.handle(ValueError("x"))

        assert seen == []

    def test_log_file_required(self):
        with pytest.raises(ConfigurationError):
            ErrorHandler(log_to_file=True)

    def test_writes_to_log_file(self, tmp_path):
        log_file = tmp_path / "errors.log"
        handler = ErrorHandler(log_to_console=False, log_to_file=True, log_file=str(log_file))

        handler.handle(StoreError("disk", operation="save"))
        for h in handler._file_logger.handlers:
            h.flush()
            h.close()

        assert "StoreError" in log_file.read_text(encoding="utf-8")


def test_handle_error_decorator_reports_and_reraises(reported_errors):
    @handle_error
    def explode():
        raise ValueError("decorated")

    with pytest.raises(ValueError):
        explode()
    assert "decorated" in str(reported_errors[0])
