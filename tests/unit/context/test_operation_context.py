"""
Tests for the operation decorator, OperationHandler and principal context.
"""

import threading

import pytest

from crosspost_core.config import get_config
from crosspost_core.context.operation_context import OperationContext, OperationHandler, operation
from crosspost_core.context.principal_context import PrincipalContext, principal_context
from crosspost_core.exceptions import (
    BaseError,
    ErrorCode,
    ValidationError,
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


class RecordingLogger:
    """Collects (level, message, extra) tuples."""

    def __init__(self):
        self.records = []

    def _record(self, level, msg, **kwargs):
        self.records.append((level, msg, kwargs.get("extra", {})))

    def info(self, msg, **kwargs):
        self._record("info", msg, **kwargs)

    def warning(self, msg, **kwargs):
        self._record("warning", msg, **kwargs)

    def error(self, msg, **kwargs):
        self._record("error", msg, **kwargs)

    def exception(self, msg, **kwargs):
        self._record("exception", msg, **kwargs)


class Greeter:
    @operation()
    def greet(self, token: str) -> str:
        return f"hello {get_correlation_id() is not None}"

    @operation(name="custom.fail")
    def fail(self):
        raise BaseError("nope", error_code=ErrorCode.NOT_FOUND)


class TestPrincipalContext:
    def test_set_and_clear(self):
        PrincipalContext.set_current_principal("alice")
        assert PrincipalContext.get_current_principal_id() == "alice"

        PrincipalContext.clear_current_principal()
        assert PrincipalContext.get_current_principal_id() is None

    @pytest.mark.parametrize("value", ["", "   ", None])
    def test_rejects_empty(self, value):
        with pytest.raises(ValidationError) as exc_info:
            PrincipalContext.set_current_principal(value)
        assert exc_info.value.error_code == ErrorCode.MISSING_REQUIRED

    def test_context_manager_restores_previous(self):
        with principal_context("alice"):
            with principal_context("bob"):
                assert PrincipalContext.get_current_principal_id() == "bob"
            assert PrincipalContext.get_current_principal_id() == "alice"
        assert PrincipalContext.get_current_principal_id() is None

    def test_thread_isolation(self):
        seen = []
        with principal_context("alice"):
            thread = threading.Thread(
                target=lambda: seen.append(PrincipalContext.get_current_principal_id())
            )
            thread.start()
            thread.join()
        assert seen == [None]


class TestOperationHandler:
    def test_enter_and_exit_logged(self):
        logger = RecordingLogger()

        with principal_context("alice"):
            with OperationHandler(logger).operation("link", platform="twitter") as ctx:
                ctx.add_metric("links", 1)

        (enter_level, enter_msg, enter_extra), (_, exit_msg, exit_extra) = logger.records
        assert enter_msg == "ENTER: link"
        assert enter_extra["principal_id"] == "alice"
        assert enter_extra["platform"] == "twitter"
        assert exit_msg == "EXIT: link"
        assert exit_extra["status"] == "success"
        assert exit_extra["links"] == 1
        assert "duration_ms" in exit_extra

    def test_client_error_enriched_and_reraised(self):
        logger = RecordingLogger()

        with pytest.raises(BaseError) as exc_info:
            with OperationHandler(logger).operation("lookup"):
                raise BaseError("missing", error_code=ErrorCode.NOT_FOUND)

        assert exc_info.value.context["operation_name"] == "lookup"
        level, message, extra = logger.records[-1]
        assert level == "warning"
        assert message == f"ERROR: lookup -> {ErrorCode.NOT_FOUND.value}: missing"
        assert extra["error_code"] == ErrorCode.NOT_FOUND.value

    def test_server_error_logged_at_error_level(self):
        logger = RecordingLogger()

        with pytest.raises(BaseError):
            with OperationHandler(logger).operation("save"):
                raise BaseError("disk full", error_code=ErrorCode.STORAGE_ERROR)

        level, _message, extra = logger.records[-1]
        assert level == "error"
        assert extra["status"] == "error"

    def test_unexpected_error_logged_with_traceback(self):
        logger = RecordingLogger()

        with pytest.raises(KeyError):
            with OperationHandler(logger).operation("lookup"):
                raise KeyError("k")

        level, _message, extra = logger.records[-1]
        assert level == "exception"
        assert extra["error_type"] == "KeyError"

    def test_correlation_id_restored(self):
        set_correlation_id("outer")
        try:
            with OperationHandler(RecordingLogger()).operation("inner") as ctx:
                assert get_correlation_id() == ctx.correlation_id == "outer"
            assert get_correlation_id() == "outer"
        finally:
            clear_correlation_id()

    def test_correlation_id_cleared_when_none_before(self):
        with OperationHandler(RecordingLogger()).operation("solo") as ctx:
            assert get_correlation_id() == ctx.correlation_id
        assert get_correlation_id() is None


class TestOperationContext:
    def test_ids_and_context(self):
        ctx = OperationContext("op", platform="twitter")
        assert ctx.context["platform"] == "twitter"
        assert ctx.context["operation_id"] == ctx.operation_id
        assert ctx.duration_ms >= 0


class TestOperationDecorator:
    def test_wraps_and_sets_correlation(self):
        assert Greeter().greet("secret-token") == "hello True"
        assert get_correlation_id() is None

    def test_arguments_are_not_logged(self, caplog):
        caplog.set_level("INFO")
        Greeter().greet("secret-token")
        assert "ENTER: test_operation_context.Greeter.greet" in caplog.text
        assert "secret-token" not in caplog.text

    def test_named_operation_propagates_error(self):
        with pytest.raises(BaseError) as exc_info:
            Greeter().fail()
        assert exc_info.value.context["operation_name"] == "custom.fail"

    def test_disabled_by_feature_flag(self):
        get_config().features.enable_operation_context = False

        with pytest.raises(BaseError) as exc_info:
            Greeter().fail()

        assert "operation_name" not in exc_info.value.context
