"""Tests for ExecutionContext implementations."""

from unittest.mock import MagicMock, patch

from railway import (
    ErrorCode,
    ExecutionContext,
    LoggingExecutionContext,
    NoOpExecutionContext,
    Result,
)


class TestNoOpExecutionContext:
    def test_passthrough(self):
        ctx = NoOpExecutionContext()
        assert ctx.execute(lambda: Result.success(42)).value() == 42

    def test_passthrough_failure(self):
        ctx = NoOpExecutionContext()
        result = ctx.execute(lambda: Result.failure(ErrorCode.NOT_FOUND, "gone"))
        assert result.is_failure()

    def test_satisfies_protocol(self):
        assert isinstance(NoOpExecutionContext(), ExecutionContext)


@patch("railway.execution.log")
class TestLoggingExecutionContext:
    def test_logs_success(self, log):
        ctx = LoggingExecutionContext(operation="LeaseExpirySweep")

        result = ctx.execute(lambda: Result.success(3))

        assert result.value() == 3
        event, = log.info.call_args.args
        assert event == "execution.completed"
        assert log.info.call_args.kwargs["operation"] == "LeaseExpirySweep"
        assert log.info.call_args.kwargs["state"] == "SUCCESS"

    def test_logs_failure(self, log):
        ctx = LoggingExecutionContext(operation="LeaseExpirySweep")

        result = ctx.execute(lambda: Result.failure(ErrorCode.DATABASE_ERROR, "down"))

        assert result.is_failure()
        assert log.info.call_args.kwargs["state"] == "FAILURE"

    def test_converts_exception_to_technical_error(self, log):
        def exploding():
            raise RuntimeError("exploded")

        ctx = LoggingExecutionContext(operation="Boom")

        result = ctx.execute(exploding)

        assert result.error().code == ErrorCode.TECHNICAL_ERROR
        assert isinstance(result.error().exception, RuntimeError)
        assert log.error.call_args.args == ("execution.crashed",)

    def test_wraps_inner_context(self, log):
        inner = MagicMock()
        inner.execute.return_value = Result.success(99)
        ctx = LoggingExecutionContext(inner=inner, operation="Wrapped")

        assert ctx.execute(lambda: Result.success(1)).value() == 99
        inner.execute.assert_called_once()
