"""Tests for library logging setup."""

import logging
from collections.abc import Iterator

import pytest

from code_judge._logging import LIBRARY_LOGGER_NAME, _QueueHandler, _RunFormatter, configure_logging, get_logger


@pytest.fixture
def lib_logger() -> Iterator[logging.Logger]:
    """Library logger with handlers and level restored after the test."""
    logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    handlers = list(logger.handlers)
    level = logger.level
    yield logger
    for handler in logger.handlers:
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord("code_judge.runner", logging.INFO, __file__, 1, "test 0 started", None, None)
    record.__dict__.update(extra)
    return record


def test_null_handler_attached(lib_logger: logging.Logger) -> None:
    assert any(isinstance(h, logging.NullHandler) for h in lib_logger.handlers)


def test_module_loggers_in_hierarchy() -> None:
    assert get_logger("code_judge.runner").parent is logging.getLogger(LIBRARY_LOGGER_NAME)


def test_configure_idempotent(lib_logger: logging.Logger) -> None:
    configure_logging(level="DEBUG")
    configure_logging(level=logging.INFO)

    assert sum(isinstance(h, _QueueHandler) for h in lib_logger.handlers) == 1
    assert lib_logger.level == logging.INFO


def test_unknown_level_rejected(lib_logger: logging.Logger) -> None:
    with pytest.raises(ValueError):
        configure_logging(level="CHATTY")


class TestRunFormatter:
    @pytest.mark.parametrize(
        "extra",
        [{"workspace_id": "judge_s1_0_ab"}, {"context_id": "judge_s1_0_ab"}],
        ids=["workspace_id", "context_id"],
    )
    def test_workspace_shown(self, extra: dict[str, str]) -> None:
        text = _RunFormatter().format(_record(**extra))
        assert text.endswith("code_judge.runner [judge_s1_0_ab] - test 0 started")

    @pytest.mark.parametrize("extra", [{}, {"context_id": "-"}], ids=["none", "placeholder"])
    def test_no_workspace(self, extra: dict[str, str]) -> None:
        text = _RunFormatter().format(_record(**extra))
        assert text.endswith("code_judge.runner - test 0 started")
