import io
import sys
from unittest.mock import Mock

import pytest

from parscript.parscript_console import ConsoleRouter, ERROR_TAG, PROGRESS_TAG
from parscript.parscript_datatypes import TaskProgress
from parscript.parscript_runtime import ScriptContext


@pytest.fixture
def context():
    return ScriptContext({}, io.StringIO(), io.StringIO())


@pytest.fixture
def router(context):
    r = ConsoleRouter(echo_errors=False)
    r.begin(context)
    return r


def test_output_channel_is_forwarded_verbatim(router, context):
    router.write_console(ERROR_TAG + "not a stop\n", 0)
    assert context.writer.getvalue() == ERROR_TAG + "not a stop\n"
    assert router.stop_message is None


def test_stop_tag_is_captured_and_not_forwarded(router, context):
    router.write_console(ERROR_TAG + "Error: bad input\n", 1)
    assert router.stop_message == "Error: bad input\n"
    assert context.error_writer.getvalue() == ""


def test_progress_tag_updates_sink(context):
    progress = TaskProgress()
    router = ConsoleRouter()
    router.begin(context, progress)
    router.write_console(f"{PROGRESS_TAG}=42", 1)
    assert progress.get() == 42
    assert context.error_writer.getvalue() == ""


def test_progress_without_sink_is_swallowed(router, context):
    router.write_console(f"{PROGRESS_TAG}=10", 1)
    assert context.error_writer.getvalue() == ""


def test_malformed_progress_is_plain_text(router, context):
    router.write_console(f"{PROGRESS_TAG}=soon", 1)
    assert context.error_writer.getvalue() == f"{PROGRESS_TAG}=soon"


def test_plain_errors_are_forwarded(router, context):
    router.write_console("Warning message:\nattention\n", 1)
    assert context.error_writer.getvalue() == "Warning message:\nattention\n"


def test_errors_are_echoed_when_requested(context, capsys):
    router = ConsoleRouter(echo_errors=True)
    router.begin(context)
    router.write_console("oops\n", 1)
    assert context.error_writer.getvalue() == "oops\n"
    assert capsys.readouterr().err == "oops\n"


def test_no_echo_when_error_writer_is_stderr(capsys):
    router = ConsoleRouter(echo_errors=True)
    router.begin(ScriptContext({}, io.StringIO(), sys.stderr))
    router.write_console("once\n", 1)
    assert capsys.readouterr().err == "once\n"


def test_show_message_goes_to_error_writer(router, context):
    router.show_message("R message")
    assert context.error_writer.getvalue() == "R message"


def test_flush_reaches_both_writers():
    out, err = Mock(), Mock()
    router = ConsoleRouter()
    router.begin(ScriptContext({}, out, err))
    router.flush_console()
    out.flush.assert_called_once_with()
    err.flush.assert_called_once_with()


def test_begin_and_reset_clear_signal_state(router, context):
    router.write_console(ERROR_TAG + "x", 1)
    router.reset()
    assert router.stop_message is None
    router.write_console(ERROR_TAG + "y", 1)
    router.begin(context, TaskProgress())
    assert router.stop_message is None
