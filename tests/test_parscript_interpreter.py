from unittest.mock import Mock

import pytest

from parscript.parscript_datatypes import InterpreterStartupError
from parscript.parscript_interpreter import (
    RInterpreter, DEFAULT_R_ARGS, OUTPUT_CHANNEL, ERROR_CHANNEL, _configured_r_args,
)


@pytest.fixture
def no_singleton(monkeypatch):
    monkeypatch.setattr(RInterpreter, "_instance", None)


def test_create_is_idempotent(no_singleton, monkeypatch):
    started = []
    monkeypatch.setattr(RInterpreter, "_start", lambda self, args: started.append(args))
    first = RInterpreter.create()
    second = RInterpreter.create()
    assert first is second
    assert started == [DEFAULT_R_ARGS]


def test_create_failure_is_a_startup_error(no_singleton, monkeypatch):
    def broken(self, args):
        raise ImportError("libR.so: cannot open shared object file")

    monkeypatch.setattr(RInterpreter, "_start", broken)
    with pytest.raises(InterpreterStartupError, match="libR.so"):
        RInterpreter.create()
    assert RInterpreter._instance is None


def test_r_args_can_be_configured(monkeypatch):
    monkeypatch.setenv("PARSCRIPT_R_ARGS", "--vanilla --quiet --no-echo")
    assert _configured_r_args() == ("--vanilla", "--quiet", "--no-echo")
    monkeypatch.delenv("PARSCRIPT_R_ARGS")
    assert _configured_r_args() == DEFAULT_R_ARGS


def test_callbacks_are_routed_to_console():
    interp = RInterpreter()
    console = Mock()
    interp.console = console

    interp._write_output("out")
    interp._write_error("err")
    interp._flush()
    interp._show_message("msg")

    console.write_console.assert_any_call("out", OUTPUT_CHANNEL)
    console.write_console.assert_any_call("err", ERROR_CHANNEL)
    console.flush_console.assert_called_once_with()
    console.show_message.assert_called_once_with("msg")


def test_callbacks_without_console_use_std_streams(capsys):
    interp = RInterpreter()
    interp._write_output("to stdout")
    interp._write_error("to stderr")
    captured = capsys.readouterr()
    assert captured.out == "to stdout"
    assert captured.err == "to stderr"
