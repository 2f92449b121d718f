import io
import re
import threading

import pytest

from parscript.parscript_codec import to_r, to_python
from parscript.parscript_console import ERROR_TAG, PROGRESS_TAG
from parscript.parscript_datatypes import NULL, REvaluationError
from parscript.parscript_interpreter import OUTPUT_CHANNEL, ERROR_CHANNEL
from parscript.parscript_runtime import ParScriptEngine, ScriptContext


class FakeInterpreter:
    """Scriptable stand-in for RInterpreter.

    Scripts are Python callables registered under their exact source text;
    any other code (the engine's own statements) is recorded and returns NULL.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self.console = None
        self.env = {}
        self.statements = []
        self.scripts = {}
        self.fail_on = {}

    def script(self, source):
        def register(fn):
            self.scripts[source] = fn
            return fn
        return register

    # --- RInterpreter surface ---

    def parse_and_eval(self, code):
        self.statements.append(code)
        for prefix, message in self.fail_on.items():
            if code.startswith(prefix):
                raise REvaluationError(message)
        if code.startswith("rm(list = intersect("):
            for name in re.findall(r'"([^"]+)"', code):
                self.env.pop(name, None)
            return NULL
        handler = self.scripts.get(code)
        if handler is None:
            return NULL
        return handler(self)

    def assign(self, name, value):
        self.env[name] = value

    def get(self, name):
        return self.env.get(name)

    # --- Helpers for scripts ---

    def get_py(self, name):
        return to_python(self.env[name])

    def set_py(self, name, value):
        self.env[name] = to_r(value)

    def cat(self, text):
        self.console.write_console(text, OUTPUT_CHANNEL)

    def warning(self, message):
        self.console.write_console(f"Warning: {message}\n", ERROR_CHANNEL)

    def set_progress(self, value):
        self.console.write_console(f"{PROGRESS_TAG}={value}", ERROR_CHANNEL)

    def stop(self, message):
        # R prints the error, then runs the options(error=) handler.
        text = f"Error: {message}\n"
        self.console.write_console(text, ERROR_CHANNEL)
        self.console.write_console(ERROR_TAG + text, ERROR_CHANNEL)
        raise REvaluationError(text.strip())

    def ran(self, fragment):
        return any(fragment in s for s in self.statements)


@pytest.fixture
def fake_r():
    return FakeInterpreter()


@pytest.fixture
def engine(fake_r, monkeypatch):
    monkeypatch.setenv("PARSCRIPT_IS_FORKED", "true")
    return ParScriptEngine(interpreter=fake_r)


@pytest.fixture
def writers():
    return io.StringIO(), io.StringIO()


@pytest.fixture
def make_context(writers):
    out, err = writers

    def make(bindings=None):
        return ScriptContext({} if bindings is None else bindings, out, err)
    return make
