# parscript_runtime.py

import logging
import os
import sys
import traceback
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import pystache
import yaml

from parscript import parscript_codec as codec
from parscript.parscript_console import ConsoleRouter, ERROR_TAG, PROGRESS_TAG
from parscript.parscript_datatypes import (
    NULL, RVector,
    ARGUMENTS_NAME, RESULTS_VARIABLE, RESULT_VARIABLE, SELECTION_RESULT_VARIABLE,
    PROGRESS_VARIABLE, TASK_SCRIPT_VARIABLES, DS_SCRATCH_BINDING_NAME, SPACE_VARIABLES,
    ScriptError, ScriptConfigurationError, ConversionError, REvaluationError,
)
from parscript.parscript_interpreter import RInterpreter

logger = logging.getLogger(__name__)

# Set in isolated worker processes; elsewhere R errors are also echoed to stderr.
IS_FORKED = "PARSCRIPT_IS_FORKED"

PREAMBLE_PATH = Path(__file__).parent / "preamble.yaml"

# R variables the engine may leave behind; removed before each run.
INJECTED_NAMES = (
    ARGUMENTS_NAME, RESULTS_VARIABLE, RESULT_VARIABLE, SELECTION_RESULT_VARIABLE,
    TASK_SCRIPT_VARIABLES, "set_progress",
) + tuple(SPACE_VARIABLES.values())


def _is_forked() -> bool:
    return os.environ.get(IS_FORKED, "").strip().lower() in ("1", "true", "yes", "on")


def _to_r_path(space) -> str:
    """Resolves a data space to a canonical local path; R paths are not backslash friendly."""
    if isinstance(space, (str, os.PathLike)):
        path = os.fspath(space)
    else:
        uri = space.real_uri
        parsed = urllib.parse.urlparse(uri)
        if parsed.scheme != "file":
            raise ValueError(f"Not a local file URI: {uri}")
        path = urllib.request.url2pathname(parsed.path)
    return os.path.realpath(path).replace("\\", "/")


def _raw_location(space) -> str:
    if isinstance(space, (str, os.PathLike)):
        return os.fspath(space)
    return space.real_uri

# ===================================================================
# 1. Preamble
# ===================================================================

class Preamble:
    """The R statements sent around each run, loaded once from preamble.yaml."""

    _templates: Optional[Dict[str, str]] = None

    def __init__(self, path: Optional[Path] = None):
        if path is not None:
            self.templates = self._load(path)
        else:
            if Preamble._templates is None:
                Preamble._templates = self._load(PREAMBLE_PATH)
            self.templates = Preamble._templates
        self.renderer = pystache.Renderer(escape=lambda u: u, missing_tags="strict")

    @staticmethod
    def _load(path: Path) -> Dict[str, str]:
        try:
            data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        except Exception as e:
            raise RuntimeError(f"Error loading preamble {path}: {e}") from e
        if not isinstance(data, dict):
            raise RuntimeError(f"Preamble {path} must be a mapping of statement names to templates")
        return data

    def render(self, name: str, **values) -> str:
        try:
            template = self.templates[name]
        except KeyError:
            raise KeyError(f"Unknown preamble statement: {name!r}") from None
        return self.renderer.render(template, values)

# ===================================================================
# 2. Script context and results
# ===================================================================

class ScriptContext:
    """The bindings and the output/error writers of one script execution."""

    def __init__(self, bindings: Optional[Dict[str, Any]] = None, writer=None, error_writer=None):
        self.bindings = bindings
        self.writer = writer if writer is not None else sys.stdout
        self.error_writer = error_writer if error_writer is not None else sys.stderr


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    bindings: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[ScriptError] = None

    def format_error(self) -> str:
        if self.status != 'error':
            return ""
        return str(self.error_message or "Unknown error")

# ===================================================================
# 3. The engine
# ===================================================================

class ParScriptEngine:
    """Runs R scripts against a set of host bindings."""

    def __init__(self, factory=None, interpreter: Optional[RInterpreter] = None):
        self.factory = factory
        self._interpreter = interpreter
        # Without a forked worker the host may drop the error writer's content.
        self.dump_errors = not _is_forked()
        self.console = ConsoleRouter(echo_errors=self.dump_errors)
        self.preamble = Preamble()

    @property
    def interpreter(self):
        if self._interpreter is None:
            self._interpreter = RInterpreter.create()
        return self._interpreter

    def create_bindings(self) -> Dict[str, Any]:
        return {}

    def run(self, script, bindings: Optional[Dict[str, Any]] = None,
            writer=None, error_writer=None) -> ExecutionResult:
        """Executes a script and reports the outcome instead of raising ScriptError."""
        if bindings is None:
            bindings = self.create_bindings()
        context = ScriptContext(bindings, writer, error_writer)
        try:
            value = self.eval(script, context)
        except ScriptError as e:
            return ExecutionResult(status='error', error_message=str(e), bindings=bindings, exception=e)
        return ExecutionResult(status='success', value=value, bindings=bindings)

    def eval(self, script, context: Optional[ScriptContext] = None) -> Any:
        """The main entry point: runs script (a str or a readable file) in context."""
        if context is None:
            raise ScriptConfigurationError("No script context specified")
        bindings = context.bindings
        if bindings is None:
            raise ScriptConfigurationError("No bindings specified in the script context")
        if not isinstance(script, str):
            try:
                script = script.read()
            except OSError as e:
                raise ScriptError(f"Unable to read the script: {e}") from e

        interpreter = self.interpreter
        with interpreter.lock:
            interpreter.console = self.console
            self.console.begin(context, bindings.get(PROGRESS_VARIABLE))
            try:
                return self._execute(script, bindings, context)
            finally:
                self.console.reset()
                self._reset_workdir(context)
                interpreter.console = None

    def _execute(self, script: str, bindings: Dict[str, Any], context: ScriptContext) -> Any:
        self._run_statement(self.preamble.render("enable_warnings", warn_level=1), context)
        self._run_statement(self.preamble.render("customize_errors", error_tag=ERROR_TAG), context)
        names = ", ".join(f'"{n}"' for n in INJECTED_NAMES)
        self._run_statement(self.preamble.render("clear_bindings", names=names), context)

        self._assign_arguments(bindings, context)
        self._assign_progress(bindings, context)
        self._assign_results(bindings, context)
        for binding_name, variable in SPACE_VARIABLES.items():
            self._assign_space(bindings, binding_name, variable, context)
        variables = self._assign_variables(bindings, context)

        # Errors raised while binding were already reported; only the script may stop the run.
        self.console.stop_message = None
        rexp = None
        eval_error = None
        try:
            rexp = self.interpreter.parse_and_eval(script)
        except REvaluationError as e:
            # R has already printed the error; keep going so state can be read back.
            logger.debug("Script evaluation failed: %s", e)
            eval_error = e

        result_value = True
        explicit_result = False
        try:
            result_value, explicit_result = self._extract_result(rexp, context)
            bindings[RESULT_VARIABLE] = result_value
            self._extract_selection(bindings)
            self._update_variables(variables)
        except Exception as e:
            self._write_exception(e, context)
            bindings.setdefault(RESULT_VARIABLE, result_value)

        # A stop() wins over any result the script may have produced.
        stop_message = self.console.stop_message
        if stop_message is not None:
            raise ScriptError(stop_message) from eval_error
        if eval_error is not None and not explicit_result:
            raise ScriptError(str(eval_error)) from eval_error
        return result_value

    # --- Injection ---

    def _assign_arguments(self, bindings, context):
        args = bindings.get(ARGUMENTS_NAME)
        if args is None:
            return
        if isinstance(args, str):
            args = [args]
        try:
            values = [None if a is None else str(a) for a in args]
            self.interpreter.assign(ARGUMENTS_NAME, RVector("character", values))
        except Exception as e:
            self._write_exception(e, context)

    def _assign_progress(self, bindings, context):
        if bindings.get(PROGRESS_VARIABLE) is None:
            return
        self._run_statement(self.preamble.render("define_progress", progress_tag=PROGRESS_TAG), context)

    def _assign_results(self, bindings, context):
        results = bindings.get(RESULTS_VARIABLE)
        if results is None:
            return
        names = []
        items = []
        try:
            for r in results:
                try:
                    name = r.task_name
                except Exception as e:
                    # Without a name the entry cannot be addressed from R.
                    self._write_exception(e, context)
                    continue
                try:
                    value = codec.to_r(r.value())
                except ConversionError as e:
                    logger.warning("Result of task %s cannot be converted to R: %s", name, e)
                    value = NULL
                except Exception:
                    # A result that cannot be retrieved is exposed as NULL.
                    value = NULL
                if name in names:
                    # R keeps every entry, but results$name only reaches the first one.
                    message = f"Warning: duplicate task result name {name!r}; results${name} refers to the first one\n"
                    logger.warning(message.strip())
                    context.error_writer.write(message)
                names.append(name)
                items.append(value)
            self.interpreter.assign(RESULTS_VARIABLE, RVector("list", items, names=names))
        except Exception as e:
            self._write_exception(e, context)

    def _assign_space(self, bindings, binding_name, variable, context):
        space = bindings.get(binding_name)
        if space is None:
            return
        try:
            try:
                path = _to_r_path(space)
            except (ValueError, OSError) as e:
                logger.debug("Using raw location for %s: %s", binding_name, e)
                path = _raw_location(space)
            self.interpreter.assign(variable, codec.to_r(path))
            logger.debug("Bound %s to %s", variable, path)
        except Exception as e:
            self._write_exception(e, context)
            return
        if binding_name == DS_SCRATCH_BINDING_NAME and os.path.isdir(path) and os.access(path, os.W_OK):
            self._run_statement(self.preamble.render("set_workdir", variable=variable), context)

    def _assign_variables(self, bindings, context) -> Optional[Dict[str, Any]]:
        variables = bindings.get(TASK_SCRIPT_VARIABLES)
        if variables is not None:
            try:
                self.interpreter.assign(TASK_SCRIPT_VARIABLES, codec.to_r(variables))
            except Exception as e:
                self._write_exception(e, context)
        return variables

    # --- Extraction ---

    def _extract_result(self, rexp, context):
        """Returns (value, explicit): the 'result' variable wins over the last expression."""
        explicit = self.interpreter.get(RESULT_VARIABLE)
        if explicit is not None:
            try:
                value = codec.to_python(explicit)
                return (True if value is None else value), True
            except ConversionError as e:
                self._write_exception(e, context)
        value = None
        if rexp is not None:
            try:
                value = codec.to_python(rexp)
            except ConversionError as e:
                logger.debug("Last expression has no Python value: %s", e)
        return (True if value is None else value), False

    def _extract_selection(self, bindings):
        try:
            selected = self.interpreter.get(SELECTION_RESULT_VARIABLE)
            if selected is not None:
                bindings[SELECTION_RESULT_VARIABLE] = codec.to_python(selected)
        except ConversionError as e:
            logger.debug("Ignoring selection result: %s", e)

    def _update_variables(self, variables):
        """Merges the R side variables map into the host one."""
        if variables is None:
            return
        rvariables = self.interpreter.get(TASK_SCRIPT_VARIABLES)
        if rvariables is None:
            return
        variables.update(codec.as_dict(rvariables))

    # --- Helpers ---

    def _run_statement(self, code: str, context):
        try:
            self.interpreter.parse_and_eval(code)
        except REvaluationError as e:
            self._write_exception(e, context)

    def _reset_workdir(self, context):
        try:
            self.interpreter.parse_and_eval(self.preamble.render("reset_workdir"))
        except Exception as e:
            logger.warning("Unable to reset the R working directory: %s", e)
            self._write_exception(e, context)

    @staticmethod
    def _write_exception(ex: BaseException, context):
        writer = context.error_writer
        traceback.print_exception(type(ex), ex, ex.__traceback__, file=writer)
        writer.flush()
