"""
The process-wide handle on the embedded R runtime.

R supports a single session per process, so RInterpreter is a lazily created
singleton. rpy2 is only imported when the handle is created; everything else
in parscript works on the RValue model and never touches rpy2 directly.
"""
from __future__ import annotations

import logging
import os
import shlex
import sys
import threading
from typing import Any, Optional

from parscript.parscript_datatypes import (
    NULL, RNull, RVector, ROpaque, RValue,
    InterpreterStartupError, REvaluationError,
)

logger = logging.getLogger(__name__)

DEFAULT_R_ARGS = ("--vanilla", "--slave")

OUTPUT_CHANNEL = 0
ERROR_CHANNEL = 1


def _configured_r_args() -> tuple:
    raw = os.environ.get("PARSCRIPT_R_ARGS")
    if raw is None:
        return DEFAULT_R_ARGS
    return tuple(shlex.split(raw))


def _configure_r_home():
    """Points R_HOME at the local R installation unless it is already set."""
    if os.environ.get("R_HOME"):
        return
    from rpy2 import situation
    r_home = situation.get_r_home()
    if not r_home:
        raise InterpreterStartupError("Unable to locate the R installation (R_HOME is not set)")
    os.environ["R_HOME"] = r_home


class RInterpreter:
    """Owns the embedded R session: evaluation, variables and console callbacks."""

    _instance: Optional["RInterpreter"] = None
    _create_lock = threading.Lock()

    @classmethod
    def create(cls) -> "RInterpreter":
        """Creates or retrieves the singleton interpreter."""
        with cls._create_lock:
            if cls._instance is None:
                instance = cls()
                try:
                    instance._start(_configured_r_args())
                except InterpreterStartupError:
                    raise
                except Exception as e:
                    raise InterpreterStartupError(f"Unable to start the embedded R runtime: {e}") from e
                cls._instance = instance
            return cls._instance

    def __init__(self):
        # Held by the engine for a whole script run.
        self.lock = threading.RLock()
        # Receives write_console / flush_console / show_message calls.
        self.console: Any = None
        self._ri = None
        self._r_errors: tuple = ()

    def _start(self, args: tuple):
        _configure_r_home()
        import rpy2.rinterface as ri
        from rpy2.rinterface_lib import callbacks, embedded
        from rpy2.rinterface_lib._rinterface_capi import RParsingError

        if not embedded.isinitialized():
            embedded.set_initoptions(("parscript",) + tuple(args))
            ri.initr_simple()
        self._ri = ri
        self._r_errors = (embedded.RRuntimeError, RParsingError)

        callbacks.consolewrite_print = self._write_output
        callbacks.consolewrite_warnerror = self._write_error
        callbacks.consoleflush = self._flush
        callbacks.showmessage = self._show_message
        logger.info("Embedded R runtime started with options %s", " ".join(args))

    # --- Console callbacks ---

    def _write_output(self, text: str):
        if self.console is None:
            sys.stdout.write(text)
            return
        self.console.write_console(text, OUTPUT_CHANNEL)

    def _write_error(self, text: str):
        if self.console is None:
            sys.stderr.write(text)
            return
        self.console.write_console(text, ERROR_CHANNEL)

    def _flush(self):
        if self.console is None:
            sys.stdout.flush()
            sys.stderr.flush()
            return
        self.console.flush_console()

    def _show_message(self, text: str):
        if self.console is None:
            sys.stderr.write(text)
            return
        self.console.show_message(text)

    # --- Evaluation and variables ---

    def parse_and_eval(self, code: str) -> RValue:
        """Parses and evaluates code in the global environment."""
        ri = self._ri
        try:
            expr = ri.parse(code)
            value = ri.baseenv["eval"](expr, ri.globalenv)
        except self._r_errors as e:
            raise REvaluationError(str(e).strip()) from e
        return self._from_sexp(value)

    def assign(self, name: str, value: RValue):
        self._ri.globalenv[name] = self._to_sexp(value)

    def get(self, name: str) -> Optional[RValue]:
        """Returns the value bound to name in the global environment, or None."""
        try:
            sexp = self._ri.globalenv[name]
        except KeyError:
            return None
        return self._from_sexp(sexp)

    # --- RValue <-> rpy2 conversion ---

    def _to_sexp(self, value: RValue):
        ri = self._ri
        match value:
            case RNull():
                return ri.NULL
            case RVector(rtype="list"):
                sexp = ri.ListSexpVector([self._to_sexp(v) for v in value.values])
            case RVector(rtype="character"):
                sexp = ri.StrSexpVector([ri.NA_Character if v is None else v for v in value.values])
            case RVector(rtype="double"):
                sexp = ri.FloatSexpVector([ri.NA_Real if v is None else v for v in value.values])
            case RVector(rtype="integer"):
                sexp = ri.IntSexpVector([ri.NA_Integer if v is None else v for v in value.values])
            case RVector(rtype="logical"):
                sexp = ri.BoolSexpVector([ri.NA_Logical if v is None else v for v in value.values])
            case _:
                raise TypeError(f"Cannot send {value!r} to R")
        if value.names is not None:
            sexp.do_slot_assign("names", ri.StrSexpVector(value.names))
        return sexp

    def _from_sexp(self, sexp) -> RValue:
        ri = self._ri
        rtypes = ri.RTYPES
        typeof = sexp.typeof
        if typeof == rtypes.NILSXP:
            return NULL
        if typeof == rtypes.INTSXP and "factor" in self._classes(sexp):
            sexp = ri.baseenv["as.character"](sexp)
            typeof = sexp.typeof

        if typeof == rtypes.VECSXP:
            return RVector("list", [self._from_sexp(item) for item in sexp], names=self._names(sexp))

        atomic = {
            rtypes.STRSXP: ("character", str),
            rtypes.REALSXP: ("double", float),
            rtypes.INTSXP: ("integer", int),
            rtypes.LGLSXP: ("logical", bool),
        }
        if typeof not in atomic:
            return ROpaque(str(ri.baseenv["typeof"](sexp)[0]))
        rtype, cast = atomic[typeof]
        missing = list(ri.baseenv["is.na"](sexp))
        if rtype == "double":
            # is.na() is also true for NaN, which is a value and not NA.
            nan = list(ri.baseenv["is.nan"](sexp))
            missing = [m and not n for m, n in zip(missing, nan)]
        values = [None if m else cast(v) for v, m in zip(sexp, missing)]
        return RVector(rtype, values, names=self._names(sexp))

    def _names(self, sexp):
        names = self._ri.baseenv["names"](sexp)
        if names.typeof == self._ri.RTYPES.NILSXP:
            return None
        return [str(n) for n in names]

    def _classes(self, sexp):
        return [str(c) for c in self._ri.baseenv["class"](sexp)]
