"""
Routes everything R writes to its console.

R has no exception type that crosses into Python, so the engine asks R to
print tagged lines on its error stream instead: one tag for the message of a
fatal stop(), one for progress updates. ConsoleRouter pulls those lines out
of the stream and forwards all other text to the host writers untouched.
"""
from __future__ import annotations

import logging
import sys
from typing import Optional

from parscript.parscript_datatypes import TaskProgress
from parscript.parscript_interpreter import OUTPUT_CHANNEL

logger = logging.getLogger(__name__)

# Wire markers. They are written by R code the engine installs, so they must
# never show up in ordinary diagnostics.
ERROR_TAG = "<PARError> "
PROGRESS_TAG = "<PARProgress>"


class ConsoleRouter:
    """Classifies R console text into stop messages, progress and diagnostics."""

    def __init__(self, echo_errors: bool = False):
        self.echo_errors = echo_errors
        self.context = None
        self.stop_message: Optional[str] = None
        self.progress: Optional[TaskProgress] = None

    def begin(self, context, progress: Optional[TaskProgress] = None):
        """Binds the router to the context of a new run and resets signal state."""
        self.context = context
        self.stop_message = None
        self.progress = progress

    def reset(self):
        self.stop_message = None
        self.progress = None

    # --- Callbacks from the interpreter ---

    def write_console(self, text: str, channel: int):
        if channel == OUTPUT_CHANNEL:
            self._write(self._writer(), text)
            return

        if text.startswith(ERROR_TAG):
            self.stop_message = text[len(ERROR_TAG):]
            logger.debug("Captured stop message: %r", self.stop_message)
            return

        if text.startswith(PROGRESS_TAG + "="):
            if self._record_progress(text[len(PROGRESS_TAG) + 1:]):
                return

        self._write(self._error_writer(), text)
        if self.echo_errors and self._error_writer() is not sys.stderr:
            sys.stderr.write(text)

    def flush_console(self):
        self._writer().flush()
        self._error_writer().flush()

    def show_message(self, text: str):
        self._write(self._error_writer(), text)

    # --- Internals ---

    def _record_progress(self, raw: str) -> bool:
        try:
            value = int(raw.strip())
        except ValueError:
            logger.debug("Ignoring malformed progress value %r", raw)
            return False
        if self.progress is not None:
            self.progress.set(value)
        return True

    def _writer(self):
        if self.context is None:
            return sys.stdout
        return self.context.writer

    def _error_writer(self):
        if self.context is None:
            return sys.stderr
        return self.context.error_writer

    @staticmethod
    def _write(writer, text: str):
        writer.write(text)
        writer.flush()
