
"""
Defines the core data types shared by the parscript bridge.

This module provides the Python-side model of R values, the host objects a
script execution can be bound to, and the exceptions raised across the
Python/R boundary.
"""

import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional

# =================================================================
# Binding names
# =================================================================

ARGUMENTS_NAME = "args"
RESULTS_VARIABLE = "results"
RESULT_VARIABLE = "result"
SELECTION_RESULT_VARIABLE = "selected"
PROGRESS_VARIABLE = "progress"
TASK_SCRIPT_VARIABLES = "variables"

DS_SCRATCH_BINDING_NAME = "localspace"
DS_USER_BINDING_NAME = "user"
DS_GLOBAL_BINDING_NAME = "global"
DS_INPUT_BINDING_NAME = "input"
DS_OUTPUT_BINDING_NAME = "output"

# Binding name -> name of the R variable holding the resolved path.
SPACE_VARIABLES = {
    DS_SCRATCH_BINDING_NAME: "localspace",
    DS_USER_BINDING_NAME: "userspace",
    DS_GLOBAL_BINDING_NAME: "globalspace",
    DS_INPUT_BINDING_NAME: "inputspace",
    DS_OUTPUT_BINDING_NAME: "outputspace",
}

# =================================================================
# Exceptions
# =================================================================

class ScriptError(Exception):
    """A script execution failed; the message is what the host reports."""
    pass


class ScriptConfigurationError(ScriptError):
    """The execution was requested without a usable script context."""
    pass


class ConversionError(TypeError):
    """A value has no representation on the other side of the bridge."""
    def __init__(self, message: str, value: Any = None):
        super().__init__(message)
        self.value = value


class REvaluationError(RuntimeError):
    """R reported an error while parsing or evaluating code."""
    pass


class InterpreterStartupError(RuntimeError):
    """The embedded R runtime could not be located or started."""
    pass

# =================================================================
# R value model
# =================================================================

R_TYPES = ("character", "double", "integer", "logical", "list")


class RValue:
    """Base class for the Python-side view of an R value."""
    pass


class RNull(RValue):
    """R's NULL. Use the module-level NULL singleton."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __len__(self) -> int:
        return 0

    def __repr__(self) -> str:
        return "NULL"


NULL = RNull()


class RVector(RValue):
    """An R vector: atomic (character/double/integer/logical) or a generic list.

    `values` holds plain Python scalars for atomic vectors, with None standing
    for NA, and RValue instances for lists. `names` is None for unnamed vectors.
    """
    def __init__(self, rtype: str, values: List[Any], names: Optional[List[str]] = None):
        if rtype not in R_TYPES:
            raise ValueError(f"Unknown R vector type: {rtype!r}")
        if names is not None and len(names) != len(values):
            raise ValueError("names must have the same length as values")
        self.rtype = rtype
        self.values = list(values)
        self.names = list(names) if names is not None else None

    @property
    def is_atomic(self) -> bool:
        return self.rtype != "list"

    @property
    def is_named(self) -> bool:
        return self.names is not None

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self):
        return iter(self.values)

    def __getitem__(self, index):
        return self.values[index]

    def __eq__(self, other):
        if not isinstance(other, RVector):
            return NotImplemented
        return (self.rtype, self.values, self.names) == (other.rtype, other.values, other.names)

    def __repr__(self) -> str:
        if self.names is not None:
            return f"RVector({self.rtype!r}, {self.values!r}, names={self.names!r})"
        return f"RVector({self.rtype!r}, {self.values!r})"


class ROpaque(RValue):
    """An R object without a data representation (closure, environment, ...)."""
    def __init__(self, rtype: str):
        self.rtype = rtype

    def __eq__(self, other):
        if not isinstance(other, ROpaque):
            return NotImplemented
        return self.rtype == other.rtype

    def __repr__(self) -> str:
        return f"<R {self.rtype}>"

# =================================================================
# Host binding types
# =================================================================

class TaskProgress:
    """A thread-safe integer cell the script reports its progress into."""
    def __init__(self, value: int = 0):
        self._value = int(value)
        self._lock = threading.Lock()

    def get(self) -> int:
        with self._lock:
            return self._value

    def set(self, value: int):
        with self._lock:
            self._value = int(value)

    def __repr__(self) -> str:
        return f"TaskProgress({self.get()})"


class TaskResult(ABC):
    """The result of a previously executed task, as exposed to scripts."""

    @property
    @abstractmethod
    def task_name(self) -> str: raise NotImplementedError

    @abstractmethod
    def value(self) -> Any: raise NotImplementedError


class SimpleTaskResult(TaskResult):
    def __init__(self, task_name: str, value: Any = None, exception: Optional[BaseException] = None):
        self._task_name = task_name
        self._value = value
        self._exception = exception

    @property
    def task_name(self) -> str:
        return self._task_name

    def value(self) -> Any:
        if self._exception is not None:
            raise self._exception
        return self._value


class DataSpace(ABC):
    """A logical file-system location whose real URI can be resolved locally."""

    @property
    @abstractmethod
    def real_uri(self) -> str: raise NotImplementedError


class LocalSpace(DataSpace):
    """A data space backed by a local directory."""
    def __init__(self, path: "str | os.PathLike"):
        self.path = Path(path)

    @property
    def real_uri(self) -> str:
        return self.path.absolute().as_uri()

    def __repr__(self) -> str:
        return f"LocalSpace({str(self.path)!r})"
