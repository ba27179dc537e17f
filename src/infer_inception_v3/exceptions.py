"""Task errors reported back to the host application.

Every failure raised while running the plugin is surfaced as a single
``TaskError`` flavour carrying the original message together with the
function, file and line where it was raised.
"""

from __future__ import annotations

import inspect
from enum import IntEnum
from pathlib import Path


class CoreExCode(IntEnum):
    INVALID_PARAMETER = 1
    NULL_POINTER = 2
    INVALID_FILE = 3
    NOT_IMPLEMENTED = 4


class TaskError(Exception):
    """Error raised by a workflow task."""

    def __init__(self, code: CoreExCode, message: str, func: str, file: str, line: int) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.func = func
        self.file = file
        self.line = line

    def __str__(self) -> str:
        return f"{self.message} ({self.func} in {Path(self.file).name}:{self.line})"


class InvalidParameterError(TaskError):
    """``INVALID_PARAMETER`` error located at the caller of the constructor."""

    def __init__(self, message: str) -> None:
        frame = inspect.currentframe()
        caller = frame.f_back if frame is not None else None
        try:
            if caller is None:
                func, file, line = "<unknown>", "<unknown>", 0
            else:
                func, file, line = caller.f_code.co_name, caller.f_code.co_filename, caller.f_lineno
        finally:
            del frame, caller
        super().__init__(CoreExCode.INVALID_PARAMETER, message, func, file, line)
