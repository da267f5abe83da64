# mir_dump/errors.py
"""
mir_dump error types.

Error Hierarchy:
────────────────
┌─────────────────────────────────────────────────────────────────────────────┐
│  MirDumpError (base)                                                        │
│  ├── ConsistencyError          - self-contradictory facts (process fatal)   │
│  ├── ConfigurationError        - bad configuration file / value             │
│  ├── UnsupportedTerminatorError- terminator kind the renderer cannot draw   │
│  └── FunctionDumpError         - fatal for the current function only        │
│      ├── FactLoadError         - missing / corrupt fact source              │
│      ├── MirLoadError          - missing / corrupt MIR bundle               │
│      └── ReportWriteError      - failed to write the report                 │
└─────────────────────────────────────────────────────────────────────────────┘

Error Codes:
────────────
Each error has a code of the form MIRDUMP-XXXX:
  - 1000-1999: configuration errors
  - 2000-2999: input loading errors
  - 3000-3999: rendering / output errors
  - 9000-9999: consistency violations (never recovered)

Only :class:`FunctionDumpError` subclasses and
:class:`UnsupportedTerminatorError` are meant to be caught by a driver that
wants to continue with the next function.
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Any, Dict, Optional


@unique
class ErrorPhase(Enum):
    """Pipeline phase where the error occurred."""

    CONFIGURATION = "configuration"
    LOADING = "loading"
    RENDERING = "rendering"
    INTERNAL = "internal"


class ErrorCode:
    """Structured error code (``MIRDUMP-NNNN``)."""

    __slots__ = ("prefix", "number", "phase")

    def __init__(self, prefix: str, number: int, phase: ErrorPhase) -> None:
        self.prefix = prefix
        self.number = number
        self.phase = phase

    @property
    def code(self) -> str:
        """Get the full error code string."""
        return f"{self.prefix}-{self.number:04d}"

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"ErrorCode({self.code!r}, {self.phase.name})"

    def __hash__(self) -> int:
        return hash((self.prefix, self.number))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ErrorCode):
            return self.prefix == other.prefix and self.number == other.number
        if isinstance(other, str):
            return self.code == other
        return False


class ErrorCodes:
    """Predefined error codes."""

    INVALID_CONFIG_FILE = ErrorCode("MIRDUMP", 1001, ErrorPhase.CONFIGURATION)
    INVALID_CONFIG_VALUE = ErrorCode("MIRDUMP", 1002, ErrorPhase.CONFIGURATION)

    FACTS_NOT_FOUND = ErrorCode("MIRDUMP", 2001, ErrorPhase.LOADING)
    MALFORMED_FACT = ErrorCode("MIRDUMP", 2002, ErrorPhase.LOADING)
    REGIONS_NOT_FOUND = ErrorCode("MIRDUMP", 2003, ErrorPhase.LOADING)
    BUNDLE_NOT_FOUND = ErrorCode("MIRDUMP", 2101, ErrorPhase.LOADING)
    MALFORMED_BUNDLE = ErrorCode("MIRDUMP", 2102, ErrorPhase.LOADING)

    WRITE_FAILED = ErrorCode("MIRDUMP", 3001, ErrorPhase.RENDERING)
    UNSUPPORTED_TERMINATOR = ErrorCode("MIRDUMP", 3002, ErrorPhase.RENDERING)

    INTERNAL_ERROR = ErrorCode("MIRDUMP", 9000, ErrorPhase.INTERNAL)
    DUPLICATE_REGION_OWNER = ErrorCode("MIRDUMP", 9001, ErrorPhase.INTERNAL)
    UNKNOWN_POINT = ErrorCode("MIRDUMP", 9002, ErrorPhase.INTERNAL)
    INTERNER_FROZEN = ErrorCode("MIRDUMP", 9003, ErrorPhase.INTERNAL)


class MirDumpError(Exception):
    """
    Base exception for all mir_dump errors.

    Carries an :class:`ErrorCode` and an optional context mapping which is
    appended to the message when printed.
    """

    default_code: ErrorCode = ErrorCodes.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context: Dict[str, Any] = dict(context or {})

    def __str__(self) -> str:
        text = f"[{self.code}] {self.message}"
        if self.context:
            details = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
            text += f" ({details})"
        return text


class ConsistencyError(MirDumpError):
    """The fact set contradicts itself; any report would mislead."""

    default_code = ErrorCodes.UNKNOWN_POINT


class ConfigurationError(MirDumpError):
    """A configuration file or value could not be interpreted."""

    default_code = ErrorCodes.INVALID_CONFIG_VALUE


class UnsupportedTerminatorError(MirDumpError):
    """The renderer met a terminator kind it has no edge layout for."""

    default_code = ErrorCodes.UNSUPPORTED_TERMINATOR

    def __init__(self, kind: str, block: int) -> None:
        super().__init__(
            f"unsupported terminator kind '{kind}'",
            context={"block": f"bb{block}"},
        )
        self.kind = kind
        self.block = block


class FunctionDumpError(MirDumpError):
    """Failure that invalidates the report of the current function only."""

    default_code = ErrorCodes.WRITE_FAILED

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
        function: Optional[str] = None,
    ) -> None:
        super().__init__(message, code=code, context=context)
        self.function = function


class FactLoadError(FunctionDumpError):
    """A fact source (relation files or renumber MIR) is missing or corrupt."""

    default_code = ErrorCodes.MALFORMED_FACT


class MirLoadError(FunctionDumpError):
    """The exported MIR bundle is missing or malformed."""

    default_code = ErrorCodes.MALFORMED_BUNDLE


class ReportWriteError(FunctionDumpError):
    """Writing the rendered report failed."""

    default_code = ErrorCodes.WRITE_FAILED
