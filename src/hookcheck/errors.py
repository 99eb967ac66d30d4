"""Failure taxonomy for the hookcheck harness.

Every engine-facing step of a harness run has its own error class so that a
report can say *where* a run failed, not only that it did:

    EngineInitError        - Uc() rejected the architecture/mode
    MemoryMapError         - mem_map() rejected the range or permissions
    WriteError             - mem_write() hit unmapped or protected memory
    HookRegistrationError  - hook_add() failed
    ExecutionFaultError    - emu_start() faulted, or stopped short of the exit
    RegisterReadError      - reg_read() rejected the register id
    ReleaseError           - hook_del() or uc_close() failed while closing

VerificationFailure is deliberately *not* an EngineError: it means the engine
ran the program cleanly but the observed hook calls were wrong, which is the
defect this harness exists to catch.
"""

from enum import Enum
from typing import Dict, List, Optional

from unicorn import UcError, unicorn_const


# Exit status reported for a logical assertion failure. Kept clear of the
# engine's own UC_ERR_* codes.
VERIFICATION_EXIT_STATUS = 99


class FailureKind(Enum):
    """Closed set of ways a harness run can fail."""
    ENGINE_INIT = "engine_init"
    MEMORY_MAP = "memory_map"
    WRITE = "write"
    HOOK_REGISTRATION = "hook_registration"
    EXECUTION_FAULT = "execution_fault"
    REGISTER_READ = "register_read"
    RELEASE = "release"
    VERIFICATION = "verification"


def _build_error_names() -> Dict[int, str]:
    names = {}
    for attr in dir(unicorn_const):
        if attr.startswith("UC_ERR_"):
            names.setdefault(getattr(unicorn_const, attr), attr)
    return names


_ERROR_NAMES = _build_error_names()


def error_name(code: Optional[int]) -> str:
    """Get the UC_ERR_* name for an engine error code.

    Args:
        code: Integer error code returned by the engine

    Returns:
        Symbolic name, or "UC_ERR_UNKNOWN(<code>)" if the code is not known
    """
    if code is None:
        return "UC_ERR_NONE"
    return _ERROR_NAMES.get(code, f"UC_ERR_UNKNOWN({code})")


class HarnessError(Exception):
    """Base class for every failure a harness run can report."""

    kind: FailureKind

    @property
    def exit_status(self) -> int:
        return 1


class EngineError(HarnessError):
    """An engine call failed.

    Attributes:
        code: Engine error code (UcError.errno), or None when the failure was
            detected by the harness rather than returned by the engine
        description: Human-readable description of the failure
    """

    def __init__(self, description: str, code: Optional[int] = None):
        super().__init__(description)
        self.code = code
        self.description = description

    @classmethod
    def from_uc_error(cls, exc: UcError, operation: str) -> "EngineError":
        """Wrap a UcError raised by the given engine operation."""
        code = getattr(exc, "errno", None)
        return cls(f"{operation} failed: {exc} ({error_name(code)})", code=code)

    @property
    def exit_status(self) -> int:
        return self.code if self.code else 1

    def __str__(self) -> str:
        return self.description


class EngineInitError(EngineError):
    kind = FailureKind.ENGINE_INIT


class MemoryMapError(EngineError):
    kind = FailureKind.MEMORY_MAP


class WriteError(EngineError):
    kind = FailureKind.WRITE


class HookRegistrationError(EngineError):
    kind = FailureKind.HOOK_REGISTRATION


class ExecutionFaultError(EngineError):
    kind = FailureKind.EXECUTION_FAULT


class RegisterReadError(EngineError):
    kind = FailureKind.REGISTER_READ


class ReleaseError(EngineError):
    kind = FailureKind.RELEASE


class VerificationFailure(HarnessError):
    """Execution completed cleanly but the observed hook calls were wrong.

    Attributes:
        reasons: One line per failed assertion, primary check first
    """

    kind = FailureKind.VERIFICATION

    def __init__(self, reasons: List[str]):
        super().__init__("; ".join(reasons))
        self.reasons = list(reasons)

    @property
    def exit_status(self) -> int:
        return VERIFICATION_EXIT_STATUS
