"""hookcheck: verifies Unicorn's code hook fires for branch delay slots.

Some emulator builds execute the instruction in a MIPS branch delay slot but
skip the UC_HOOK_CODE callback for it. hookcheck loads a four-instruction
loop whose counter decrement sits in the delay slot, hooks every address,
runs it, and checks that the delay-slot address was reported.

Modules:
    program: ProgramImage, the fixed MIPS32 loop
    session: ExecutionSession, scoped ownership of one engine handle
    state: HookRange and ObserverState
    observer: ExecutionObserver, the code-hook callback
    harness: DelaySlotHarness and Verdict
    errors: Failure taxonomy
"""

__version__ = "0.1.0"

from .errors import (
    EngineError,
    EngineInitError,
    ExecutionFaultError,
    FailureKind,
    HarnessError,
    HookRegistrationError,
    MemoryMapError,
    RegisterReadError,
    ReleaseError,
    VerificationFailure,
    WriteError,
)
from .harness import DelaySlotHarness, HarnessPhase, Verdict
from .observer import ExecutionObserver
from .program import ProgramImage
from .session import ExecutionSession
from .state import HookRange, ObserverState, RangeKind

__all__ = [
    "DelaySlotHarness", "HarnessPhase", "Verdict",
    "ExecutionObserver", "ExecutionSession", "ProgramImage",
    "HookRange", "ObserverState", "RangeKind",
    "FailureKind", "HarnessError", "EngineError", "EngineInitError",
    "MemoryMapError", "WriteError", "HookRegistrationError",
    "ExecutionFaultError", "RegisterReadError", "ReleaseError",
    "VerificationFailure",
]
