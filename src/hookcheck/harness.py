"""DelaySlotHarness: drive one engine run and turn it into a Verdict.

The harness walks a four-state machine:

    UNSTARTED -> CONFIGURED -> EXECUTING -> CONCLUDED

CONFIGURED means the image is mapped and written and the code hook is
registered. Any engine error on the way there jumps straight to CONCLUDED
with the originating error recorded; the session is always closed before
the verdict is built.

The primary pass condition is the delay-slot witness flag. Strict mode also
checks the iteration count and the final counter register.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from unicorn import UC_ARCH_MIPS, UC_MODE_LITTLE_ENDIAN, UC_MODE_MIPS32, UC_PROT_ALL
from unicorn.mips_const import UC_MIPS_REG_A0, UC_MIPS_REG_PC

from .errors import (
    ExecutionFaultError,
    FailureKind,
    HarnessError,
    VerificationFailure,
)
from .observer import ExecutionObserver
from .program import ProgramImage
from .session import ExecutionSession
from .state import HookRange, ObserverState


class HarnessPhase(Enum):
    UNSTARTED = "unstarted"
    CONFIGURED = "configured"
    EXECUTING = "executing"
    CONCLUDED = "concluded"


@dataclass(frozen=True)
class Verdict:
    """Outcome of one harness run.

    Attributes:
        passed: True iff the witness was observed and no engine error occurred
            (and, in strict mode, every extra check held)
        failure_kind: Which step failed, None on pass
        error: The HarnessError behind the failure, None on pass
        iterations: Loop-top retirements observed
        terminal_seen: Whether the delay-slot witness was observed
        final_pc: PC after execution, None if execution never completed
        final_counter: $a0 after execution, None if execution never completed
        trace: Every observed address in order
    """
    passed: bool
    failure_kind: Optional[FailureKind] = None
    error: Optional[HarnessError] = None
    iterations: int = 0
    terminal_seen: bool = False
    final_pc: Optional[int] = None
    final_counter: Optional[int] = None
    trace: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def exit_status(self) -> int:
        if self.passed:
            return 0
        return self.error.exit_status if self.error else 1


class DelaySlotHarness:
    """Verifies that the engine's code hook fires for delay-slot instructions.

    Attributes:
        image: ProgramImage to load and run
        hook_range: Address filter for the code hook
        map_size: Size of the region mapped at the page holding image.base
        timeout: Engine timeout in microseconds (0 = unbounded)
        max_instructions: Engine instruction limit (0 = unbounded)
        strict: Also assert iterations and final registers
        phase: Current HarnessPhase
        state: ObserverState of the most recent run
    """

    DEFAULT_ARCH = UC_ARCH_MIPS
    DEFAULT_MODE = UC_MODE_MIPS32 + UC_MODE_LITTLE_ENDIAN
    PAGE_SIZE = 0x1000
    DEFAULT_MAP_SIZE = 0x1000
    DEFAULT_TIMEOUT = 0
    DEFAULT_MAX_INSTRUCTIONS = 0

    PC_REGISTER = UC_MIPS_REG_PC
    COUNTER_REGISTER = UC_MIPS_REG_A0
    REGISTER_MASK = 0xFFFFFFFF

    def __init__(
        self,
        image: Optional[ProgramImage] = None,
        hook_range: Optional[HookRange] = None,
        map_size: int = DEFAULT_MAP_SIZE,
        timeout: int = DEFAULT_TIMEOUT,
        max_instructions: int = DEFAULT_MAX_INSTRUCTIONS,
        strict: bool = False,
        arch: int = DEFAULT_ARCH,
        mode: int = DEFAULT_MODE,
        engine_factory: Optional[Callable[[int, int], Any]] = None,
    ):
        """Initialize the harness.

        Args:
            image: Program to run (defaults to the reference image)
            hook_range: Code hook filter (defaults to every address)
            map_size: Bytes mapped from the page holding image.base
            timeout: Engine timeout in microseconds, 0 for unbounded
            max_instructions: Engine instruction limit, 0 for unbounded
            strict: Also check iteration count and final registers
            arch: Engine architecture
            mode: Engine mode
            engine_factory: Replacement for unicorn.Uc, used to inject engines
        """
        self.image = image or ProgramImage.reference()
        self.hook_range = hook_range or HookRange.all()
        self.map_size = map_size
        self.timeout = timeout
        self.max_instructions = max_instructions
        self.strict = strict
        self.arch = arch
        self.mode = mode
        self.engine_factory = engine_factory
        self.phase = HarnessPhase.UNSTARTED
        self.state: Optional[ObserverState] = None

    def _configure(self, session: ExecutionSession, observer: ExecutionObserver) -> None:
        # The engine only maps whole pages
        map_base = self.image.base - (self.image.base % self.PAGE_SIZE)
        session.map(map_base, self.map_size, UC_PROT_ALL)
        session.write(self.image.base, self.image.code)
        session.register_code_hook(observer, self.hook_range)
        self.phase = HarnessPhase.CONFIGURED

    def _execute(self, session: ExecutionSession) -> Tuple[int, int]:
        self.phase = HarnessPhase.EXECUTING
        session.run(self.image.base, self.image.end_address, self.timeout, self.max_instructions)
        return (session.read_register(self.PC_REGISTER) & self.REGISTER_MASK,
                session.read_register(self.COUNTER_REGISTER) & self.REGISTER_MASK)

    def _check(self, state: ObserverState, final_counter: int) -> List[str]:
        reasons = []
        if not state.terminal_seen:
            reasons.append(f"code hook never fired for delay-slot instruction at {self.image.delay_slot:#x}")
        if self.strict:
            if state.iterations != self.image.expected_iterations:
                reasons.append(f"loop top observed {state.iterations} times, "
                               f"expected {self.image.expected_iterations}")
            if final_counter != self.image.expected_final_counter:
                reasons.append(f"final counter {final_counter:#x}, "
                               f"expected {self.image.expected_final_counter:#x}")
        return reasons

    def run(self) -> Verdict:
        """Run the scenario once on a fresh session.

        Returns:
            Verdict for this run; engine errors are captured, not raised
        """
        state = ObserverState()
        self.state = state
        self.phase = HarnessPhase.UNSTARTED
        observer = ExecutionObserver(state, self.image.loop_top, self.image.delay_slot)

        final_pc = final_counter = None
        try:
            with ExecutionSession.open(self.arch, self.mode, self.engine_factory) as session:
                self._configure(session, observer)
                final_pc, final_counter = self._execute(session)
                # emu_start() returns cleanly when a timeout or instruction limit hits
                if final_pc != self.image.end_address:
                    raise ExecutionFaultError(
                        f"execution stopped at {final_pc:#x} before reaching "
                        f"{self.image.end_address:#x} (timeout={self.timeout}, "
                        f"max_instructions={self.max_instructions})"
                    )
        except HarnessError as e:
            self.phase = HarnessPhase.CONCLUDED
            return self._verdict(state, error=e, final_pc=final_pc, final_counter=final_counter)

        self.phase = HarnessPhase.CONCLUDED
        reasons = self._check(state, final_counter)
        error = VerificationFailure(reasons) if reasons else None
        return self._verdict(state, error=error, final_pc=final_pc, final_counter=final_counter)

    def _verdict(self, state: ObserverState, error: Optional[HarnessError],
                 final_pc: Optional[int], final_counter: Optional[int]) -> Verdict:
        return Verdict(
            passed=error is None,
            failure_kind=error.kind if error else None,
            error=error,
            iterations=state.iterations,
            terminal_seen=state.terminal_seen,
            final_pc=final_pc,
            final_counter=final_counter,
            trace=tuple(state.trace),
        )

    def get_summary(self, verdict: Verdict) -> Dict:
        """Get a plain-dict summary of a verdict.

        Returns:
            Dictionary with outcome, observed counts and final registers
        """
        return {
            "passed": verdict.passed,
            "failure_kind": verdict.failure_kind.value if verdict.failure_kind else None,
            "error": str(verdict.error) if verdict.error else None,
            "iterations": verdict.iterations,
            "expected_iterations": self.image.expected_iterations,
            "terminal_seen": verdict.terminal_seen,
            "final_pc": verdict.final_pc,
            "final_counter": verdict.final_counter,
            "observed": len(verdict.trace),
            "hook_range": str(self.hook_range),
        }

    def print_trace(self, verdict: Verdict) -> None:
        """Print every observed address, marking each loop iteration."""
        loop = 0
        for address in verdict.trace:
            if address == self.image.loop_top:
                print(f"\nloop {loop}:")
                loop += 1
            marker = "  <- delay slot" if address == self.image.delay_slot else ""
            print(f"Code: {address:x}{marker}")

    def print_report(self, verdict: Verdict) -> None:
        """Print final registers and the verdict in human-readable form."""
        print("=" * 60)
        print("DELAY-SLOT CODE HOOK CHECK")
        print("=" * 60)
        for line in self.image.listing():
            print(f"  {line}")
        print()
        if verdict.final_pc is not None:
            print(f"pc is {verdict.final_pc:X}")
        if verdict.final_counter is not None:
            print(f"a0 is {verdict.final_counter:X}")
        print(f"loop top observed {verdict.iterations} times "
              f"(expected {self.image.expected_iterations})")
        print(f"delay slot observed: {verdict.terminal_seen}")

        if verdict.passed:
            print("\n\nTEST PASSED!\n")
        else:
            print(f"\nFailure ({verdict.failure_kind.value}): {verdict.error}")
            print("\n\nTEST FAILED!\n")
