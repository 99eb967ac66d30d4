"""Integration tests for DelaySlotHarness."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from unicorn import Uc, UcError
from unicorn.unicorn_const import UC_ERR_ARCH, UC_ERR_ARG, UC_ERR_HOOK

from hookcheck import (
    DelaySlotHarness,
    EngineError,
    ExecutionFaultError,
    FailureKind,
    HarnessPhase,
    HookRange,
    ProgramImage,
    VerificationFailure,
)
from hookcheck.errors import VERIFICATION_EXIT_STATUS


WITNESS = ProgramImage.reference().delay_slot


class DelaySlotBlindEngine:
    """Engine that executes delay slots but never reports them to code hooks.

    Reproduces the engine defect the harness is meant to catch.
    """

    def __init__(self, arch, mode):
        self._uc = Uc(arch, mode)

    def __getattr__(self, name):
        return getattr(self._uc, name)

    def hook_add(self, htype, callback, user_data=None, begin=1, end=0):
        def filtered(uc, address, size, data):
            if address != WITNESS:
                callback(uc, address, size, data)
        return self._uc.hook_add(htype, filtered, user_data, begin, end)


class HookRefusingEngine:
    def __init__(self, arch, mode):
        self._uc = Uc(arch, mode)

    def __getattr__(self, name):
        return getattr(self._uc, name)

    def hook_add(self, *args, **kwargs):
        raise UcError(UC_ERR_HOOK)


class HookDelFailingEngine:
    def __init__(self, arch, mode):
        self._uc = Uc(arch, mode)

    def __getattr__(self, name):
        return getattr(self._uc, name)

    def hook_del(self, handle):
        raise UcError(UC_ERR_HOOK)


class RegisterRefusingEngine:
    def __init__(self, arch, mode):
        self._uc = Uc(arch, mode)

    def __getattr__(self, name):
        return getattr(self._uc, name)

    def reg_read(self, reg_id):
        raise UcError(UC_ERR_ARG)


def refuse_arch(arch, mode):
    raise UcError(UC_ERR_ARCH)


class TestReferenceScenario:
    """The reference loop at 0x100000 with counter 2."""

    @pytest.fixture
    def harness(self):
        return DelaySlotHarness()

    def test_delay_slot_hook_fires(self, harness):
        """Primary regression signal: the witness address is observed."""
        verdict = harness.run()

        assert verdict.terminal_seen is True
        assert verdict.passed is True
        assert verdict.failure_kind is None
        assert verdict.error is None
        assert verdict.exit_status == 0

    def test_loop_top_observed_three_times(self, harness):
        verdict = harness.run()
        assert verdict.iterations == 3
        assert verdict.trace.count(0x100004) == 3
        assert verdict.trace.count(0x10000C) >= 1

    def test_trace_order(self, harness):
        """li, then nop/branch/delay-slot once per iteration."""
        verdict = harness.run()
        assert list(verdict.trace) == [
            0x100000,
            0x100004, 0x100008, 0x10000C,
            0x100004, 0x100008, 0x10000C,
            0x100004, 0x100008, 0x10000C,
        ]

    def test_final_registers(self, harness):
        """PC stops at the exit; the last delay slot leaves $a0 at -1."""
        verdict = harness.run()
        assert verdict.final_pc == 0x100010
        assert verdict.final_counter == 0xFFFFFFFF

    def test_phase_concluded(self, harness):
        assert harness.phase is HarnessPhase.UNSTARTED
        harness.run()
        assert harness.phase is HarnessPhase.CONCLUDED

    def test_strict_mode_passes(self):
        verdict = DelaySlotHarness(strict=True).run()
        assert verdict.passed is True


class TestDeterminism:
    """Two fresh runs give the same verdict."""

    def test_same_harness_twice(self):
        harness = DelaySlotHarness(strict=True)
        first = harness.run()
        second = harness.run()
        assert first == second

    def test_independent_harnesses(self):
        """Runs share no observer state."""
        a = DelaySlotHarness()
        b = DelaySlotHarness()
        va = a.run()
        vb = b.run()
        assert a.state is not b.state
        assert va.iterations == vb.iterations == 3
        assert va.trace == vb.trace

    def test_state_reset_between_runs(self):
        harness = DelaySlotHarness()
        harness.run()
        first_state = harness.state
        harness.run()
        assert harness.state is not first_state
        assert harness.state.iterations == 3


class TestHookRanges:
    """Code hook address filters."""

    def test_all_range_has_no_gaps(self):
        """Every instruction address in the image is observed."""
        image = ProgramImage.reference()
        verdict = DelaySlotHarness(image=image, hook_range=HookRange.all()).run()
        assert set(verdict.trace) == set(image.addresses())

    def test_range_excluding_delay_slot_fails_verification(self):
        image = ProgramImage.reference()
        hook_range = HookRange.bounded(image.base, image.branch_address)
        verdict = DelaySlotHarness(image=image, hook_range=hook_range).run()

        assert WITNESS not in verdict.trace
        assert verdict.iterations == 3
        assert verdict.passed is False
        assert verdict.failure_kind is FailureKind.VERIFICATION

    def test_range_of_delay_slot_only(self):
        image = ProgramImage.reference()
        hook_range = HookRange.bounded(image.delay_slot, image.delay_slot)
        verdict = DelaySlotHarness(image=image, hook_range=hook_range).run()

        assert list(verdict.trace) == [image.delay_slot] * 3
        assert verdict.passed is True

    def test_strict_mode_flags_missing_iterations(self):
        image = ProgramImage.reference()
        hook_range = HookRange.bounded(image.delay_slot, image.delay_slot)
        verdict = DelaySlotHarness(image=image, hook_range=hook_range, strict=True).run()

        assert verdict.passed is False
        assert verdict.terminal_seen is True
        assert isinstance(verdict.error, VerificationFailure)
        assert "loop top observed 0 times" in str(verdict.error)


class TestBrokenEngine:
    """An engine that skips delay-slot hooks must be caught."""

    def test_withheld_delay_slot_hook(self):
        verdict = DelaySlotHarness(engine_factory=DelaySlotBlindEngine).run()

        assert verdict.passed is False
        assert verdict.terminal_seen is False
        assert verdict.failure_kind is FailureKind.VERIFICATION
        assert isinstance(verdict.error, VerificationFailure)
        assert not isinstance(verdict.error, EngineError)
        assert verdict.exit_status == VERIFICATION_EXIT_STATUS

    def test_execution_still_completes(self):
        """The instruction ran; only its hook call was missing."""
        verdict = DelaySlotHarness(engine_factory=DelaySlotBlindEngine).run()
        assert verdict.final_pc == 0x100010
        assert verdict.final_counter == 0xFFFFFFFF
        assert verdict.iterations == 3

    def test_failure_reason_names_witness(self):
        verdict = DelaySlotHarness(engine_factory=DelaySlotBlindEngine).run()
        assert verdict.error.reasons[0] == (
            "code hook never fired for delay-slot instruction at 0x10000c"
        )


class TestEngineFailures:
    """Configuration and execution errors conclude the run as failures."""

    def test_engine_init_failure(self):
        harness = DelaySlotHarness(engine_factory=refuse_arch)
        verdict = harness.run()

        assert verdict.passed is False
        assert verdict.failure_kind is FailureKind.ENGINE_INIT
        assert verdict.exit_status == UC_ERR_ARCH
        assert harness.phase is HarnessPhase.CONCLUDED

    def test_map_failure(self):
        verdict = DelaySlotHarness(map_size=0).run()
        assert verdict.failure_kind is FailureKind.MEMORY_MAP
        assert verdict.trace == ()

    def test_write_past_mapping(self):
        """Image straddling the end of the mapped page: WriteError."""
        image = ProgramImage.build(2, base=0x100FF8)
        verdict = DelaySlotHarness(image=image, map_size=0x1000).run()

        assert verdict.passed is False
        assert verdict.failure_kind is FailureKind.WRITE
        assert isinstance(verdict.error, EngineError)
        assert verdict.final_pc is None

    def test_hook_registration_failure(self):
        verdict = DelaySlotHarness(engine_factory=HookRefusingEngine).run()
        assert verdict.failure_kind is FailureKind.HOOK_REGISTRATION
        assert verdict.exit_status == UC_ERR_HOOK

    def test_instruction_limit_is_execution_fault(self):
        """Stopping short of the exit address is a fault, not a pass."""
        verdict = DelaySlotHarness(max_instructions=3).run()

        assert verdict.passed is False
        assert verdict.failure_kind is FailureKind.EXECUTION_FAULT
        assert isinstance(verdict.error, ExecutionFaultError)
        assert verdict.error.code is None
        assert verdict.exit_status == 1
        assert verdict.final_pc != 0x100010

    def test_generous_limit_still_passes(self):
        verdict = DelaySlotHarness(max_instructions=100).run()
        assert verdict.passed is True

    def test_register_read_failure(self):
        verdict = DelaySlotHarness(engine_factory=RegisterRefusingEngine).run()
        assert verdict.passed is False
        assert verdict.failure_kind is FailureKind.REGISTER_READ
        assert verdict.exit_status == UC_ERR_ARG

    def test_release_failure(self, released):
        """A failed hook_del is reported, and the handle is still freed."""
        verdict = DelaySlotHarness(engine_factory=HookDelFailingEngine).run()
        assert verdict.passed is False
        assert verdict.failure_kind is FailureKind.RELEASE
        assert verdict.terminal_seen is True
        assert len(released) == 1


class TestHandleRelease:
    """Every run frees its engine handle before returning."""

    def test_passing_run(self, released):
        verdict = DelaySlotHarness().run()
        assert verdict.passed is True
        assert len(released) == 1

    def test_failed_write(self, released):
        image = ProgramImage.build(2, base=0x100FF8)
        verdict = DelaySlotHarness(image=image).run()
        assert verdict.failure_kind is FailureKind.WRITE
        assert len(released) == 1

    def test_verification_failure(self, released):
        verdict = DelaySlotHarness(engine_factory=DelaySlotBlindEngine).run()
        assert verdict.failure_kind is FailureKind.VERIFICATION
        assert len(released) == 1

    def test_repeated_runs(self, released):
        harness = DelaySlotHarness()
        harness.run()
        harness.run()
        assert len(released) == 2


class TestLoopCounts:
    """Other counter values keep the same shape."""

    @pytest.mark.parametrize("count", [0, 1, 5])
    def test_iterations(self, count):
        image = ProgramImage.build(count)
        verdict = DelaySlotHarness(image=image, strict=True).run()
        assert verdict.passed is True
        assert verdict.iterations == count + 1
        assert list(verdict.trace) == image.expected_trace()


class TestSummary:
    def test_summary_fields(self):
        harness = DelaySlotHarness()
        summary = harness.get_summary(harness.run())
        assert summary["passed"] is True
        assert summary["failure_kind"] is None
        assert summary["iterations"] == 3
        assert summary["expected_iterations"] == 3
        assert summary["observed"] == 10
        assert summary["hook_range"] == "all"

    def test_report_output(self, capsys):
        harness = DelaySlotHarness()
        verdict = harness.run()
        harness.print_trace(verdict)
        harness.print_report(verdict)
        out = capsys.readouterr().out
        assert "loop 2:" in out
        assert "Code: 10000c  <- delay slot" in out
        assert "pc is 100010" in out
        assert "TEST PASSED!" in out

    def test_report_failure(self, capsys):
        harness = DelaySlotHarness(engine_factory=DelaySlotBlindEngine)
        harness.print_report(harness.run())
        out = capsys.readouterr().out
        assert "Failure (verification)" in out
        assert "TEST FAILED!" in out
