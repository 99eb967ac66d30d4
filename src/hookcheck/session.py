"""ExecutionSession: scoped ownership of one Unicorn engine handle.

Every engine call made by the harness goes through this class, which turns
UcError into the phase-specific HarnessError subclass and guarantees the
handle is released exactly once:

    with ExecutionSession.open(UC_ARCH_MIPS, UC_MODE_MIPS32) as session:
        session.map(base, 0x1000)
        session.write(base, code)
        session.register_code_hook(observer, HookRange.all())
        session.run(base, base + len(code))
        pc = session.read_register(UC_MIPS_REG_PC)
"""

from typing import Any, Callable, List, Optional, Tuple

from unicorn import Uc, UcError, UC_HOOK_CODE, UC_PROT_ALL

from .errors import (
    EngineInitError,
    ExecutionFaultError,
    HookRegistrationError,
    MemoryMapError,
    RegisterReadError,
    ReleaseError,
    WriteError,
)
from .state import HookRange


EngineFactory = Callable[[int, int], Any]
CodeHook = Callable[[Any, int, int, Any], None]


class ExecutionSession:
    """One open engine handle plus the resources registered against it.

    Attributes:
        arch: Engine architecture tag (UC_ARCH_*)
        mode: Engine mode flags (UC_MODE_*)
        regions: Mapped regions as (base, size, perms)
        hooks: Handles returned by hook_add(), deleted on close
    """

    def __init__(self, engine: Any, arch: int, mode: int):
        self._engine = engine
        self.arch = arch
        self.mode = mode
        self.regions: List[Tuple[int, int, int]] = []
        self.hooks: List[Any] = []

    @classmethod
    def open(cls, arch: int, mode: int,
             engine_factory: Optional[EngineFactory] = None) -> "ExecutionSession":
        """Open an engine for the given architecture and mode.

        Args:
            arch: UC_ARCH_* constant
            mode: UC_MODE_* flags
            engine_factory: Callable (arch, mode) -> engine, defaults to Uc

        Raises:
            EngineInitError: If the engine rejects arch/mode
        """
        factory = engine_factory or Uc
        try:
            engine = factory(arch, mode)
        except UcError as exc:
            raise EngineInitError.from_uc_error(exc, "uc_open") from exc
        return cls(engine, arch, mode)

    @property
    def closed(self) -> bool:
        return self._engine is None

    @property
    def engine(self) -> Any:
        """The underlying engine handle.

        Raises:
            RuntimeError: If the session has been closed
        """
        if self._engine is None:
            raise RuntimeError("Session is closed")
        return self._engine

    def map(self, base: int, size: int, perms: int = UC_PROT_ALL) -> None:
        """Map a region of guest memory.

        Raises:
            MemoryMapError: On overlap, misalignment or bad permissions
        """
        try:
            self.engine.mem_map(base, size, perms)
        except UcError as exc:
            raise MemoryMapError.from_uc_error(exc, f"uc_mem_map({base:#x}, {size:#x})") from exc
        self.regions.append((base, size, perms))

    def write(self, address: int, data: bytes) -> None:
        """Write bytes into mapped memory.

        Raises:
            WriteError: If any part of the target is unmapped or protected
        """
        try:
            self.engine.mem_write(address, bytes(data))
        except UcError as exc:
            raise WriteError.from_uc_error(exc, f"uc_mem_write({address:#x}, {len(data)} bytes)") from exc

    def register_code_hook(self, callback: CodeHook, hook_range: Optional[HookRange] = None) -> Any:
        """Register a per-instruction code hook.

        Args:
            callback: Called as callback(uc, address, size, user_data)
            hook_range: Address filter, defaults to every address

        Returns:
            Engine hook handle

        Raises:
            HookRegistrationError: If the engine refuses the hook
        """
        hook_range = hook_range or HookRange.all()
        begin, end = hook_range.engine_bounds()
        try:
            handle = self.engine.hook_add(UC_HOOK_CODE, callback, None, begin, end)
        except UcError as exc:
            raise HookRegistrationError.from_uc_error(exc, f"uc_hook_add(code, {hook_range})") from exc
        self.hooks.append(handle)
        return handle

    def run(self, start: int, end: int, timeout: int = 0, max_instructions: int = 0) -> None:
        """Execute from start until PC reaches end.

        Args:
            start: Address of the first instruction
            end: Address at which the engine stops, before executing it
            timeout: Microseconds, 0 for unbounded
            max_instructions: Instruction limit, 0 for unbounded

        Raises:
            ExecutionFaultError: If the engine faults during execution
        """
        try:
            self.engine.emu_start(start, end, timeout, max_instructions)
        except UcError as exc:
            raise ExecutionFaultError.from_uc_error(exc, f"uc_emu_start({start:#x}, {end:#x})") from exc

    def read_register(self, reg_id: int) -> int:
        """Read one register.

        Raises:
            RegisterReadError: If the engine rejects the register id
        """
        try:
            return self.engine.reg_read(reg_id)
        except UcError as exc:
            raise RegisterReadError.from_uc_error(exc, f"uc_reg_read({reg_id})") from exc

    def close(self) -> None:
        """Delete registered hooks and release the engine handle.

        The native handle is freed before this returns, even if deleting a
        hook fails. Safe to call more than once; only the first call releases
        anything.

        Raises:
            ReleaseError: If hook_del() or uc_close() failed; the handle is
                released regardless
        """
        if self._engine is None:
            return
        engine, self._engine = self._engine, None
        hooks, self.hooks = self.hooks, []

        failure = None
        for handle in hooks:
            try:
                engine.hook_del(handle)
            except UcError as exc:
                failure = failure or ReleaseError.from_uc_error(exc, f"uc_hook_del({handle})")

        # Hook callbacks hold the Uc object in a reference cycle, so its
        # finalizer would otherwise wait for the cyclic collector.
        finalizer = getattr(engine, "_Uc__finalizer", None)
        if finalizer is not None:
            try:
                finalizer()
            except UcError as exc:
                failure = failure or ReleaseError.from_uc_error(exc, "uc_close")

        if failure is not None:
            raise failure

    def __enter__(self) -> "ExecutionSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.close()
        except ReleaseError:
            # The error already propagating is the one worth reporting.
            if exc_type is None:
                raise
