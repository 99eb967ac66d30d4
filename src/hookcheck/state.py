"""Observer-side state for hookcheck runs.

This module defines the two small value types that sit between the harness
and the engine's code hook:

    - HookRange: which instruction addresses the hook is registered for
    - ObserverState: what the hook saw while the engine was running

ObserverState is created per run and handed to the observer explicitly, so
two runs never share counters or flags.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


# Engine sentinel for "hook every address": begin > end.
ALL_ADDRESSES_BOUNDS = (1, 0)


class RangeKind(Enum):
    ALL = "all"
    BOUNDED = "bounded"


@dataclass(frozen=True)
class HookRange:
    """Address filter for a code hook.

    Attributes:
        kind: RangeKind.ALL or RangeKind.BOUNDED
        begin: First hooked address (inclusive), BOUNDED only
        end: Last hooked address (inclusive), BOUNDED only
    """
    kind: RangeKind = RangeKind.ALL
    begin: Optional[int] = None
    end: Optional[int] = None

    def __post_init__(self):
        if self.kind is RangeKind.ALL:
            if self.begin is not None or self.end is not None:
                raise ValueError("RangeKind.ALL takes no bounds")
        else:
            if self.begin is None or self.end is None:
                raise ValueError("RangeKind.BOUNDED requires begin and end")
            if self.begin < 0 or self.begin > self.end:
                raise ValueError(f"Invalid hook range: {self.begin:#x}..{self.end:#x}")

    @classmethod
    def all(cls) -> "HookRange":
        return cls(RangeKind.ALL)

    @classmethod
    def bounded(cls, begin: int, end: int) -> "HookRange":
        return cls(RangeKind.BOUNDED, begin, end)

    @classmethod
    def parse(cls, text: str) -> "HookRange":
        """Parse "all" or "LO:HI" (hex or decimal, inclusive).

        Raises:
            ValueError: If text is neither form
        """
        text = text.strip().lower()
        if text == "all":
            return cls.all()
        lo, sep, hi = text.partition(":")
        if not sep:
            raise ValueError(f"Hook range must be 'all' or 'LO:HI', got {text!r}")
        return cls.bounded(int(lo, 0), int(hi, 0))

    def engine_bounds(self) -> Tuple[int, int]:
        """(begin, end) pair as the engine's hook_add() expects it."""
        if self.kind is RangeKind.ALL:
            return ALL_ADDRESSES_BOUNDS
        return (self.begin, self.end)

    def contains(self, address: int) -> bool:
        if self.kind is RangeKind.ALL:
            return True
        return self.begin <= address <= self.end

    def __str__(self) -> str:
        if self.kind is RangeKind.ALL:
            return "all"
        return f"{self.begin:#x}:{self.end:#x}"


@dataclass
class ObserverState:
    """What the code hook recorded during one run.

    Attributes:
        iterations: Number of times the loop top was retired
        terminal_seen: Whether the delay-slot witness address was retired
        trace: Every hooked address, in the order the engine reported it
    """
    iterations: int = 0
    terminal_seen: bool = False
    trace: List[int] = field(default_factory=list)

    def snapshot(self) -> dict:
        """Copy of the state, safe to keep after the run."""
        return {
            "iterations": self.iterations,
            "terminal_seen": self.terminal_seen,
            "trace": list(self.trace),
        }

    def count(self, address: int) -> int:
        """Number of times address was observed."""
        return self.trace.count(address)

    def __str__(self) -> str:
        return (f"iterations={self.iterations} terminal_seen={self.terminal_seen} "
                f"observed={len(self.trace)}")
