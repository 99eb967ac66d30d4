"""ExecutionObserver: the code-hook callback registered with the engine."""

from typing import Any

from .state import ObserverState


class ExecutionObserver:
    """Code hook that turns retired-instruction notifications into facts.

    The engine calls the observer synchronously from inside emu_start(), once
    per retired instruction in the registered range. It only mutates the
    ObserverState it was given; it never calls back into the engine.

    Attributes:
        state: ObserverState owned by the current run
        loop_top: Address counted as one loop iteration
        witness: Delay-slot address that sets the terminal flag
    """

    def __init__(self, state: ObserverState, loop_top: int, witness: int):
        self.state = state
        self.loop_top = loop_top
        self.witness = witness

    def __call__(self, uc: Any, address: int, size: int, user_data: Any) -> None:
        self.state.trace.append(address)
        if address == self.witness:
            self.state.terminal_seen = True
        if address == self.loop_top:
            self.state.iterations += 1
