"""State store that keeps the fleet state for the life of the process."""

import copy

from .store import FleetState, StateStore

__all__ = ["InMemoryStateStore"]


class InMemoryStateStore(StateStore):
    """Holds a private copy of the last saved state."""

    def __init__(self, state: FleetState | None = None) -> None:
        """Initialize InMemoryStateStore."""
        self._state = copy.deepcopy(state) if state else FleetState()
        self.saves = 0

    async def load(self) -> FleetState:
        """Return a copy of the saved state."""
        return copy.deepcopy(self._state)

    async def save(self, state: FleetState) -> None:
        """Replace the saved state with a copy of `state`."""
        self._state = copy.deepcopy(state)
        self.saves += 1
