"""State store backed by a YAML file."""

import logging
from pathlib import Path

import aiofiles
import aiofiles.os
from mashumaro.exceptions import MissingField, InvalidFieldValue
import yaml

from fleet_trust.exceptions import InputException

from .store import FleetState, StateStore

__all__ = ["FileStateStore"]

_LOGGER = logging.getLogger(__name__)


class FileStateStore(StateStore):
    """Reads and writes the fleet state as a YAML document."""

    def __init__(self, path: Path) -> None:
        """Initialize FileStateStore."""
        self._path = path

    async def load(self) -> FleetState:
        """Read the state file, returning an empty state if it does not exist."""
        if not await aiofiles.os.path.exists(self._path):
            _LOGGER.debug("No state file at %s", self._path)
            return FleetState()
        async with aiofiles.open(str(self._path)) as state_file:
            content = await state_file.read()
        if not content.strip():
            return FleetState()
        try:
            return FleetState.parse_yaml(content)
        except (MissingField, InvalidFieldValue, yaml.YAMLError, ValueError) as err:
            raise InputException(
                f"Could not parse state file {self._path}: {err}"
            ) from err

    async def save(self, state: FleetState) -> None:
        """Write the state file only if its content changed."""
        new_content = state.yaml()
        if await aiofiles.os.path.exists(self._path):
            async with aiofiles.open(str(self._path)) as state_file:
                if await state_file.read() == new_content:
                    return
        else:
            await aiofiles.os.makedirs(self._path.parent, exist_ok=True)
        tmp_path = self._path.with_name(f".{self._path.name}.tmp")
        async with aiofiles.open(str(tmp_path), mode="w") as state_file:
            await state_file.write(new_content)
        await aiofiles.os.replace(tmp_path, self._path)
        _LOGGER.debug("Wrote state to %s", self._path)
