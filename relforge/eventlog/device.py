"""
Event log devices - where LogEntries are rendered.

- JSONDevice: one JSON object per line, for machines
- TextDevice: "<State> <stage> > <task>" per line, for people
"""

import json
from typing import IO, Protocol, runtime_checkable

from relforge.errors import EventLogError

from .log import LogEntry


@runtime_checkable
class Device(Protocol):
    """Protocol for event log output devices."""

    def write_log_entry(self, entry: LogEntry) -> None:
        """
        Render one entry.

        Raises:
            EventLogError: If the entry cannot be written
        """
        ...


class JSONDevice:
    """Writes entries as JSON lines."""

    def __init__(self, stream: IO[str]):
        self._stream = stream

    def write_log_entry(self, entry: LogEntry) -> None:
        try:
            line = json.dumps(entry.to_dict())
        except (TypeError, ValueError) as e:
            raise EventLogError(f"Marshalling log entry: {e}") from e

        try:
            self._stream.write(line + "\n")
            self._stream.flush()
        except (OSError, ValueError) as e:
            raise EventLogError(f"Writing log entry: {e}") from e


class TextDevice:
    """Writes entries as one human-readable line each."""

    def __init__(self, stream: IO[str]):
        self._stream = stream

    def write_log_entry(self, entry: LogEntry) -> None:
        line = f"{entry.state.title()} {entry.stage.lower()} > {entry.task}\n"
        try:
            self._stream.write(line)
            self._stream.flush()
        except (OSError, ValueError) as e:
            raise EventLogError(f"Writing log entry: {e}") from e
