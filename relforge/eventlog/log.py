"""
Event log - hierarchical stage/task progress reporting.

A Log creates Stages; a Stage creates Tasks with increasing indices up to
its declared total. Each Task moves through:

    created -> started -> finished | failed

Every transition out of "created" emits one LogEntry to the Log's device.
Device failures are logged and dropped: progress reporting never aborts
the work being reported on.

Usage:
    stage = log.begin_stage("Compiling release app/1.0", 2)
    task = stage.begin_task("Package base/1.0")
    err = task.end(do_work())   # returns do_work()'s error unchanged
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional

from relforge.errors import EventLogError

if TYPE_CHECKING:
    from .device import Device


class TaskState(str, Enum):
    """State of a task."""
    CREATED = "created"
    STARTED = "started"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass(frozen=True)
class LogEntry:
    """
    One event log line.

    Attributes:
        time: Unix timestamp (seconds)
        stage: Stage name
        task: Task name
        tags: Free-form tags of the stage
        total: Number of tasks the stage expects
        index: Index of this task within the stage (0-based)
        state: Task state after the transition
        progress: 0 when started, 100 when ended
        data: Extra payload, e.g. {"error": "..."} for failures
    """
    time: int
    stage: str
    task: str
    tags: tuple[str, ...]
    total: int
    index: int
    state: str
    progress: int
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "time": self.time,
            "stage": self.stage,
            "task": self.task,
            "tags": list(self.tags),
            "total": self.total,
            "index": self.index,
            "state": self.state,
            "progress": self.progress,
        }
        if self.data:
            result["data"] = self.data
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogEntry":
        """Deserialize from dictionary."""
        return cls(
            time=data["time"],
            stage=data["stage"],
            task=data["task"],
            tags=tuple(data.get("tags", [])),
            total=data["total"],
            index=data["index"],
            state=data["state"],
            progress=data.get("progress", 0),
            data=data.get("data", {}),
        )


class Log:
    """
    Entry point of the event log; owns the device and serializes writes.
    """

    def __init__(
        self,
        device: "Device",
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._device = device
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._lock = threading.Lock()

    def begin_stage(self, name: str, total: int, tags: tuple[str, ...] = ()) -> "Stage":
        """
        Open a stage expecting total tasks.

        Args:
            name: Stage description, e.g. "Compiling release app/1.0"
            total: Number of tasks the stage will run
            tags: Optional tags copied onto every entry

        Returns:
            The new Stage
        """
        if total < 0:
            raise EventLogError(f"Stage '{name}' total must not be negative")
        return Stage(self, name, total, tags)

    def now(self) -> int:
        return int(self._clock())

    def write_log_entry_no_err(self, entry: LogEntry) -> None:
        """Write an entry, logging (not raising) device failures."""
        with self._lock:
            try:
                self._device.write_log_entry(entry)
            except Exception as e:
                self._logger.error(f"Failed writing log entry: {e}")


class Stage:
    """A group of a known number of tasks."""

    def __init__(self, log: Log, name: str, total: int, tags: tuple[str, ...] = ()):
        self._log = log
        self.name = name
        self.total = total
        self.tags = tuple(tags)
        self._next_index = 0
        self._lock = threading.Lock()

    @property
    def next_index(self) -> int:
        return self._next_index

    def begin_task(self, name: str) -> "Task":
        """
        Create the next task and start it.

        Raises:
            EventLogError: If the stage already began total tasks
        """
        with self._lock:
            if self._next_index >= self.total:
                raise EventLogError(
                    f"Stage '{self.name}' already began all {self.total} tasks"
                )
            task = Task(self, name, self._next_index)
            self._next_index += 1
        task.start()
        return task

    def _emit(self, task: "Task", progress: int, data: Optional[dict[str, Any]] = None) -> None:
        entry = LogEntry(
            time=self._log.now(),
            stage=self.name,
            task=task.name,
            tags=self.tags,
            total=self.total,
            index=task.index,
            state=task.state.value,
            progress=progress,
            data=data or {},
        )
        self._log.write_log_entry_no_err(entry)


class Task:
    """One unit of work within a Stage."""

    def __init__(self, stage: Stage, name: str, index: int):
        self.stage = stage
        self.name = name
        self.index = index
        self.state = TaskState.CREATED

    def start(self) -> None:
        """Move to started and emit an entry."""
        if self.state != TaskState.CREATED:
            raise EventLogError(f"Task '{self.name}' cannot start from {self.state.value}")
        self.state = TaskState.STARTED
        self.stage._emit(self, progress=0)

    def end(self, error: Optional[BaseException] = None) -> Optional[BaseException]:
        """
        Finish the task, failed if error is given.

        Args:
            error: The error the task's work ended with, if any

        Returns:
            error, unchanged, so callers can log and propagate in one step
        """
        if self.state != TaskState.STARTED:
            raise EventLogError(f"Task '{self.name}' cannot end from {self.state.value}")

        if error is None:
            self.state = TaskState.FINISHED
            self.stage._emit(self, progress=100)
        else:
            self.state = TaskState.FAILED
            self.stage._emit(self, progress=100, data={"error": str(error)})
        return error
