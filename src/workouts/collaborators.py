"""External collaborators: schedule, workout catalog and record storage.

Only the interfaces matter to the session core.  The in-memory versions back
simulation mode and tests.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from uuid import UUID

from src.workouts.base import CompletedSessionRecord
from src.workouts.link.payloads import ScheduleData, ScheduleItem, WorkoutSummary

logger = logging.getLogger("pacelink.workouts.collaborators")


class ScheduleProvider(ABC):
    @abstractmethod
    def today(self) -> ScheduleData:
        """Today's planned items."""


class WorkoutCatalog(ABC):
    @abstractmethod
    def summaries(self) -> list[WorkoutSummary]:
        """Workouts the companion can offer."""

    @abstractmethod
    def name_for(self, workout_id: str) -> str | None:
        ...


class RecordSink(ABC):
    """Takes ownership of completed session records."""

    @abstractmethod
    def save(self, record: CompletedSessionRecord) -> None:
        ...

    @abstractmethod
    def get(self, record_id: UUID) -> CompletedSessionRecord | None:
        ...

    @abstractmethod
    def all(self) -> list[CompletedSessionRecord]:
        """Stored records, newest first."""


class InMemorySchedule(ScheduleProvider):
    def __init__(self, items: list[ScheduleItem] | None = None, day_name: str = "Today") -> None:
        self.items = list(items or [])
        self.day_name = day_name

    def today(self) -> ScheduleData:
        return ScheduleData(today_items=list(self.items), day_name=self.day_name)


class InMemoryCatalog(WorkoutCatalog):
    def __init__(self, workouts: list[WorkoutSummary] | None = None) -> None:
        self._workouts = {w.id: w for w in workouts or []}

    def summaries(self) -> list[WorkoutSummary]:
        return list(self._workouts.values())

    def name_for(self, workout_id: str) -> str | None:
        workout = self._workouts.get(workout_id)
        return workout.name if workout else None


class InMemoryRecordSink(RecordSink):
    """Keeps records by id; a record saved twice replaces the first copy."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[UUID, CompletedSessionRecord] = {}

    def save(self, record: CompletedSessionRecord) -> None:
        with self._lock:
            if record.id in self._records:
                logger.info("Replacing stored record %s", record.id)
            self._records[record.id] = record

    def get(self, record_id: UUID) -> CompletedSessionRecord | None:
        return self._records.get(record_id)

    def all(self) -> list[CompletedSessionRecord]:
        with self._lock:
            return sorted(self._records.values(), key=lambda r: r.start, reverse=True)

    def __len__(self) -> int:
        return len(self._records)
