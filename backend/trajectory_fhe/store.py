"""Encrypted data store: exclusive owner of missions, ciphertexts and reveal state.

Records handed out are frozen dataclasses, so callers never hold a mutable
reference into the store. Id allocation and the mission map sit behind a
registry lock; each mission's mutable state (reveal, analysis list) sits
behind its own lock.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Iterator, Mapping

from trajectory_fhe.errors import AlreadyRevealed, AnalysisNotFound, MissionNotFound
from trajectory_fhe.events import NotificationBus
from trajectory_fhe.fhe import Ciphertext
from trajectory_fhe.models import NotificationType

logger = logging.getLogger(__name__)

# Fixed field orders, shared with oracle batches and cleartext decoding
TRAJECTORY_FIELDS = ("position_x", "position_y", "position_z", "velocity", "time_window")
ANALYSIS_FIELDS = ("risk_score", "distance_squared", "time_conflict_flag")

INVALID_MISSION_ID = 0


@dataclass(frozen=True)
class Mission:
    id: int
    operator: str
    created_at: float
    mission_name: str = ""


@dataclass(frozen=True)
class EncryptedTrajectory:
    mission_id: int
    position_x: Ciphertext
    position_y: Ciphertext
    position_z: Ciphertext
    velocity: Ciphertext
    time_window: Ciphertext

    def batch(self) -> list[Ciphertext]:
        return [getattr(self, name) for name in TRAJECTORY_FIELDS]


@dataclass(frozen=True)
class DecryptedTrajectory:
    mission_id: int
    position_x: int = 0
    position_y: int = 0
    position_z: int = 0
    velocity: int = 0
    time_window: int = 0
    is_revealed: bool = False


@dataclass(frozen=True)
class CollisionAnalysis:
    analysis_id: int
    mission_id: int
    other_id: int
    distance_squared: Ciphertext
    time_conflict_flag: Ciphertext
    risk_score: Ciphertext

    def batch(self) -> list[Ciphertext]:
        return [getattr(self, name) for name in ANALYSIS_FIELDS]


@dataclass(frozen=True)
class DecryptedAnalysis:
    mission_id: int
    analysis_id: int
    risk_score: int = 0
    distance_squared: int = 0
    time_conflict_flag: int = 0
    is_revealed: bool = False


@dataclass
class _MissionRecord:
    mission: Mission
    trajectory: EncryptedTrajectory | None = None
    decrypted: DecryptedTrajectory | None = None
    analyses: list[CollisionAnalysis] = field(default_factory=list)
    decrypted_analyses: list[DecryptedAnalysis] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock)


class EncryptedDataStore:
    """Repository of mission state keyed by integer mission id."""

    def __init__(self, bus: NotificationBus | None = None):
        self.bus = bus or NotificationBus()
        self._records: dict[int, _MissionRecord] = {}
        self._submitted: list[int] = []
        self._next_id = 1
        self._registry_lock = threading.RLock()

    # --- writes ---

    def register_mission(self, operator: str, mission_name: str = "") -> int:
        """Allocate the next mission id. Never fails."""
        with self._registry_lock:
            mission_id = self._next_id
            self._next_id += 1
            self._records[mission_id] = _MissionRecord(
                mission=Mission(id=mission_id, operator=operator, created_at=time.time(), mission_name=mission_name)
            )
        logger.debug("Registered mission %d for %s", mission_id, operator)
        return mission_id

    def put_encrypted_trajectory(self, mission_id: int, fields: Mapping[str, Ciphertext]) -> EncryptedTrajectory:
        """Store the five ciphertext handles and a zeroed, unrevealed plaintext shadow."""
        missing = [name for name in TRAJECTORY_FIELDS if name not in fields]
        if missing:
            raise ValueError(f"missing trajectory fields: {', '.join(missing)}")
        record = self._record(mission_id)
        trajectory = EncryptedTrajectory(mission_id=mission_id, **{name: fields[name] for name in TRAJECTORY_FIELDS})
        # Lock order is always mission lock, then registry lock
        with record.lock:
            if record.trajectory is not None:
                raise ValueError(f"mission {mission_id} already has a trajectory")
            record.trajectory = trajectory
            record.decrypted = DecryptedTrajectory(mission_id=mission_id)
            with self._registry_lock:
                self._submitted.append(mission_id)

        mission = record.mission
        self.bus.emit(
            NotificationType.TRAJECTORY_SUBMITTED,
            mission_id,
            operator=mission.operator,
            timestamp=mission.created_at,
        )
        return trajectory

    def append_analysis(
        self,
        mission_id: int,
        other_id: int,
        distance_squared: Ciphertext,
        time_conflict_flag: Ciphertext,
        risk_score: Ciphertext,
    ) -> CollisionAnalysis:
        record = self._record(mission_id)
        with record.lock:
            analysis = CollisionAnalysis(
                analysis_id=len(record.analyses),
                mission_id=mission_id,
                other_id=other_id,
                distance_squared=distance_squared,
                time_conflict_flag=time_conflict_flag,
                risk_score=risk_score,
            )
            record.analyses.append(analysis)
            record.decrypted_analyses.append(
                DecryptedAnalysis(mission_id=mission_id, analysis_id=analysis.analysis_id)
            )
        return analysis

    def reveal_trajectory(self, mission_id: int, values: Mapping[str, int]) -> DecryptedTrajectory:
        """One-shot Hidden -> Revealed transition of a trajectory's plaintext shadow."""
        record = self._record(mission_id)
        with record.lock:
            current = self._decrypted(record)
            if current.is_revealed:
                raise AlreadyRevealed(f"trajectory of mission {mission_id} is already revealed")
            revealed = replace(current, is_revealed=True, **{name: int(values[name]) for name in TRAJECTORY_FIELDS})
            record.decrypted = revealed
        return revealed

    def reveal_analysis(self, mission_id: int, analysis_id: int, values: Mapping[str, int]) -> DecryptedAnalysis:
        record = self._record(mission_id)
        with record.lock:
            current = self._decrypted_analysis(record, analysis_id)
            if current.is_revealed:
                raise AlreadyRevealed(f"analysis {analysis_id} of mission {mission_id} is already revealed")
            revealed = replace(current, is_revealed=True, **{name: int(values[name]) for name in ANALYSIS_FIELDS})
            record.decrypted_analyses[analysis_id] = revealed
        return revealed

    # --- reads ---

    @contextmanager
    def mission_lock(self, mission_id: int) -> Iterator[None]:
        """Hold a mission's exclusive lock across a check-then-mutate sequence."""
        record = self._record(mission_id)
        with record.lock:
            yield

    def get_mission(self, mission_id: int) -> Mission:
        return self._record(mission_id).mission

    def get_encrypted_trajectory(self, mission_id: int) -> EncryptedTrajectory:
        record = self._record(mission_id)
        if record.trajectory is None:
            raise MissionNotFound(f"mission {mission_id} has no trajectory")
        return record.trajectory

    def get_decrypted_trajectory(self, mission_id: int) -> DecryptedTrajectory:
        return self._decrypted(self._record(mission_id))

    def get_analyses(self, mission_id: int) -> tuple[CollisionAnalysis, ...]:
        record = self._record(mission_id)
        with record.lock:
            return tuple(record.analyses)

    def get_analysis(self, mission_id: int, analysis_id: int) -> CollisionAnalysis:
        record = self._record(mission_id)
        with record.lock:
            if not 0 <= analysis_id < len(record.analyses):
                raise AnalysisNotFound(f"mission {mission_id} has no analysis {analysis_id}")
            return record.analyses[analysis_id]

    def get_decrypted_analysis(self, mission_id: int, analysis_id: int) -> DecryptedAnalysis:
        record = self._record(mission_id)
        with record.lock:
            return self._decrypted_analysis(record, analysis_id)

    def mission_ids(self) -> list[int]:
        """Consistent snapshot of missions with a stored trajectory, ascending."""
        with self._registry_lock:
            return list(self._submitted)

    @property
    def mission_count(self) -> int:
        with self._registry_lock:
            return len(self._records)

    def stats(self) -> dict[str, int]:
        with self._registry_lock:
            records = list(self._records.values())
        revealed = 0
        revealed_analyses = 0
        total = 0
        for record in records:
            with record.lock:
                if record.decrypted is not None and record.decrypted.is_revealed:
                    revealed += 1
                total += len(record.analyses)
                revealed_analyses += sum(1 for d in record.decrypted_analyses if d.is_revealed)
        return {
            "missions": len(records),
            "revealed_trajectories": revealed,
            "revealed_analyses": revealed_analyses,
            "total_analyses": total,
        }

    # --- internals ---

    def _record(self, mission_id: int) -> _MissionRecord:
        with self._registry_lock:
            record = self._records.get(mission_id)
        if record is None or mission_id == INVALID_MISSION_ID:
            raise MissionNotFound(f"mission {mission_id} does not exist")
        return record

    @staticmethod
    def _decrypted(record: _MissionRecord) -> DecryptedTrajectory:
        if record.decrypted is None:
            raise MissionNotFound(f"mission {record.mission.id} has no trajectory")
        return record.decrypted

    @staticmethod
    def _decrypted_analysis(record: _MissionRecord, analysis_id: int) -> DecryptedAnalysis:
        if not 0 <= analysis_id < len(record.decrypted_analyses):
            raise AnalysisNotFound(f"mission {record.mission.id} has no analysis {analysis_id}")
        return record.decrypted_analyses[analysis_id]
