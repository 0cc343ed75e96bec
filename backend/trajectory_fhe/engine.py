"""Collision analysis over ciphertexts: squared distance and time-window overlap.

Every quantity stays encrypted. Control flow never depends on a ciphertext:
the time-conflict flag is produced by an oblivious select, and the loop bound
is the public mission count of the snapshot taken at the start of the pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from trajectory_fhe.config import RISK_DISTANCE_DIVISOR, TIME_CONFLICT_THRESHOLD
from trajectory_fhe.fhe import Ciphertext, FHEBackend
from trajectory_fhe.models import NotificationType
from trajectory_fhe.store import CollisionAnalysis, EncryptedDataStore, EncryptedTrajectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PairMetrics:
    distance_squared: Ciphertext
    time_conflict_flag: Ciphertext
    risk_score: Ciphertext


class CollisionAnalysisEngine:
    def __init__(
        self,
        store: EncryptedDataStore,
        fhe: FHEBackend,
        time_conflict_threshold: int = TIME_CONFLICT_THRESHOLD,
        risk_distance_divisor: int = RISK_DISTANCE_DIVISOR,
    ):
        if risk_distance_divisor <= 0:
            raise ValueError("risk_distance_divisor must be positive")
        self.store = store
        self.fhe = fhe
        self.time_conflict_threshold = time_conflict_threshold
        self.risk_distance_divisor = risk_distance_divisor

    def squared_distance(self, a: EncryptedTrajectory, b: EncryptedTrajectory) -> Ciphertext:
        """(x1-x2)² + (y1-y2)² + (z1-z2)² using only sub/mul/add."""
        fhe = self.fhe
        dx = fhe.sub(a.position_x, b.position_x)
        dy = fhe.sub(a.position_y, b.position_y)
        dz = fhe.sub(a.position_z, b.position_z)
        return fhe.add(fhe.add(fhe.mul(dx, dx), fhe.mul(dy, dy)), fhe.mul(dz, dz))

    def time_conflict(self, a: EncryptedTrajectory, b: EncryptedTrajectory) -> Ciphertext:
        """Encrypted 1 when the summed time windows exceed the threshold, else encrypted 0."""
        fhe = self.fhe
        overlap = fhe.gt(fhe.add(a.time_window, b.time_window), fhe.const(self.time_conflict_threshold))
        return fhe.select(overlap, fhe.const(1), fhe.const(0))

    def pair_metrics(self, a: EncryptedTrajectory, b: EncryptedTrajectory) -> PairMetrics:
        distance_squared = self.squared_distance(a, b)
        flag = self.time_conflict(a, b)
        risk = self.fhe.add(self.fhe.div(distance_squared, self.risk_distance_divisor), flag)
        return PairMetrics(distance_squared=distance_squared, time_conflict_flag=flag, risk_score=risk)

    def analyze_collision_risks(self, mission_id: int) -> list[CollisionAnalysis]:
        """Compare a freshly stored mission against every other stored mission.

        Entries are appended only to ``mission_id``'s list; earlier missions do
        not receive a mirrored entry. O(mission count) per call.
        """
        snapshot = self.store.mission_ids()
        target = self.store.get_encrypted_trajectory(mission_id)
        others = [(other_id, self.store.get_encrypted_trajectory(other_id)) for other_id in snapshot if other_id != mission_id]

        # Compute everything first so a failure leaves the analysis list untouched
        computed = [(other_id, self.pair_metrics(target, other)) for other_id, other in others]

        appended: list[CollisionAnalysis] = []
        with self.store.mission_lock(mission_id):
            for other_id, metrics in computed:
                appended.append(self.store.append_analysis(
                    mission_id,
                    other_id,
                    distance_squared=metrics.distance_squared,
                    time_conflict_flag=metrics.time_conflict_flag,
                    risk_score=metrics.risk_score,
                ))
            analysis_count = len(self.store.get_analyses(mission_id))

        logger.info("Mission %d compared against %d prior missions", mission_id, len(appended))
        self.store.bus.emit(NotificationType.ANALYSIS_COMPLETED, mission_id, analysis_count=analysis_count)
        return appended
