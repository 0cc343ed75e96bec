"""Service facade wiring store, engine, guard and oracle client together."""

from __future__ import annotations

import logging
import threading
from typing import Mapping

from trajectory_fhe.access import AccessControlGuard
from trajectory_fhe.config import Settings, get_settings
from trajectory_fhe.engine import CollisionAnalysisEngine
from trajectory_fhe.errors import CiphertextContextError
from trajectory_fhe.events import NotificationBus
from trajectory_fhe.fhe import Ciphertext, FHEBackend, SimulatedFHEBackend
from trajectory_fhe.oracle import DecryptionOracle, HTTPDecryptionOracle, LocalDecryptionOracle
from trajectory_fhe.oracle_client import DecryptionOracleClient
from trajectory_fhe.store import (
    TRAJECTORY_FIELDS,
    DecryptedAnalysis,
    DecryptedTrajectory,
    EncryptedDataStore,
)

logger = logging.getLogger(__name__)


def build_oracle(settings: Settings, fhe: FHEBackend) -> DecryptionOracle:
    if settings.oracle_url:
        logger.info("Using remote decryption relayer at %s", settings.oracle_url)
        return HTTPDecryptionOracle(
            settings.oracle_url,
            fhe,
            settings.oracle_signer_key,
            callback_url=settings.callback_url,
            timeout=settings.oracle_timeout,
        )
    logger.info("Using in-process decryption oracle")
    return LocalDecryptionOracle(fhe, settings.oracle_signer_key)


class TrajectoryService:
    """One engine instance: submissions, plaintext reads and the decryption protocol."""

    def __init__(
        self,
        settings: Settings | None = None,
        fhe: FHEBackend | None = None,
        oracle: DecryptionOracle | None = None,
    ):
        self.settings = settings or get_settings()
        self.fhe = fhe or SimulatedFHEBackend(self.settings.fhe_context_key)
        self.bus = NotificationBus(max_history=self.settings.event_history)
        self.store = EncryptedDataStore(self.bus)
        self.guard = AccessControlGuard(
            self.store,
            enforce_submitter=self.settings.enforce_submitter,
            oracle_token=self.settings.oracle_token,
        )
        self.engine = CollisionAnalysisEngine(
            self.store,
            self.fhe,
            time_conflict_threshold=self.settings.time_conflict_threshold,
            risk_distance_divisor=self.settings.risk_distance_divisor,
        )
        self.oracle = oracle or build_oracle(self.settings, self.fhe)
        self.oracle_client = DecryptionOracleClient(
            self.store,
            self.oracle,
            self.guard,
            reject_duplicate_pending=self.settings.reject_duplicate_pending,
        )
        # Submissions are serialized so every mission sees a stable set of priors
        self._submit_lock = threading.Lock()

    def submit_trajectory(
        self,
        caller: str | None,
        operator: str,
        fields: Mapping[str, Ciphertext],
        mission_name: str = "",
    ) -> int:
        """Register a mission, store its ciphertexts and run the collision pass."""
        self.guard.require_submitter(caller, operator)
        missing = [name for name in TRAJECTORY_FIELDS if name not in fields]
        if missing:
            raise ValueError(f"missing trajectory fields: {', '.join(missing)}")
        for name in TRAJECTORY_FIELDS:
            ct = fields[name]
            if not isinstance(ct, Ciphertext) or ct.context_id != self.fhe.context_id:
                raise CiphertextContextError(f"{name} is not bound to this engine's encryption context")

        with self._submit_lock:
            mission_id = self.store.register_mission(operator, mission_name)
            self.store.put_encrypted_trajectory(mission_id, fields)
            self.engine.analyze_collision_risks(mission_id)
        logger.info("Mission %d submitted by %s", mission_id, operator)
        return mission_id

    def submit_exported_trajectory(
        self,
        caller: str | None,
        operator: str,
        exported: Mapping[str, bytes],
        mission_name: str = "",
    ) -> int:
        """Same as ``submit_trajectory`` but takes ciphertexts in their byte form."""
        fields = {name: self.fhe.import_ciphertext(exported[name]) for name in TRAJECTORY_FIELDS}
        return self.submit_trajectory(caller, operator, fields, mission_name)

    def read_trajectory(self, caller: str | None, mission_id: int) -> DecryptedTrajectory:
        """Operator-only plaintext read. All zeros and unrevealed until the reveal lands."""
        self.guard.require_operator(caller, mission_id)
        return self.store.get_decrypted_trajectory(mission_id)

    def read_analysis(self, caller: str | None, mission_id: int, analysis_id: int) -> DecryptedAnalysis:
        self.guard.require_operator(caller, mission_id)
        return self.store.get_decrypted_analysis(mission_id, analysis_id)

    def stats(self) -> dict[str, int]:
        stats = self.store.stats()
        stats["pending_requests"] = self.oracle_client.pending_count
        return stats

    def is_available(self) -> bool:
        """Whether the encryption context can still produce exchangeable ciphertexts."""
        try:
            self.fhe.import_ciphertext(self.fhe.export_ciphertext(self.fhe.const(0)))
        except Exception:
            logger.exception("Encryption context self-check failed")
            return False
        return True


# Singleton
_service: TrajectoryService | None = None
_service_lock = threading.Lock()


def get_service() -> TrajectoryService:
    global _service
    with _service_lock:
        if _service is None:
            _service = TrajectoryService()
        return _service


def reset_service() -> None:
    """Drop the process-wide service (useful for testing)."""
    global _service
    with _service_lock:
        _service = None
