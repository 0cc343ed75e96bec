"""Two-phase decryption protocol: request now, oracle callback with proof later.

Each issued request is recorded as a tagged ``PendingDecryptionRequest`` whose
``purpose`` tells the single callback entry point what the cleartexts are
for. A request is consumed by its first successful callback; any later
delivery with the same id is an ``InvalidRequest``. Failed callbacks leave
both the store and the pending map untouched.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Union

from trajectory_fhe.access import AccessControlGuard
from trajectory_fhe.config import CALLBACK_TAG
from trajectory_fhe.errors import (
    AlreadyRevealed,
    InvalidRequest,
    ProofVerificationFailed,
    RequestAlreadyPending,
    TrajectoryFHEError,
)
from trajectory_fhe.models import NotificationType
from trajectory_fhe.oracle import DecryptionOracle, decode_cleartexts
from trajectory_fhe.store import (
    ANALYSIS_FIELDS,
    TRAJECTORY_FIELDS,
    DecryptedAnalysis,
    DecryptedTrajectory,
    EncryptedDataStore,
)

logger = logging.getLogger(__name__)


class RevealPurpose(str, Enum):
    TRAJECTORY_REVEAL = "trajectory_reveal"
    ANALYSIS_REVEAL = "analysis_reveal"


@dataclass(frozen=True)
class PendingDecryptionRequest:
    request_id: str
    purpose: RevealPurpose
    mission_id: int
    analysis_id: int | None
    requested_by: str
    created_at: float


class DecryptionOracleClient:
    def __init__(
        self,
        store: EncryptedDataStore,
        oracle: DecryptionOracle,
        guard: AccessControlGuard,
        reject_duplicate_pending: bool = False,
        callback_tag: str = CALLBACK_TAG,
    ):
        self.store = store
        self.oracle = oracle
        self.guard = guard
        self.reject_duplicate_pending = reject_duplicate_pending
        self.callback_tag = callback_tag
        self._pending: dict[str, PendingDecryptionRequest] = {}
        # Deliveries that overtook their own request_decryption call
        self._early: dict[str, tuple[bytes, bytes]] = {}
        self._issuing = 0
        self._lock = threading.RLock()
        oracle.register_callback(callback_tag, self.on_decryption_callback)

    # --- phase 1: requests (operator only) ---

    def request_trajectory_decryption(self, caller: str, mission_id: int) -> str:
        self.guard.require_operator(caller, mission_id)
        with self.store.mission_lock(mission_id):
            if self.store.get_decrypted_trajectory(mission_id).is_revealed:
                raise AlreadyRevealed(f"trajectory of mission {mission_id} is already revealed")
            self._check_not_pending(RevealPurpose.TRAJECTORY_REVEAL, mission_id, None)
            batch = self.store.get_encrypted_trajectory(mission_id).batch()
            request_id = self._issue(batch, RevealPurpose.TRAJECTORY_REVEAL, mission_id, None, caller)
        return request_id

    def request_analysis_decryption(self, caller: str, mission_id: int, analysis_id: int) -> str:
        self.guard.require_operator(caller, mission_id)
        with self.store.mission_lock(mission_id):
            analysis = self.store.get_analysis(mission_id, analysis_id)
            if self.store.get_decrypted_analysis(mission_id, analysis_id).is_revealed:
                raise AlreadyRevealed(f"analysis {analysis_id} of mission {mission_id} is already revealed")
            self._check_not_pending(RevealPurpose.ANALYSIS_REVEAL, mission_id, analysis_id)
            request_id = self._issue(analysis.batch(), RevealPurpose.ANALYSIS_REVEAL, mission_id, analysis_id, caller)
        return request_id

    # --- phase 2: oracle callbacks ---

    def on_decryption_callback(
        self, request_id: str, cleartexts: bytes, proof: bytes
    ) -> Union[DecryptedTrajectory, DecryptedAnalysis, None]:
        """Single entry point the oracle invokes; branches on the request's purpose.

        A delivery for an id not yet recorded while a request is still being
        issued is held back and applied once the issuing call has recorded
        it. Returns None for such a deferred delivery.
        """
        with self._lock:
            if request_id not in self._pending and self._issuing:
                self._early[request_id] = (cleartexts, proof)
                logger.info("Deferring delivery for request %s until it is recorded", request_id)
                return None
        pending = self._lookup(request_id)
        if pending.purpose is RevealPurpose.TRAJECTORY_REVEAL:
            return self.decrypt_trajectory(request_id, cleartexts, proof)
        return self.decrypt_analysis(request_id, cleartexts, proof)

    def decrypt_trajectory(self, request_id: str, cleartexts: bytes, proof: bytes) -> DecryptedTrajectory:
        pending = self._lookup(request_id, RevealPurpose.TRAJECTORY_REVEAL)
        mission_id = pending.mission_id
        with self.store.mission_lock(mission_id):
            # A concurrent delivery may have consumed it while we waited
            self._lookup(request_id, RevealPurpose.TRAJECTORY_REVEAL)
            if self.store.get_decrypted_trajectory(mission_id).is_revealed:
                raise AlreadyRevealed(f"trajectory of mission {mission_id} is already revealed")
            self._verify(request_id, cleartexts, proof)
            values = decode_cleartexts(cleartexts, len(TRAJECTORY_FIELDS))
            revealed = self.store.reveal_trajectory(mission_id, dict(zip(TRAJECTORY_FIELDS, values)))
            self._consume(request_id)

        logger.info("Trajectory of mission %d revealed (request %s)", mission_id, request_id)
        self.store.bus.emit(NotificationType.TRAJECTORY_REVEALED, mission_id)
        return revealed

    def decrypt_analysis(self, request_id: str, cleartexts: bytes, proof: bytes) -> DecryptedAnalysis:
        pending = self._lookup(request_id, RevealPurpose.ANALYSIS_REVEAL)
        mission_id, analysis_id = pending.mission_id, pending.analysis_id
        with self.store.mission_lock(mission_id):
            self._lookup(request_id, RevealPurpose.ANALYSIS_REVEAL)
            if self.store.get_decrypted_analysis(mission_id, analysis_id).is_revealed:
                raise AlreadyRevealed(f"analysis {analysis_id} of mission {mission_id} is already revealed")
            self._verify(request_id, cleartexts, proof)
            values = decode_cleartexts(cleartexts, len(ANALYSIS_FIELDS))
            revealed = self.store.reveal_analysis(mission_id, analysis_id, dict(zip(ANALYSIS_FIELDS, values)))
            self._consume(request_id)

        logger.info("Analysis %d of mission %d revealed (request %s)", analysis_id, mission_id, request_id)
        self.store.bus.emit(NotificationType.ANALYSIS_REVEALED, mission_id, analysis_id=analysis_id)
        return revealed

    # --- pending request bookkeeping ---

    def get_pending(self, request_id: str) -> PendingDecryptionRequest | None:
        with self._lock:
            return self._pending.get(request_id)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _issue(
        self,
        batch: list,
        purpose: RevealPurpose,
        mission_id: int,
        analysis_id: int | None,
        caller: str,
    ) -> str:
        """Ask the oracle for a decryption and record it, applying any delivery that beat the record."""
        with self._lock:
            self._issuing += 1
        request_id = None
        try:
            request_id = self.oracle.request_decryption(batch, self.callback_tag)
            self._track(request_id, purpose, mission_id, analysis_id, caller)
        finally:
            with self._lock:
                self._issuing -= 1
                early = self._early.pop(request_id, None) if request_id is not None else None
                if not self._issuing and self._early:
                    logger.warning("Dropping %d deliveries for unknown request ids: %s", len(self._early), list(self._early))
                    self._early.clear()

        if early is not None:
            cleartexts, proof = early
            try:
                self.on_decryption_callback(request_id, cleartexts, proof)
            except TrajectoryFHEError as exc:
                # Request stays pending unless consumed, so the oracle may redeliver
                logger.warning("Deferred delivery for request %s rejected: %s: %s", request_id, type(exc).__name__, exc)
        return request_id

    def _track(
        self,
        request_id: str,
        purpose: RevealPurpose,
        mission_id: int,
        analysis_id: int | None,
        caller: str,
    ) -> None:
        with self._lock:
            if request_id in self._pending:
                raise InvalidRequest(f"oracle reissued request id {request_id}")
            self._pending[request_id] = PendingDecryptionRequest(
                request_id=request_id,
                purpose=purpose,
                mission_id=mission_id,
                analysis_id=analysis_id,
                requested_by=caller,
                created_at=time.time(),
            )
        logger.info("Decryption request %s issued: %s mission=%d analysis=%s", request_id, purpose.value, mission_id, analysis_id)
        extra = {"analysis_id": analysis_id} if analysis_id is not None else {}
        self.store.bus.emit(
            NotificationType.DECRYPTION_REQUESTED,
            mission_id,
            request_id=request_id,
            purpose=purpose.value,
            **extra,
        )

    def _check_not_pending(self, purpose: RevealPurpose, mission_id: int, analysis_id: int | None) -> None:
        if not self.reject_duplicate_pending:
            return
        with self._lock:
            for pending in self._pending.values():
                if (pending.purpose, pending.mission_id, pending.analysis_id) == (purpose, mission_id, analysis_id):
                    raise RequestAlreadyPending(
                        f"request {pending.request_id} for mission {mission_id} is still pending"
                    )

    def _lookup(self, request_id: str, purpose: RevealPurpose | None = None) -> PendingDecryptionRequest:
        with self._lock:
            pending = self._pending.get(request_id)
        if pending is None:
            logger.warning("Callback for unknown or consumed request %s", request_id)
            raise InvalidRequest(f"unknown or already consumed request id {request_id}")
        if purpose is not None and pending.purpose is not purpose:
            raise InvalidRequest(f"request {request_id} was not issued for {purpose.value}")
        return pending

    def _verify(self, request_id: str, cleartexts: bytes, proof: bytes) -> None:
        if not self.oracle.verify(request_id, cleartexts, proof):
            logger.warning("Proof verification failed for request %s", request_id)
            raise ProofVerificationFailed(f"oracle proof does not authenticate request {request_id}")

    def _consume(self, request_id: str) -> None:
        with self._lock:
            self._pending.pop(request_id, None)
