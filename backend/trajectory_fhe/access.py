"""Operator-only gates for decryption requests and plaintext reads."""

from __future__ import annotations

import hmac
import logging

from trajectory_fhe.errors import NotAuthorized
from trajectory_fhe.store import EncryptedDataStore, Mission

logger = logging.getLogger(__name__)


def normalize_identity(identity: str | None) -> str:
    """Trim surrounding whitespace; fold case only for hex addresses (``0x...``).

    Free-form operator names are compared exactly.
    """
    identity = (identity or "").strip()
    if identity[:2].lower() == "0x":
        return identity.lower()
    return identity


class AccessControlGuard:
    def __init__(self, store: EncryptedDataStore, enforce_submitter: bool = True, oracle_token: str | None = None):
        self.store = store
        self.enforce_submitter = enforce_submitter
        self._oracle_token = oracle_token

    def require_operator(self, caller: str | None, mission_id: int) -> Mission:
        """Return the mission if ``caller`` is its operator, else raise NotAuthorized."""
        mission = self.store.get_mission(mission_id)
        if not caller or normalize_identity(caller) != normalize_identity(mission.operator):
            logger.warning("Rejected %r: not the operator of mission %d", caller, mission_id)
            raise NotAuthorized(f"caller is not the operator of mission {mission_id}")
        return mission

    def require_submitter(self, caller: str | None, operator: str) -> None:
        """Submissions on behalf of another operator are refused while enforcement is on."""
        if not self.enforce_submitter:
            return
        if not caller or normalize_identity(caller) != normalize_identity(operator):
            logger.warning("Rejected submission by %r on behalf of %r", caller, operator)
            raise NotAuthorized("caller may only submit trajectories for itself")

    def require_oracle(self, token: str | None) -> None:
        # Headers arrive latin-1 decoded; compare bytes so non-ASCII input is a plain mismatch
        if not self._oracle_token or not token or not hmac.compare_digest(
            token.encode("utf-8"), self._oracle_token.encode("utf-8")
        ):
            logger.warning("Rejected oracle callback with invalid token")
            raise NotAuthorized("oracle callback token is invalid")
