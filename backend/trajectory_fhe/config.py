"""Runtime configuration read from the environment (``.env`` is loaded by main)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields

logger = logging.getLogger(__name__)

# Collision thresholds (public constants, encoded as ciphertext at use time)
TIME_CONFLICT_THRESHOLD = 100
RISK_DISTANCE_DIVISOR = 1000

CALLBACK_TAG = "trajectory_fhe.reveal"

# Secrets whose built-in values are only fit for local development
SECRET_FIELDS = ("oracle_token", "oracle_signer_key", "fhe_context_key")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    oracle_url: str | None = None
    callback_url: str | None = None
    oracle_token: str = "dev-oracle-token"
    oracle_signer_key: str = "dev-oracle-signer-key"
    oracle_timeout: float = 10.0
    fhe_context_key: str = "dev-fhe-context-key"
    enforce_submitter: bool = True
    reject_duplicate_pending: bool = False
    time_conflict_threshold: int = TIME_CONFLICT_THRESHOLD
    risk_distance_divisor: int = RISK_DISTANCE_DIVISOR
    event_history: int = 5000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            oracle_url=os.getenv("TRAJFHE_ORACLE_URL") or None,
            callback_url=os.getenv("TRAJFHE_CALLBACK_URL") or None,
            oracle_token=os.getenv("TRAJFHE_ORACLE_TOKEN", cls.oracle_token),
            oracle_signer_key=os.getenv("TRAJFHE_ORACLE_SIGNER_KEY", cls.oracle_signer_key),
            oracle_timeout=float(os.getenv("TRAJFHE_ORACLE_TIMEOUT", cls.oracle_timeout)),
            fhe_context_key=os.getenv("TRAJFHE_FHE_CONTEXT_KEY", cls.fhe_context_key),
            enforce_submitter=_env_bool("TRAJFHE_ENFORCE_SUBMITTER", cls.enforce_submitter),
            reject_duplicate_pending=_env_bool(
                "TRAJFHE_REJECT_DUPLICATE_PENDING", cls.reject_duplicate_pending
            ),
            time_conflict_threshold=int(
                os.getenv("TRAJFHE_TIME_CONFLICT_THRESHOLD", cls.time_conflict_threshold)
            ),
            risk_distance_divisor=int(
                os.getenv("TRAJFHE_RISK_DISTANCE_DIVISOR", cls.risk_distance_divisor)
            ),
            event_history=int(os.getenv("TRAJFHE_EVENT_HISTORY", cls.event_history)),
        )

    def default_secrets(self) -> list[str]:
        """Names of secret settings still holding their development defaults."""
        defaults = {f.name: f.default for f in fields(self)}
        return [name for name in SECRET_FIELDS if getattr(self, name) == defaults[name]]


# Singleton
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        insecure = _settings.default_secrets()
        if insecure:
            logger.warning(
                "Using development defaults for %s; set the matching TRAJFHE_* variables before deploying",
                ", ".join(insecure),
            )
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (useful for testing)."""
    global _settings
    _settings = None
