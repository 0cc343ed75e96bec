"""Error taxonomy. Every failure is a synchronous rejection with no side effects."""

from __future__ import annotations


class TrajectoryFHEError(Exception):
    """Base class for all engine errors."""

    status_code: int = 400


class NotAuthorized(TrajectoryFHEError):
    """Caller is not the mission's operator (or not the oracle)."""

    status_code = 403


class AlreadyRevealed(TrajectoryFHEError):
    """Decryption attempted on a target that is already revealed."""

    status_code = 409


class InvalidRequest(TrajectoryFHEError):
    """Unknown or already-consumed request id. Never retry with the same id."""

    status_code = 400


class ProofVerificationFailed(TrajectoryFHEError):
    """Oracle attestation does not validate against the claimed cleartexts."""

    status_code = 422


class MissionNotFound(TrajectoryFHEError):
    status_code = 404


class AnalysisNotFound(TrajectoryFHEError):
    status_code = 404


class InvalidCleartexts(TrajectoryFHEError):
    """Cleartext payload does not decode into the expected number of words."""

    status_code = 400


class RequestAlreadyPending(TrajectoryFHEError):
    status_code = 409


class CiphertextContextError(TrajectoryFHEError):
    """Ciphertext is malformed or bound to a different encryption context."""

    status_code = 400


class OracleUnavailable(TrajectoryFHEError):
    status_code = 502
