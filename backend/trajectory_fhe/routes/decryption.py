"""Decryption protocol endpoints: operator requests and the oracle callback."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header

from trajectory_fhe.errors import InvalidCleartexts, ProofVerificationFailed
from trajectory_fhe.models import DecryptionRequestResponse, OracleCallbackRequest
from trajectory_fhe.oracle_client import RevealPurpose
from trajectory_fhe.service import TrajectoryService, get_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/missions/{mission_id}/decrypt", response_model=DecryptionRequestResponse)
def request_trajectory_decryption(
    mission_id: int,
    x_operator: str | None = Header(default=None),
    service: TrajectoryService = Depends(get_service),
):
    request_id = service.oracle_client.request_trajectory_decryption(x_operator, mission_id)
    return DecryptionRequestResponse(request_id=request_id, mission_id=mission_id)


@router.post(
    "/api/missions/{mission_id}/analyses/{analysis_id}/decrypt",
    response_model=DecryptionRequestResponse,
)
def request_analysis_decryption(
    mission_id: int,
    analysis_id: int,
    x_operator: str | None = Header(default=None),
    service: TrajectoryService = Depends(get_service),
):
    request_id = service.oracle_client.request_analysis_decryption(x_operator, mission_id, analysis_id)
    return DecryptionRequestResponse(request_id=request_id, mission_id=mission_id, analysis_id=analysis_id)


@router.post("/api/oracle/callback")
def oracle_callback(
    body: OracleCallbackRequest,
    x_oracle_token: str | None = Header(default=None),
    service: TrajectoryService = Depends(get_service),
):
    """Delivery point for the decryption oracle. Never called by operators."""
    service.guard.require_oracle(x_oracle_token)
    try:
        cleartexts = bytes.fromhex(body.cleartexts)
    except ValueError as exc:
        raise InvalidCleartexts("cleartexts must be hex encoded") from exc
    try:
        proof = bytes.fromhex(body.proof)
    except ValueError as exc:
        raise ProofVerificationFailed("proof must be hex encoded") from exc

    pending = service.oracle_client.get_pending(body.request_id)
    revealed = service.oracle_client.on_decryption_callback(body.request_id, cleartexts, proof)

    result = {"request_id": body.request_id, "status": "revealed" if revealed is not None else "deferred"}
    if pending is not None:
        result["mission_id"] = pending.mission_id
        result["purpose"] = pending.purpose.value
        if pending.purpose is RevealPurpose.ANALYSIS_REVEAL:
            result["analysis_id"] = pending.analysis_id
    return result
