"""Mission endpoints: submit encrypted trajectories, read metadata, analyses and plaintext."""

from __future__ import annotations

import base64
import binascii
import logging

from fastapi import APIRouter, Depends, Header

from trajectory_fhe.errors import CiphertextContextError
from trajectory_fhe.models import (
    AnalysisPlaintextResponse,
    EncryptedAnalysisResponse,
    MissionResponse,
    StatsResponse,
    SubmitTrajectoryRequest,
    SubmitTrajectoryResponse,
    TrajectoryPlaintextResponse,
)
from trajectory_fhe.service import TrajectoryService, get_service
from trajectory_fhe.store import TRAJECTORY_FIELDS

logger = logging.getLogger(__name__)

router = APIRouter()


def _b64decode(name: str, value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CiphertextContextError(f"{name} is not valid base64") from exc


@router.post("/api/missions", response_model=SubmitTrajectoryResponse)
def submit_trajectory(
    body: SubmitTrajectoryRequest,
    x_operator: str | None = Header(default=None),
    service: TrajectoryService = Depends(get_service),
):
    """Submit five exported ciphertexts; the collision pass runs before this returns."""
    exported = {name: _b64decode(name, getattr(body, name)) for name in TRAJECTORY_FIELDS}
    mission_id = service.submit_exported_trajectory(x_operator, body.operator, exported, body.mission_name)
    return SubmitTrajectoryResponse(
        mission_id=mission_id,
        analysis_count=len(service.store.get_analyses(mission_id)),
    )


@router.get("/api/missions", response_model=list[MissionResponse])
def list_missions(service: TrajectoryService = Depends(get_service)):
    return [_mission_response(service, mission_id) for mission_id in service.store.mission_ids()]


@router.get("/api/missions/{mission_id}", response_model=MissionResponse)
def get_mission(mission_id: int, service: TrajectoryService = Depends(get_service)):
    return _mission_response(service, mission_id)


@router.get("/api/missions/{mission_id}/analyses", response_model=list[EncryptedAnalysisResponse])
def get_analyses(mission_id: int, service: TrajectoryService = Depends(get_service)):
    """Encrypted analyses in append order, ciphertexts in exported base64 form."""
    fhe = service.fhe
    out = []
    for a in service.store.get_analyses(mission_id):
        out.append(EncryptedAnalysisResponse(
            analysis_id=a.analysis_id,
            mission_id=a.mission_id,
            other_id=a.other_id,
            distance_squared=base64.b64encode(fhe.export_ciphertext(a.distance_squared)).decode(),
            time_conflict_flag=base64.b64encode(fhe.export_ciphertext(a.time_conflict_flag)).decode(),
            risk_score=base64.b64encode(fhe.export_ciphertext(a.risk_score)).decode(),
            is_revealed=service.store.get_decrypted_analysis(mission_id, a.analysis_id).is_revealed,
        ))
    return out


@router.get("/api/missions/{mission_id}/trajectory", response_model=TrajectoryPlaintextResponse)
def read_trajectory(
    mission_id: int,
    x_operator: str | None = Header(default=None),
    service: TrajectoryService = Depends(get_service),
):
    d = service.read_trajectory(x_operator, mission_id)
    return TrajectoryPlaintextResponse(
        mission_id=d.mission_id,
        position_x=d.position_x,
        position_y=d.position_y,
        position_z=d.position_z,
        velocity=d.velocity,
        time_window=d.time_window,
        is_revealed=d.is_revealed,
    )


@router.get(
    "/api/missions/{mission_id}/analyses/{analysis_id}/plaintext",
    response_model=AnalysisPlaintextResponse,
)
def read_analysis(
    mission_id: int,
    analysis_id: int,
    x_operator: str | None = Header(default=None),
    service: TrajectoryService = Depends(get_service),
):
    d = service.read_analysis(x_operator, mission_id, analysis_id)
    return AnalysisPlaintextResponse(
        mission_id=d.mission_id,
        analysis_id=d.analysis_id,
        risk_score=d.risk_score,
        distance_squared=d.distance_squared,
        time_conflict_flag=d.time_conflict_flag,
        is_revealed=d.is_revealed,
    )


@router.get("/api/stats", response_model=StatsResponse)
def stats(service: TrajectoryService = Depends(get_service)):
    return StatsResponse(**service.stats())


def _mission_response(service: TrajectoryService, mission_id: int) -> MissionResponse:
    mission = service.store.get_mission(mission_id)
    return MissionResponse(
        mission_id=mission.id,
        operator=mission.operator,
        mission_name=mission.mission_name,
        created_at=mission.created_at,
        is_revealed=service.store.get_decrypted_trajectory(mission_id).is_revealed,
        analysis_count=len(service.store.get_analyses(mission_id)),
    )
