from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# --- Notifications (consumed by dashboards / observers) ---

class NotificationType(str, Enum):
    TRAJECTORY_SUBMITTED = "trajectory_submitted"
    ANALYSIS_COMPLETED = "analysis_completed"
    DECRYPTION_REQUESTED = "decryption_requested"
    TRAJECTORY_REVEALED = "trajectory_revealed"
    ANALYSIS_REVEALED = "analysis_revealed"


class Notification(BaseModel):
    type: NotificationType
    mission_id: int
    sequence_id: int = 0
    timestamp: float = Field(default_factory=time.time)
    data: dict[str, Any] = {}


# --- Requests ---

class SubmitTrajectoryRequest(BaseModel):
    operator: str = Field(min_length=1, description="Operator identity the mission is submitted for")
    mission_name: str = ""
    position_x: str = Field(description="Base64 exported ciphertext")
    position_y: str = Field(description="Base64 exported ciphertext")
    position_z: str = Field(description="Base64 exported ciphertext")
    velocity: str = Field(description="Base64 exported ciphertext")
    time_window: str = Field(description="Base64 exported ciphertext")


class OracleCallbackRequest(BaseModel):
    request_id: str
    cleartexts: str = Field(description="Hex-encoded 32-byte big-endian words")
    proof: str = Field(description="Hex-encoded oracle attestation")


# --- Responses ---

class MissionResponse(BaseModel):
    mission_id: int
    operator: str
    mission_name: str = ""
    created_at: float
    is_revealed: bool
    analysis_count: int


class SubmitTrajectoryResponse(BaseModel):
    mission_id: int
    analysis_count: int


class EncryptedAnalysisResponse(BaseModel):
    analysis_id: int
    mission_id: int
    other_id: int
    distance_squared: str
    time_conflict_flag: str
    risk_score: str
    is_revealed: bool


class TrajectoryPlaintextResponse(BaseModel):
    mission_id: int
    position_x: int
    position_y: int
    position_z: int
    velocity: int
    time_window: int
    is_revealed: bool


class AnalysisPlaintextResponse(BaseModel):
    mission_id: int
    analysis_id: int
    risk_score: int
    distance_squared: int
    time_conflict_flag: int
    is_revealed: bool


class DecryptionRequestResponse(BaseModel):
    request_id: str
    mission_id: int
    analysis_id: int | None = None
    status: str = "pending"


class StatsResponse(BaseModel):
    missions: int
    revealed_trajectories: int
    revealed_analyses: int
    total_analyses: int
    pending_requests: int


class HealthResponse(BaseModel):
    status: str = "ok"
    available: bool = True
    oracle: str = "local"
