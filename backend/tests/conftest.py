"""
Shared pytest fixtures for the trajectory engine tests.

Provides:
- settings: deterministic Settings (fixed keys, local oracle)
- service: fresh TrajectoryService per test
- submit: helper that encrypts a plaintext tuple and submits it
- reveal: helper that drives a trajectory through request + oracle delivery
- client: FastAPI TestClient bound to the per-test service
"""

from typing import Callable, Tuple

import pytest
from fastapi.testclient import TestClient

from trajectory_fhe.config import Settings
from trajectory_fhe.service import TrajectoryService, get_service
from trajectory_fhe.store import TRAJECTORY_FIELDS

OPERATOR_A = "0xA11CE"
OPERATOR_B = "0xB0B"
ORACLE_TOKEN = "test-oracle-token"
SIGNER_KEY = "test-signer-key"

# Worked example missions (x, y, z, velocity, time_window)
MISSION_A = (10, 20, 30, 5, 40)
MISSION_B = (13, 24, 30, 5, 70)


@pytest.fixture
def settings():
    return Settings(
        oracle_token=ORACLE_TOKEN,
        oracle_signer_key=SIGNER_KEY,
        fhe_context_key="test-context-key",
    )


@pytest.fixture
def service(settings):
    return TrajectoryService(settings=settings)


@pytest.fixture
def fhe(service):
    return service.fhe


def encrypt_fields(service: TrajectoryService, values: Tuple[int, ...]) -> dict:
    return {name: service.fhe.encrypt(v) for name, v in zip(TRAJECTORY_FIELDS, values)}


@pytest.fixture
def submit(service) -> Callable[..., int]:
    def _submit(values: Tuple[int, ...], operator: str = OPERATOR_A, mission_name: str = "") -> int:
        return service.submit_trajectory(operator, operator, encrypt_fields(service, values), mission_name)
    return _submit


@pytest.fixture
def reveal(service) -> Callable[[int, str], str]:
    def _reveal(mission_id: int, operator: str) -> str:
        request_id = service.oracle_client.request_trajectory_decryption(operator, mission_id)
        service.oracle.fulfill(request_id)
        return request_id
    return _reveal


@pytest.fixture
def client(service):
    from trajectory_fhe.main import app

    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
