"""
test_access.py - Tests for operator and oracle gates.
"""

import pytest

from conftest import MISSION_A, MISSION_B, OPERATOR_A, OPERATOR_B, ORACLE_TOKEN, encrypt_fields
from trajectory_fhe.access import AccessControlGuard, normalize_identity
from trajectory_fhe.config import Settings
from trajectory_fhe.errors import MissionNotFound, NotAuthorized
from trajectory_fhe.service import TrajectoryService


def test_normalize_identity():
    assert normalize_identity("  0xAbC ") == "0xabc"
    assert normalize_identity("0XAbC") == "0xabc"
    assert normalize_identity(" alice ") == "alice"
    assert normalize_identity(None) == ""


def test_named_operators_compare_exactly(service):
    mission_id = service.submit_trajectory("alice", "alice", encrypt_fields(service, MISSION_A))
    assert service.guard.require_operator("alice", mission_id).id == mission_id
    with pytest.raises(NotAuthorized):
        service.guard.require_operator("ALICE", mission_id)


def test_hex_operator_passes_case_insensitively(service, submit):
    mission_id = submit(MISSION_A, OPERATOR_A)
    mission = service.guard.require_operator(OPERATOR_A.lower(), mission_id)
    assert mission.id == mission_id


@pytest.mark.parametrize("caller", [OPERATOR_B, "", None])
def test_non_operator_rejected(service, submit, caller):
    mission_id = submit(MISSION_A, OPERATOR_A)
    with pytest.raises(NotAuthorized):
        service.guard.require_operator(caller, mission_id)


def test_guard_on_unknown_mission(service):
    with pytest.raises(MissionNotFound):
        service.guard.require_operator(OPERATOR_A, 99)


# =============================================================================
# PLAINTEXT READS
# =============================================================================

def test_plaintext_read_by_non_operator_rejected(service, submit):
    mission_id = submit(MISSION_A, OPERATOR_A)
    with pytest.raises(NotAuthorized):
        service.read_trajectory(OPERATOR_B, mission_id)


def test_plaintext_read_before_reveal_is_zeroed(service, submit):
    mission_id = submit(MISSION_A, OPERATOR_A)
    d = service.read_trajectory(OPERATOR_A, mission_id)
    assert (d.position_x, d.position_y, d.position_z, d.velocity, d.time_window) == (0, 0, 0, 0, 0)
    assert d.is_revealed is False


def test_analysis_plaintext_read_gated(service, submit):
    submit(MISSION_A, OPERATOR_A)
    b = submit(MISSION_B, OPERATOR_B)
    with pytest.raises(NotAuthorized):
        service.read_analysis(OPERATOR_A, b, 0)
    d = service.read_analysis(OPERATOR_B, b, 0)
    assert (d.risk_score, d.distance_squared, d.time_conflict_flag, d.is_revealed) == (0, 0, 0, False)


# =============================================================================
# SUBMISSION GATE
# =============================================================================

def test_submission_on_behalf_of_another_operator_rejected(service):
    with pytest.raises(NotAuthorized):
        service.submit_trajectory(OPERATOR_B, OPERATOR_A, encrypt_fields(service, MISSION_A))
    assert service.store.mission_count == 0


def test_submission_gate_can_be_disabled():
    open_service = TrajectoryService(settings=Settings(enforce_submitter=False))
    mission_id = open_service.submit_trajectory(OPERATOR_B, OPERATOR_A, encrypt_fields(open_service, MISSION_A))
    assert open_service.store.get_mission(mission_id).operator == OPERATOR_A


# =============================================================================
# ORACLE GATE
# =============================================================================

def test_oracle_token(service):
    service.guard.require_oracle(ORACLE_TOKEN)
    for token in ("wrong", "", None, "\u00e9", ORACLE_TOKEN + "\u00e9"):
        with pytest.raises(NotAuthorized):
            service.guard.require_oracle(token)


def test_oracle_gate_closed_without_configured_token(service):
    guard = AccessControlGuard(service.store, oracle_token=None)
    with pytest.raises(NotAuthorized):
        guard.require_oracle("anything")
