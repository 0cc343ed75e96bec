"""
test_api.py - Tests for the HTTP surface.
"""

import base64

import pytest

from conftest import MISSION_A, MISSION_B, OPERATOR_A, OPERATOR_B, ORACLE_TOKEN
from trajectory_fhe.store import TRAJECTORY_FIELDS


def _submit_body(service, operator, values, mission_name=""):
    body = {"operator": operator, "mission_name": mission_name}
    for name, v in zip(TRAJECTORY_FIELDS, values):
        body[name] = base64.b64encode(service.fhe.export_ciphertext(service.fhe.encrypt(v))).decode()
    return body


@pytest.fixture
def submitted(client, service):
    a = client.post("/api/missions", json=_submit_body(service, OPERATOR_A, MISSION_A, "Alpha"),
                    headers={"X-Operator": OPERATOR_A})
    b = client.post("/api/missions", json=_submit_body(service, OPERATOR_B, MISSION_B, "Bravo"),
                    headers={"X-Operator": OPERATOR_B})
    assert a.status_code == 200 and b.status_code == 200
    return a.json(), b.json()


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "available": True, "oracle": "local"}


def test_submit_returns_analysis_count(submitted):
    a, b = submitted
    assert a == {"mission_id": 1, "analysis_count": 0}
    assert b == {"mission_id": 2, "analysis_count": 1}


def test_mission_metadata(client, submitted):
    resp = client.get("/api/missions/2")
    data = resp.json()
    assert data["operator"] == OPERATOR_B
    assert data["mission_name"] == "Bravo"
    assert data["is_revealed"] is False
    assert data["analysis_count"] == 1
    assert [m["mission_id"] for m in client.get("/api/missions").json()] == [1, 2]


def test_encrypted_analyses_are_exported(client, service, submitted):
    [entry] = client.get("/api/missions/2/analyses").json()
    assert entry["other_id"] == 1
    ct = service.fhe.import_ciphertext(base64.b64decode(entry["distance_squared"]))
    assert service.fhe.decrypt(ct) == 25


def test_full_reveal_over_http(client, service, submitted):
    resp = client.post("/api/missions/2/decrypt", headers={"X-Operator": OPERATOR_B})
    assert resp.status_code == 200
    request_id = resp.json()["request_id"]

    cleartexts, proof = service.oracle.decrypt_batch(request_id)
    callback = {"request_id": request_id, "cleartexts": cleartexts.hex(), "proof": proof.hex()}
    resp = client.post("/api/oracle/callback", json=callback, headers={"X-Oracle-Token": ORACLE_TOKEN})
    assert resp.status_code == 200
    assert resp.json()["mission_id"] == 2

    plain = client.get("/api/missions/2/trajectory", headers={"X-Operator": OPERATOR_B}).json()
    assert plain == {
        "mission_id": 2,
        "position_x": 13,
        "position_y": 24,
        "position_z": 30,
        "velocity": 5,
        "time_window": 70,
        "is_revealed": True,
    }

    # Replay of the consumed request id
    resp = client.post("/api/oracle/callback", json=callback, headers={"X-Oracle-Token": ORACLE_TOKEN})
    assert resp.status_code == 400
    assert resp.json()["error"] == "InvalidRequest"


def test_analysis_reveal_over_http(client, service, submitted):
    resp = client.post("/api/missions/2/analyses/0/decrypt", headers={"X-Operator": OPERATOR_B})
    request_id = resp.json()["request_id"]
    assert resp.json()["analysis_id"] == 0
    cleartexts, proof = service.oracle.decrypt_batch(request_id)
    client.post(
        "/api/oracle/callback",
        json={"request_id": request_id, "cleartexts": cleartexts.hex(), "proof": proof.hex()},
        headers={"X-Oracle-Token": ORACLE_TOKEN},
    )
    plain = client.get("/api/missions/2/analyses/0/plaintext", headers={"X-Operator": OPERATOR_B}).json()
    assert (plain["risk_score"], plain["distance_squared"], plain["time_conflict_flag"]) == (1, 25, 1)
    assert plain["is_revealed"] is True


def test_error_mapping(client, service, submitted):
    resp = client.get("/api/missions/2/trajectory", headers={"X-Operator": OPERATOR_A})
    assert resp.status_code == 403
    assert resp.json()["error"] == "NotAuthorized"

    assert client.get("/api/missions/99").status_code == 404
    assert client.get("/api/missions/0").status_code == 404

    resp = client.post(
        "/api/oracle/callback",
        json={"request_id": "nope", "cleartexts": "00", "proof": "00"},
        headers={"X-Oracle-Token": "forged"},
    )
    assert resp.status_code == 403

    resp = client.post(
        "/api/oracle/callback",
        json={"request_id": "nope", "cleartexts": "00", "proof": "00"},
        headers={"X-Oracle-Token": "\u00e9".encode("latin-1")},
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "NotAuthorized"

    resp = client.post(
        "/api/oracle/callback",
        json={"request_id": "nope", "cleartexts": "00", "proof": "00"},
        headers={"X-Oracle-Token": ORACLE_TOKEN},
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "InvalidRequest"


def test_bad_proof_over_http(client, service, submitted):
    request_id = client.post("/api/missions/2/decrypt", headers={"X-Operator": OPERATOR_B}).json()["request_id"]
    cleartexts, _ = service.oracle.decrypt_batch(request_id)
    resp = client.post(
        "/api/oracle/callback",
        json={"request_id": request_id, "cleartexts": cleartexts.hex(), "proof": "00" * 32},
        headers={"X-Oracle-Token": ORACLE_TOKEN},
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "ProofVerificationFailed"


def test_submission_for_other_operator_forbidden(client, service):
    resp = client.post("/api/missions", json=_submit_body(service, OPERATOR_A, MISSION_A),
                       headers={"X-Operator": OPERATOR_B})
    assert resp.status_code == 403
    assert client.get("/api/stats").json()["missions"] == 0


def test_invalid_ciphertext_rejected(client, service):
    body = _submit_body(service, OPERATOR_A, MISSION_A)
    body["velocity"] = "!!!not-base64!!!"
    resp = client.post("/api/missions", json=body, headers={"X-Operator": OPERATOR_A})
    assert resp.status_code == 400
    assert resp.json()["error"] == "CiphertextContextError"


def test_stats_and_events(client, submitted):
    client.post("/api/missions/2/decrypt", headers={"X-Operator": OPERATOR_B})
    stats = client.get("/api/stats").json()
    assert stats == {
        "missions": 2,
        "revealed_trajectories": 0,
        "revealed_analyses": 0,
        "total_analyses": 1,
        "pending_requests": 1,
    }

    events = client.get("/api/events").json()
    assert [e["type"] for e in events] == [
        "trajectory_submitted",
        "analysis_completed",
        "trajectory_submitted",
        "analysis_completed",
        "decryption_requested",
    ]
    later = client.get("/api/events", params={"since": events[2]["sequence_id"]}).json()
    assert len(later) == 2
