import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedEvaluator
from proposal_engine.main import create_app


@pytest.fixture
def client_for(make_engine):
    def factory(evaluator=None):
        orchestrator, *_ = make_engine(evaluator)
        return TestClient(create_app(orchestrator))
    return factory


def _start(client, **seed):
    payload = {"document_id": "rfp-1", "required_sections": ["intro", "body"], **seed}
    response = client.post("/api/runs", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client_for):
    with client_for() as client:
        assert client.get("/health").json()["status"] == "healthy"


def test_start_run_to_completion(client_for):
    with client_for() as client:
        run = _start(client)
        assert run["macro_phase"] == "complete"
        assert run["is_interrupted"] is False
        assert run["state"]["sections"]["intro"]["status"] == "approved"

        assert client.get("/api/runs").json() == [run["thread_id"]]
        assert client.get(f"/api/runs/{run['thread_id']}").json()["current_step"] == "complete"
        assert client.get(f"/api/runs/{run['thread_id']}/interrupt").json() is None


def test_review_cycle_over_http(client_for):
    with client_for(ScriptedEvaluator({"research": [0.2, 0.2]})) as client:
        run = _start(client)
        thread_id = run["thread_id"]
        assert run["is_interrupted"] is True

        interrupt = client.get(f"/api/runs/{thread_id}/interrupt").json()
        assert interrupt["interruption_point"] == "review_research"
        assert interrupt["reason"] == "strategic_validation"
        assert interrupt["content_reference"] == {"kind": "phase", "phase": "research"}

        assert client.post(f"/api/runs/{thread_id}/resume").status_code == 409

        response = client.post(f"/api/runs/{thread_id}/feedback", json={
            "type": "approve",
            "content_reference": {"kind": "phase", "phase": "research"},
        })
        assert response.status_code == 200
        assert response.json()["state"]["pending_feedback"]["type"] == "approve"

        resumed = client.post(f"/api/runs/{thread_id}/resume").json()
        assert resumed["macro_phase"] == "complete"


def test_feedback_errors_map_to_status_codes(client_for):
    with client_for(ScriptedEvaluator({"research": [0.2, 0.2]})) as client:
        thread_id = _start(client)["thread_id"]

        wrong_ref = client.post(f"/api/runs/{thread_id}/feedback", json={
            "type": "approve",
            "content_reference": {"kind": "section", "section_id": "intro"},
        })
        assert wrong_ref.status_code == 422

        bad_body = client.post(f"/api/runs/{thread_id}/feedback", json={"type": "maybe"})
        assert bad_body.status_code == 422


def test_edit_and_stale_decision(client_for):
    with client_for() as client:
        thread_id = _start(client)["thread_id"]

        edited = client.post(f"/api/runs/{thread_id}/sections/intro/edit", json={"content": "Human intro"})
        assert edited.status_code == 200
        assert edited.json()["state"]["sections"]["body"]["status"] == "stale"

        kept = client.post(f"/api/runs/{thread_id}/sections/body/stale-decision", json={"decision": "keep"})
        assert kept.json()["state"]["sections"]["body"]["status"] == "approved"

        again = client.post(f"/api/runs/{thread_id}/sections/body/stale-decision", json={"decision": "keep"})
        assert again.status_code == 409

        unknown = client.post(f"/api/runs/{thread_id}/sections/appendix/edit", json={"content": "x"})
        assert unknown.status_code == 404


def test_unknown_thread_and_delete(client_for):
    with client_for() as client:
        assert client.get("/api/runs/THR_missing").status_code == 404
        assert client.delete("/api/runs/THR_missing").status_code == 404

        thread_id = _start(client)["thread_id"]
        assert client.delete(f"/api/runs/{thread_id}").json() == {"status": "deleted", "thread_id": thread_id}
        assert client.get("/api/runs").json() == []


def test_invalid_seed_is_rejected(client_for):
    with client_for() as client:
        response = client.post("/api/runs", json={"document_id": "rfp-1", "required_sections": []})
        assert response.status_code == 422
