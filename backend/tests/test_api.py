"""HTTP surface: runs, review queue, applications."""
from unittest.mock import MagicMock

from jobtriage.routers import runs

CONFIRMATION = {
    "email_id": "a1",
    "subject": "Thank you for applying",
    "body": (
        "Thank you for applying for the Software Engineer position at Acme. "
        "We will review your application and get back to you."
    ),
    "sender": "Acme Careers <careers@acme.com>",
    "received_at": "2024-03-01T09:00:00Z",
}


def _run(client, *emails):
    response = client.post("/api/runs", json={"emails": list(emails)})
    assert response.status_code == 200
    return response.json()


def _approve_confirmation(client):
    _run(client, CONFIRMATION)
    response = client.post("/api/review-queue/a1/approve")
    assert response.status_code == 200
    return response.json()


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_run_queues_mid_confidence_email(client):
    summary = _run(client, CONFIRMATION)
    assert summary["queued"] == 1
    assert summary["outcomes"][0]["lane"] == "review"

    items = client.get("/api/review-queue").json()
    assert len(items) == 1
    assert items[0]["item_id"] == "a1"
    assert items[0]["suggested"]["company"] == "Acme"
    assert items[0]["status"]["status"] == "applied"

    last = client.get("/api/runs/last").json()
    assert last["queued"] == 1


def test_last_run_missing(client):
    assert client.get("/api/runs/last").status_code == 404


def test_approve_creates_application(client):
    record = _approve_confirmation(client)
    assert record["company"] == "Acme"
    assert record["position"] == "Software Engineer"
    assert record["applied_date"] == "2024-03-01"

    assert client.get("/api/review-queue").json() == []
    listed = client.get("/api/applications", params={"company": "acme"}).json()
    assert [r["record_id"] for r in listed] == [record["record_id"]]
    assert client.get("/api/applications", params={"status": "offer"}).json() == []


def test_reject_and_clear(client):
    _run(client, CONFIRMATION)
    assert client.post("/api/review-queue/a1/reject").status_code == 204
    assert client.post("/api/review-queue/a1/reject").status_code == 404
    assert client.delete("/api/review-queue").json() == {"cleared": 0}


def test_decision_aid_without_ai(client):
    _run(client, CONFIRMATION)
    body = client.post("/api/review-queue/a1/decision-aid").json()
    assert body["available"] is False
    assert body["reason"] == "AI escalation is not configured"


def test_status_patch_and_invalid_transition(client):
    record = _approve_confirmation(client)
    url = f"/api/applications/{record['record_id']}/status"

    response = client.patch(url, json={"status": "withdrawn", "note": "Accepted another offer"})
    assert response.status_code == 200
    assert response.json()["status"] == "withdrawn"
    assert response.json()["status_history"][-1]["source_email_id"] == "manual"

    response = client.patch(url, json={"status": "interview"})
    assert response.status_code == 409
    assert response.json()["current"] == "withdrawn"
    assert response.json()["proposed"] == "interview"


def test_provenance_and_events(client):
    record = _approve_confirmation(client)
    rid = record["record_id"]

    provenance = client.get(f"/api/applications/{rid}/provenance").json()
    assert provenance["fields"]["company"]["source_email_id"] == "a1"
    assert provenance["explanation"].startswith("Acme / Software Engineer (applied)")
    assert client.get(f"/api/applications/{rid}/events").json() == []


def test_unknown_ids_are_404(client):
    assert client.get("/api/applications/app-missing").status_code == 404
    assert client.post("/api/review-queue/nope/approve").status_code == 404
    assert client.get("/api/review-queue/nope").status_code == 404


def test_async_run_hands_off_to_worker(client, monkeypatch):
    delay = MagicMock(return_value=MagicMock(id="task-1"))
    monkeypatch.setattr(runs.process_email_batch, "delay", delay)

    response = client.post("/api/runs/async", json={"emails": [CONFIRMATION]})

    assert response.status_code == 200
    assert response.json()["task_id"] == "task-1"
    (payload,), _ = delay.call_args
    assert payload[0]["email_id"] == "a1"


def test_usage_without_ai(client):
    assert client.get("/api/runs/usage").json() == {"enabled": False}
