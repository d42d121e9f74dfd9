import asyncio

import pytest
from fastapi.testclient import TestClient

from groundwork import worker
from groundwork.database import AsyncSessionLocal
from groundwork.main import app
from groundwork.services import render_scheduler
from groundwork.services.blob_store import get_blob_store
from groundwork.services.gateway import get_gateway
from groundwork.services.typesetting import Typesetter

ALICE = {"X-User-ID": "alice"}
BOB = {"X-User-ID": "bob"}

JD = """Senior Backend Engineer
Requirements:
- Python
- Billing API latency
Nice to have: Kafka
"""


class FakeTypesetter(Typesetter):
    async def compile(self, latex_source: str) -> bytes:
        return b"%PDF-1.5 " + latex_source.encode("utf-8")[:20]


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def add_entry(client, entry_id, data, headers=ALICE, **fields):
    body = {"entry_id": entry_id, "data": data, "entry_type": "experience", **fields}
    response = client.post("/api/context/entries", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def seed_and_generate(client):
    add_entry(client, "acme", {
        "company": "Acme",
        "role": "Backend Engineer",
        "highlights": ["Cut p99 latency 40% for the billing API", "Wrote Python services for invoicing"],
    }, contribution_type="lead", tags=["python"])
    snapshot = client.post("/api/snapshots/", json={}, headers=ALICE)
    assert snapshot.status_code == 201, snapshot.text
    response = client.post("/api/resumes/generate", json={"jd_text": JD}, headers=ALICE)
    assert response.status_code == 201, response.text
    return response.json()


def run_worker_once(job_id):
    async def scenario():
        async with AsyncSessionLocal() as db:
            claim = await render_scheduler.claim_job(db, job_id, "test-worker", 120)
            return await worker.process_job(db, claim, get_blob_store(), FakeTypesetter(), get_gateway())

    return asyncio.run(scenario())


def test_health_and_metrics(client) -> None:
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["database"] is True
    assert "generation" in health.json()["circuits"]
    assert "counters" in client.get("/metrics").json()


def test_requests_need_a_user(client) -> None:
    assert client.get("/api/context/entries").status_code == 401


def test_context_entries_are_versioned(client) -> None:
    created = add_entry(client, "acme", {"company": "Acme"})
    assert created["version"] == 1
    assert created["advisories"] == []

    revised = client.post(
        "/api/context/entries/acme/versions",
        json={"data": {"company": "Acme Corp"}, "expected_version": 2},
        headers=ALICE,
    )
    assert revised.status_code == 201
    assert revised.json()["version"] == 2

    stale = client.post(
        "/api/context/entries/acme/versions",
        json={"data": {"company": "Other"}, "expected_version": 2},
        headers=ALICE,
    )
    assert stale.status_code == 409
    assert stale.json()["error_type"] == "VersionConflict"

    history = client.get("/api/context/entries/acme/versions", headers=ALICE).json()
    assert [v["version"] for v in history["versions"]] == [1, 2]

    deleted = client.delete("/api/context/entries/acme", headers=ALICE)
    assert deleted.json()["is_tombstone"] is True
    assert client.get("/api/context/entries", headers=ALICE).json()["entries"] == []
    assert len(client.get("/api/context/entries?include_tombstoned=true", headers=ALICE).json()["entries"]) == 1


def test_entry_type_decides_evergreen_by_default(client) -> None:
    skill = add_entry(client, "kafka", {"name": "Kafka"}, entry_type="skill")
    role = add_entry(client, "acme", {"company": "Acme"})
    pinned = add_entry(client, "globex", {"company": "Globex"}, flagged_evergreen=True)
    assert skill["flagged_evergreen"] is True
    assert role["flagged_evergreen"] is False
    assert pinned["flagged_evergreen"] is True


def test_revisions_return_advisories(client) -> None:
    add_entry(client, "acme", {"company": "Acme", "role": "Engineer", "date_start": "2020-01", "date_end": "2022-01"})
    add_entry(client, "globex", {"company": "Globex", "role": "Analyst", "date_start": "2015-01", "date_end": "2016-01"})

    revised = client.post(
        "/api/context/entries/globex/versions",
        json={"data": {"company": "Globex", "role": "Analyst", "date_start": "2021-01", "date_end": "2023-01"}},
        headers=ALICE,
    )
    assert revised.status_code == 201
    advisories = revised.json()["advisories"]
    assert [(a["conflict_type"], a["existing_entry_id"]) for a in advisories] == [("date_overlap", "acme")]


def test_context_reads_report_completeness(client) -> None:
    add_entry(client, "acme", {"company": "Acme"}, impact_score=0.9, recency_score=1.0)
    add_entry(client, "kafka", {"name": "Kafka"}, entry_type="skill", impact_score=0.3)

    listing = client.get("/api/context/entries", headers=ALICE).json()
    completeness = listing["completeness"]
    assert completeness["total_entries"] == 2
    assert "education" in completeness["missing_sections"]
    sections = {s["section"]: s for s in completeness["sections"]}
    assert sections["experience"]["status"] == "strong"
    assert sections["skill"]["missing_quantification"] == 1

    health = client.get("/api/context/health", headers=ALICE)
    assert health.status_code == 200
    assert health.json() == completeness
    assert client.get("/api/context/health", headers=BOB).json()["total_entries"] == 0


def test_context_input_is_validated(client) -> None:
    bad_type = client.post(
        "/api/context/entries", json={"entry_type": "hobby", "data": {}}, headers=ALICE
    )
    assert bad_type.status_code == 422
    reserved = client.post(
        "/api/context/entries", json={"entry_type": "award", "data": {"_tombstone": True}}, headers=ALICE
    )
    assert reserved.status_code == 422
    missing = client.post("/api/context/entries/nope/versions", json={"data": {}}, headers=ALICE)
    assert missing.status_code == 404


def test_empty_context_cannot_be_compiled(client) -> None:
    response = client.post("/api/snapshots/", json={}, headers=ALICE)
    assert response.status_code == 422
    assert response.json()["error_type"] == "EmptyContext"


def test_snapshot_text_matches_hash_and_is_private(client) -> None:
    add_entry(client, "acme", {"company": "Acme", "role": "Engineer"})
    snapshot = client.post("/api/snapshots/", json={}, headers=ALICE).json()

    text = client.get(f"/api/snapshots/{snapshot['version']}/text", headers=ALICE)
    assert text.status_code == 200
    assert text.headers["x-content-hash"] == snapshot["content_hash"]
    assert "[acme@v1]" in text.text

    assert client.get(f"/api/snapshots/{snapshot['version']}", headers=BOB).status_code == 404


def test_persona_scopes_a_snapshot(client) -> None:
    add_entry(client, "acme", {"company": "Acme"}, tags=["python"])
    add_entry(client, "bank", {"company": "Bank"}, tags=["cobol"])
    persona = client.post(
        "/api/personas/",
        json={"name": "modern", "suppressed_tags": ["cobol"], "tone_preference": "product_oriented"},
        headers=ALICE,
    )
    assert persona.status_code == 201
    persona_id = persona.json()["id"]

    snapshot = client.post("/api/snapshots/", json={"persona_id": persona_id}, headers=ALICE).json()
    assert [ref[0] for ref in snapshot["entry_refs"]] == ["acme"]
    assert snapshot["persona_name"] == "modern"

    # another user's persona is not visible
    assert client.post("/api/snapshots/", json={"persona_id": persona_id}, headers=BOB).status_code == 404


def test_generate_review_and_edit(client) -> None:
    resume = seed_and_generate(client)
    assert resume["status"] == "draft"
    assert resume["rejected_count"] == 0
    assert len(resume["bullets"]) == 2
    assert all(b["source_entry_id"] == "acme" and b["grounding_score"] >= 0.8 for b in resume["bullets"])
    assert resume["fit_report"]["policy"] == "weighted"

    detail = client.get(f"/api/resumes/{resume['id']}", headers=ALICE).json()
    assert detail["latex_source"].startswith(r"\documentclass")

    bullet_id = resume["bullets"][0]["id"]
    edited = client.patch(
        f"/api/resumes/{resume['id']}/bullets/{bullet_id}",
        json={"bullet_text": "Cut billing latency by 40%"},
        headers=ALICE,
    )
    assert edited.status_code == 200
    assert edited.json()["is_user_edited"] is True

    assert client.get(f"/api/resumes/{resume['id']}/rejections", headers=ALICE).json()["rejections"] == []
    assert client.get(f"/api/resumes/{resume['id']}", headers=BOB).status_code == 404


def test_generate_without_snapshot_is_not_found(client) -> None:
    response = client.post("/api/resumes/generate", json={"jd_text": JD}, headers=ALICE)
    assert response.status_code == 404


def test_render_poll_and_download(client) -> None:
    resume = seed_and_generate(client)
    assert client.get(f"/api/resumes/{resume['id']}/pdf", headers=ALICE).status_code == 404

    queued = client.post(f"/api/resumes/{resume['id']}/render", headers=ALICE)
    assert queued.status_code == 202
    job_id = queued.json()["job_id"]
    assert client.get(f"/api/render-jobs/{job_id}", headers=ALICE).json()["status"] == "queued"

    assert run_worker_once(job_id) is True

    status = client.get(f"/api/render-jobs/{job_id}", headers=ALICE).json()
    assert status["status"] == "done"
    assert status["attempts"] == 1

    pdf = client.get(f"/api/resumes/{resume['id']}/pdf", headers=ALICE)
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.content.startswith(b"%PDF")

    jobs = client.get(f"/api/resumes/{resume['id']}/render-jobs", headers=ALICE).json()
    assert jobs["latest_render_job_id"] == job_id
    assert client.get(f"/api/render-jobs/{job_id}", headers=BOB).status_code == 404


def test_cancel_render_job(client) -> None:
    resume = seed_and_generate(client)
    job_id = client.post(f"/api/resumes/{resume['id']}/render", headers=ALICE).json()["job_id"]

    cancelled = client.post(f"/api/render-jobs/{job_id}/cancel", headers=ALICE)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "failed"
    assert cancelled.json()["error"] == render_scheduler.CANCELLED_MESSAGE

    again = client.post(f"/api/render-jobs/{job_id}/cancel", headers=ALICE)
    assert again.status_code == 409
    assert again.json()["error_type"] == "InvalidTransition"
