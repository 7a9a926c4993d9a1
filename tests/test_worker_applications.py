"""
Worker application tests — public careers form, review workflow and hiring.
"""

import pytest

from app.models import db
from app.models.workforce import Worker, WorkerApplication

APPLY_URL = "/api/v1/careers/acme-build/applications"


def _form(**overrides):
    body = {
        "full_name": "Jamie Mason",
        "email": "jamie.mason@mail.com",
        "phone": "0400 111 222",
        "desired_hourly_rate": "38.50",
        "years_experience": 6,
        "skills": ["bricklaying", " ", "rendering"],
        "references": [{"name": "Pat Foreman", "phone": "0400 999 888", "relationship": "Supervisor"}],
        "emergency_contact": {"name": "Sam Mason", "phone": "0400 333 444", "relationship": "Partner"},
        "cover_letter": "Ten years on residential sites.",
    }
    body.update(overrides)
    return body


@pytest.fixture()
def application(client, company):
    res = client.post(APPLY_URL, json=_form())
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ═══════════════════════════════════════════════════════════════
# BLOCK 1: Public submission
# ═══════════════════════════════════════════════════════════════

class TestSubmit:
    def test_submit_without_auth(self, client, company):
        res = client.post(APPLY_URL, json=_form())
        assert res.status_code == 201
        data = res.get_json()
        assert data["status"] == "pending"
        assert data["applied_at"]

        row = db.session.get(WorkerApplication, data["id"])
        assert row.company_id == company.id
        assert row.skills == ["bricklaying", "rendering"]
        assert row.emergency_contact_name == "Sam Mason"
        assert float(row.desired_hourly_rate) == 38.5

    def test_missing_phone(self, client, company):
        res = client.post(APPLY_URL, json=_form(phone=""))
        assert res.status_code == 400

    def test_bad_email(self, client, company):
        res = client.post(APPLY_URL, json=_form(email="not-an-email"))
        assert res.status_code == 422

    @pytest.mark.parametrize("overrides", [
        {"desired_hourly_rate": "-5"},
        {"years_experience": "lots"},
        {"date_of_birth": "31/12/1990"},
        {"skills": "bricklaying"},
        {"references": [{"name": "A"}, {"name": "B"}, {"name": "C"}]},
    ])
    def test_invalid_fields(self, client, company, overrides):
        res = client.post(APPLY_URL, json=_form(**overrides))
        assert res.status_code == 422

    def test_unknown_company(self, client):
        res = client.post("/api/v1/careers/no-such-builder/applications", json=_form())
        assert res.status_code == 404

    def test_suspended_company(self, client, company):
        company.subscription_status = "suspended"
        db.session.commit()
        res = client.post(APPLY_URL, json=_form())
        assert res.status_code == 404

    def test_duplicate_pending_email(self, client, application):
        res = client.post(APPLY_URL, json=_form(email="Jamie.Mason@MAIL.com", full_name="J. Mason"))
        assert res.status_code == 409


# ═══════════════════════════════════════════════════════════════
# BLOCK 2: Review
# ═══════════════════════════════════════════════════════════════

class TestReview:
    def test_owner_lists_and_reads(self, client, owner_headers, application):
        res = client.get("/api/v1/worker-applications", headers=owner_headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["total"] == 1
        assert data["items"][0]["email"] == "jamie.mason@mail.com"

        res = client.get(f"/api/v1/worker-applications/{application['id']}", headers=owner_headers)
        assert res.status_code == 200
        assert res.get_json()["emergency_contact"]["relationship"] == "Partner"

    def test_status_filter(self, client, owner_headers, application):
        res = client.get("/api/v1/worker-applications?status=approved", headers=owner_headers)
        assert res.get_json()["total"] == 0
        res = client.get("/api/v1/worker-applications?status=archived", headers=owner_headers)
        assert res.status_code == 422

    def test_foreman_can_view_not_review(self, client, headers_for, application):
        headers = headers_for("foreman")
        assert client.get("/api/v1/worker-applications", headers=headers).status_code == 200
        res = client.patch(f"/api/v1/worker-applications/{application['id']}",
                           json={"status": "approved"}, headers=headers)
        assert res.status_code == 403

    def test_worker_cannot_view(self, client, headers_for, application):
        res = client.get("/api/v1/worker-applications", headers=headers_for("worker"))
        assert res.status_code == 403

    def test_approve_hires_worker(self, client, owner, owner_headers, application):
        res = client.patch(f"/api/v1/worker-applications/{application['id']}",
                           json={"status": "approved", "reviewer_notes": "Strong references",
                                 "employment_type": "contractor"},
                           headers=owner_headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "approved"
        assert data["reviewed_by"] == owner.id
        assert data["reviewed_by_name"] == "Olivia Owner"
        assert data["reviewer_notes"] == "Strong references"

        worker = db.session.get(Worker, data["worker_id"])
        assert worker.full_name == "Jamie Mason"
        assert worker.employment_type == "contractor"
        assert worker.employment_status == "active"
        assert float(worker.hourly_rate) == 38.5
        assert worker.skills == ["bricklaying", "rendering"]

        roster = client.get("/api/v1/workers", headers=owner_headers).get_json()
        assert [w["full_name"] for w in roster["items"]] == ["Jamie Mason"]

    def test_approved_email_cannot_reapply(self, client, owner_headers, application):
        client.patch(f"/api/v1/worker-applications/{application['id']}",
                     json={"status": "approved"}, headers=owner_headers)
        res = client.post(APPLY_URL, json=_form())
        assert res.status_code == 409

    def test_approved_is_final(self, client, owner_headers, application):
        client.patch(f"/api/v1/worker-applications/{application['id']}",
                     json={"status": "approved"}, headers=owner_headers)
        res = client.patch(f"/api/v1/worker-applications/{application['id']}",
                           json={"status": "rejected"}, headers=owner_headers)
        assert res.status_code == 409
        assert Worker.query.count() == 1

    def test_reject_then_reopen(self, client, owner_headers, application):
        res = client.patch(f"/api/v1/worker-applications/{application['id']}",
                           json={"status": "rejected", "rejection_reason": "No ticket"},
                           headers=owner_headers)
        assert res.get_json()["status"] == "rejected"
        assert res.get_json()["rejection_reason"] == "No ticket"
        assert Worker.query.count() == 0

        # A rejected applicant may apply again
        assert client.post(APPLY_URL, json=_form()).status_code == 201

        res = client.patch(f"/api/v1/worker-applications/{application['id']}",
                           json={"status": "pending"}, headers=owner_headers)
        assert res.status_code == 200
        assert res.get_json()["status"] == "pending"

    def test_invalid_status(self, client, owner_headers, application):
        res = client.patch(f"/api/v1/worker-applications/{application['id']}",
                           json={"status": "hired"}, headers=owner_headers)
        assert res.status_code == 422

    def test_other_company_cannot_see(self, client, other_headers, application):
        res = client.get(f"/api/v1/worker-applications/{application['id']}", headers=other_headers)
        assert res.status_code == 404
        assert client.get("/api/v1/worker-applications", headers=other_headers).get_json()["total"] == 0

    def test_delete(self, client, owner_headers, application):
        res = client.delete(f"/api/v1/worker-applications/{application['id']}", headers=owner_headers)
        assert res.status_code == 200
        assert WorkerApplication.query.count() == 0
        res = client.get(f"/api/v1/worker-applications/{application['id']}", headers=owner_headers)
        assert res.status_code == 404
