"""
Worker roster, job assignment and public assignment-link tests.
"""

from datetime import timedelta

import pytest

from app.models import db
from app.models.workforce import JobAssignment
from app.services import worker_service
from app.utils.errors import E
from app.utils.helpers import utcnow


@pytest.fixture()
def crew_member(client, owner_headers):
    res = client.post("/api/v1/workers", json={
        "full_name": "Casey Carpenter", "email": "casey@acmebuild.com", "phone": "0411 222 333",
        "hourly_rate": "52.50", "employment_type": "contractor", "skills": ["framing", " ", "decking"],
    }, headers=owner_headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


@pytest.fixture()
def assignment(client, owner_headers, job, crew_member):
    res = client.post(f"/api/v1/jobs/{job['id']}/assignments", json={
        "worker_id": crew_member["id"], "start_date": "2026-06-01", "end_date": "2026-06-30",
        "notes": "Bring the nail gun",
    }, headers=owner_headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ═══════════════════════════════════════════════════════════════
# BLOCK 1: Workers
# ═══════════════════════════════════════════════════════════════

class TestWorkers:
    def test_create(self, crew_member):
        assert crew_member["hourly_rate"] == 52.5
        assert crew_member["skills"] == ["framing", "decking"]
        assert crew_member["employment_status"] == "active"

    def test_full_name_required(self, client, owner_headers):
        res = client.post("/api/v1/workers", json={"email": "x@acmebuild.com"}, headers=owner_headers)
        assert res.status_code == 400

    @pytest.mark.parametrize("payload", [
        {"full_name": "Neg Rate", "hourly_rate": -1},
        {"full_name": "NaN Rate", "hourly_rate": "lots"},
        {"full_name": "Bad Mail", "email": "nope"},
        {"full_name": "Bad Type", "employment_type": "intern"},
        {"full_name": "Bad Skills", "skills": "welding"},
    ])
    def test_invalid(self, client, owner_headers, payload):
        assert client.post("/api/v1/workers", json=payload, headers=owner_headers).status_code == 422

    def test_user_link_is_unique(self, client, owner_headers, worker_user):
        user, _ = worker_user
        res = client.post("/api/v1/workers", json={"full_name": "Second Wes", "user_id": user.id},
                          headers=owner_headers)
        assert res.status_code == 409

    def test_user_link_same_company_only(self, client, owner_headers, other_owner):
        res = client.post("/api/v1/workers", json={"full_name": "Poached", "user_id": other_owner.id},
                          headers=owner_headers)
        assert res.status_code == 404

    def test_list_filters(self, client, owner_headers, crew_member):
        client.post("/api/v1/workers", json={"full_name": "Frankie Foreman", "is_foreman": True},
                    headers=owner_headers)
        res = client.get("/api/v1/workers?is_foreman=true", headers=owner_headers)
        assert [w["full_name"] for w in res.get_json()["items"]] == ["Frankie Foreman"]
        res = client.get("/api/v1/workers?search=casey", headers=owner_headers)
        assert res.get_json()["total"] == 1

    def test_update_and_delete(self, client, owner_headers, crew_member):
        url = f"/api/v1/workers/{crew_member['id']}"
        res = client.put(url, json={"employment_status": "inactive"}, headers=owner_headers)
        assert res.get_json()["employment_status"] == "inactive"
        assert client.delete(url, headers=owner_headers).status_code == 200
        assert client.get(url, headers=owner_headers).status_code == 404

    def test_foreman_views_but_cannot_manage(self, client, headers_for, crew_member):
        headers = headers_for("foreman")
        assert client.get("/api/v1/workers", headers=headers).status_code == 200
        res = client.post("/api/v1/workers", json={"full_name": "New Hire"}, headers=headers)
        assert res.status_code == 403

    def test_other_company_hidden(self, client, other_headers, crew_member):
        assert client.get(f"/api/v1/workers/{crew_member['id']}", headers=other_headers).status_code == 404


# ═══════════════════════════════════════════════════════════════
# BLOCK 2: Assignments
# ═══════════════════════════════════════════════════════════════

class TestAssignments:
    def test_create_and_list(self, client, owner_headers, job, assignment, crew_member):
        assert assignment["role"] == "worker"
        assert assignment["is_public"] is False
        res = client.get(f"/api/v1/jobs/{job['id']}/assignments", headers=owner_headers)
        assert [a["worker_id"] for a in res.get_json()["items"]] == [crew_member["id"]]

    def test_foreman_role_default(self, client, owner_headers, job):
        lead = client.post("/api/v1/workers", json={"full_name": "Lee Lead", "is_foreman": True},
                           headers=owner_headers).get_json()
        res = client.post(f"/api/v1/jobs/{job['id']}/assignments", json={"worker_id": lead["id"]},
                          headers=owner_headers)
        assert res.get_json()["role"] == "foreman"

    def test_worker_id_required(self, client, owner_headers, job):
        res = client.post(f"/api/v1/jobs/{job['id']}/assignments", json={}, headers=owner_headers)
        assert res.status_code == 400

    def test_duplicate(self, client, owner_headers, job, assignment, crew_member):
        res = client.post(f"/api/v1/jobs/{job['id']}/assignments", json={"worker_id": crew_member["id"]},
                          headers=owner_headers)
        assert res.status_code == 409

    def test_concurrent_duplicate_hits_constraint(self, client, owner_headers, job, assignment,
                                                  crew_member, monkeypatch):
        # The other request passed the existence check before this one committed
        monkeypatch.setattr(worker_service, "_assignment_exists", lambda job_id, worker_id: False)
        res = client.post(f"/api/v1/jobs/{job['id']}/assignments", json={"worker_id": crew_member["id"]},
                          headers=owner_headers)
        assert res.status_code == 409
        assert res.get_json()["code"] == E.CONFLICT_DUPLICATE
        assert JobAssignment.query.filter_by(job_id=job["id"]).count() == 1

    def test_inactive_worker(self, client, owner_headers, job, crew_member):
        client.put(f"/api/v1/workers/{crew_member['id']}", json={"employment_status": "terminated"},
                   headers=owner_headers)
        res = client.post(f"/api/v1/jobs/{job['id']}/assignments", json={"worker_id": crew_member["id"]},
                          headers=owner_headers)
        assert res.status_code == 422

    @pytest.mark.parametrize("payload", [
        {"role": "apprentice"},
        {"start_date": "2026-06-10", "end_date": "2026-06-01"},
    ])
    def test_invalid(self, client, owner_headers, job, crew_member, payload):
        body = dict(payload, worker_id=crew_member["id"])
        res = client.post(f"/api/v1/jobs/{job['id']}/assignments", json=body, headers=owner_headers)
        assert res.status_code == 422

    def test_delete(self, client, owner_headers, job, assignment):
        res = client.delete(f"/api/v1/assignments/{assignment['id']}", headers=owner_headers)
        assert res.status_code == 200
        res = client.get(f"/api/v1/jobs/{job['id']}/assignments", headers=owner_headers)
        assert res.get_json()["total"] == 0

    def test_worker_cannot_assign(self, client, headers_for, job, crew_member):
        res = client.post(f"/api/v1/jobs/{job['id']}/assignments", json={"worker_id": crew_member["id"]},
                          headers=headers_for("worker"))
        assert res.status_code == 403


# ═══════════════════════════════════════════════════════════════
# BLOCK 3: Public links
# ═══════════════════════════════════════════════════════════════

class TestAssignmentSharing:
    def _share(self, client, headers, assignment_id, **body):
        return client.post(f"/api/v1/assignments/{assignment_id}/share", json=body, headers=headers)

    def test_share_and_view(self, client, owner_headers, assignment, job):
        res = self._share(client, owner_headers, assignment["id"])
        assert res.status_code == 200
        data = res.get_json()
        assert data["is_public"] is True
        assert data["share_url"].endswith(f"/api/v1/shared-assignments/{data['share_token']}")

        public = client.get(f"/api/v1/shared-assignments/{data['share_token']}")
        assert public.status_code == 200
        view = public.get_json()
        assert view["job"]["title"] == "Kitchen extension"
        assert view["job"]["current_stage"] == "Survey"
        assert view["worker"]["full_name"] == "Casey Carpenter"
        assert view["assignment"]["notes"] == "Bring the nail gun"
        assert "hourly_rate" not in view["worker"]
        assert "hourly_rate" not in public.get_data(as_text=True)

    def test_default_expiry_is_thirty_days(self, client, owner_headers, assignment):
        self._share(client, owner_headers, assignment["id"])
        row = db.session.get(JobAssignment, assignment["id"])
        remaining = row.share_expires_at - row.shared_at
        assert remaining == timedelta(days=30)

    @pytest.mark.parametrize("days", [0, 366, "soon"])
    def test_expiry_bounds(self, client, owner_headers, assignment, days):
        res = self._share(client, owner_headers, assignment["id"], expires_in_days=days)
        assert res.status_code == 422

    def test_reshare_rotates_token(self, client, owner_headers, assignment):
        first = self._share(client, owner_headers, assignment["id"]).get_json()["share_token"]
        second = self._share(client, owner_headers, assignment["id"], expires_in_days=7).get_json()["share_token"]
        assert first != second
        assert client.get(f"/api/v1/shared-assignments/{first}").status_code == 404
        assert client.get(f"/api/v1/shared-assignments/{second}").status_code == 200

    def test_unshare(self, client, owner_headers, assignment):
        token = self._share(client, owner_headers, assignment["id"]).get_json()["share_token"]
        res = client.delete(f"/api/v1/assignments/{assignment['id']}/share", headers=owner_headers)
        assert res.get_json()["is_public"] is False
        assert client.get(f"/api/v1/shared-assignments/{token}").status_code == 404

    def test_expired_link(self, client, owner_headers, assignment):
        token = self._share(client, owner_headers, assignment["id"]).get_json()["share_token"]
        row = db.session.get(JobAssignment, assignment["id"])
        row.share_expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()
        assert client.get(f"/api/v1/shared-assignments/{token}").status_code == 410

    def test_unknown_token(self, client):
        assert client.get("/api/v1/shared-assignments/not-a-real-token").status_code == 404

    def test_other_company_cannot_share(self, client, other_headers, assignment):
        assert self._share(client, other_headers, assignment["id"]).status_code == 404
