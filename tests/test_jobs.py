"""
Job endpoint tests — CRUD, limits, manual status machine and history.
"""

from app.models import db
from app.models.job import JobStatusHistory, validate_job_status_transition


class TestJobCRUD:
    def test_create_enters_first_stage(self, job, workflow):
        assert job["status"] == "planning"
        assert job["current_stage_id"] == workflow["survey"]
        assert job["current_stage"]["name"] == "Survey"
        assert job["stage_entered_at"] is not None

    def test_create_without_workflow(self, client, owner_headers):
        res = client.post("/api/v1/jobs", json={"title": "Fence repair"}, headers=owner_headers)
        assert res.status_code == 201
        assert res.get_json()["current_stage_id"] is None

    def test_title_required(self, client, owner_headers):
        res = client.post("/api/v1/jobs", json={"description": "no title"}, headers=owner_headers)
        assert res.status_code == 400

    def test_job_limit(self, client, owner_headers, company):
        company.max_jobs = 1
        db.session.commit()
        assert client.post("/api/v1/jobs", json={"title": "One"}, headers=owner_headers).status_code == 201
        res = client.post("/api/v1/jobs", json={"title": "Two"}, headers=owner_headers)
        assert res.status_code == 422
        assert res.get_json()["details"]["max_jobs"] == 1

    def test_update(self, client, owner_headers, job, make_user):
        foreman = make_user("foreman")
        res = client.put(f"/api/v1/jobs/{job['id']}", json={
            "address": "12 Wattle St", "latitude": "-33.87", "longitude": 151.2,
            "foreman_id": foreman.id, "budget": 42000,
        }, headers=owner_headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["latitude"] == -33.87
        assert data["foreman_id"] == foreman.id
        assert data["budget"] == 42000.0

    def test_foreman_from_other_company(self, client, owner_headers, job, other_owner):
        res = client.put(f"/api/v1/jobs/{job['id']}", json={"foreman_id": other_owner.id},
                         headers=owner_headers)
        assert res.status_code == 404

    def test_bad_priority(self, client, owner_headers, job):
        res = client.put(f"/api/v1/jobs/{job['id']}", json={"priority": "whenever"}, headers=owner_headers)
        assert res.status_code == 422

    def test_list_filters(self, client, owner_headers, job, workflow):
        client.post("/api/v1/jobs", json={"title": "Bathroom reno", "client_name": "Sam"},
                    headers=owner_headers)
        res = client.get("/api/v1/jobs", headers=owner_headers)
        assert res.get_json()["total"] == 2

        res = client.get("/api/v1/jobs?search=bathroom", headers=owner_headers)
        assert [j["title"] for j in res.get_json()["items"]] == ["Bathroom reno"]

        res = client.get(f"/api/v1/jobs?stage_id={workflow['build']}", headers=owner_headers)
        assert res.get_json()["total"] == 0

    def test_pagination(self, client, owner_headers):
        for n in range(3):
            client.post("/api/v1/jobs", json={"title": f"Job {n}"}, headers=owner_headers)
        res = client.get("/api/v1/jobs?limit=2&offset=0", headers=owner_headers)
        data = res.get_json()
        assert data["total"] == 3
        assert len(data["items"]) == 2

    def test_delete(self, client, owner_headers, job):
        res = client.delete(f"/api/v1/jobs/{job['id']}", headers=owner_headers)
        assert res.status_code == 200
        assert client.get(f"/api/v1/jobs/{job['id']}", headers=owner_headers).status_code == 404

    def test_worker_cannot_create(self, client, headers_for):
        res = client.post("/api/v1/jobs", json={"title": "x"}, headers=headers_for("worker"))
        assert res.status_code == 403

    def test_other_company_gets_404(self, client, other_headers, job):
        assert client.get(f"/api/v1/jobs/{job['id']}", headers=other_headers).status_code == 404
        assert client.delete(f"/api/v1/jobs/{job['id']}", headers=other_headers).status_code == 404


class TestJobStatus:
    def test_transition_table(self):
        assert validate_job_status_transition("planning", "active")
        assert validate_job_status_transition("completed", "active")
        assert not validate_job_status_transition("planning", "completed")
        assert not validate_job_status_transition("cancelled", "active")

    def test_change_status_records_history(self, client, owner_headers, job, owner):
        res = client.post(f"/api/v1/jobs/{job['id']}/status",
                          json={"status": "active", "notes": "Crew booked"}, headers=owner_headers)
        assert res.status_code == 200
        assert res.get_json()["status"] == "active"

        row = JobStatusHistory.query.filter_by(job_id=job["id"]).one()
        assert row.from_status == "planning"
        assert row.changed_by == owner.id
        assert row.notes == "Crew booked"

    def test_same_status(self, client, owner_headers, job):
        res = client.post(f"/api/v1/jobs/{job['id']}/status", json={"status": "planning"},
                          headers=owner_headers)
        assert res.status_code == 400

    def test_disallowed_transition(self, client, owner_headers, job):
        res = client.post(f"/api/v1/jobs/{job['id']}/status", json={"status": "completed"},
                          headers=owner_headers)
        assert res.status_code == 409

    def test_unknown_status(self, client, owner_headers, job):
        res = client.post(f"/api/v1/jobs/{job['id']}/status", json={"status": "paused"},
                          headers=owner_headers)
        assert res.status_code == 422
        assert "allowed" in res.get_json()["details"]

    def test_status_required(self, client, owner_headers, job):
        res = client.post(f"/api/v1/jobs/{job['id']}/status", json={}, headers=owner_headers)
        assert res.status_code == 400

    def test_status_history_and_timeline(self, client, owner_headers, job, workflow):
        client.post(f"/api/v1/jobs/{job['id']}/status", json={"status": "on_hold"}, headers=owner_headers)
        client.post(f"/api/v1/jobs/{job['id']}/stage-response", json={
            "question_id": workflow["q_surveyed"], "response_value": "yes",
        }, headers=owner_headers)

        res = client.get(f"/api/v1/jobs/{job['id']}/status-history", headers=owner_headers)
        assert res.status_code == 200
        data = res.get_json()
        assert [h["status"] for h in data["status_history"]] == ["on_hold"]
        # The stage engine sets the status from the new stage
        assert data["status"] == "active"
        assert [t["stage_name"] for t in data["stage_timeline"]] == ["Survey", "Build"]
        assert data["stage_timeline"][-1]["exited_at"] is None
