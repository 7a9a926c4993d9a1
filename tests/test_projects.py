"""
Project endpoint tests — CRUD, filters, job roll-up and delete guard.
"""

import pytest


@pytest.fixture()
def project(client, owner_headers):
    res = client.post("/api/v1/projects", json={
        "name": "Riverside Townhouses",
        "client_name": "Dana Client",
        "client_email": "dana@riverside.com",
        "estimated_budget": "1250000.50",
        "start_date": "2026-03-01",
        "end_date": "2026-12-15",
        "priority": "high",
    }, headers=owner_headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


class TestProjectCRUD:
    def test_create(self, project, company):
        assert project["company_id"] == company.id
        assert project["estimated_budget"] == 1250000.5
        assert project["status"] == "planning"
        assert project["priority"] == "high"

    def test_name_required(self, client, owner_headers):
        res = client.post("/api/v1/projects", json={"client_name": "x"}, headers=owner_headers)
        assert res.status_code == 400

    def test_negative_budget(self, client, owner_headers):
        res = client.post("/api/v1/projects", json={"name": "Cheap", "estimated_budget": -5},
                          headers=owner_headers)
        assert res.status_code == 422

    def test_end_before_start(self, client, owner_headers):
        res = client.post("/api/v1/projects", json={
            "name": "Backwards", "start_date": "2026-05-01", "end_date": "2026-04-01",
        }, headers=owner_headers)
        assert res.status_code == 422

    def test_list_and_search(self, client, owner_headers, project):
        client.post("/api/v1/projects", json={"name": "Hilltop Villa"}, headers=owner_headers)
        res = client.get("/api/v1/projects", headers=owner_headers)
        assert res.get_json()["total"] == 2

        res = client.get("/api/v1/projects?search=river", headers=owner_headers)
        assert [p["name"] for p in res.get_json()["items"]] == ["Riverside Townhouses"]

    def test_update(self, client, owner_headers, project):
        res = client.put(f"/api/v1/projects/{project['id']}", json={"status": "active"},
                         headers=owner_headers)
        assert res.status_code == 200
        assert res.get_json()["status"] == "active"

    def test_invalid_status(self, client, owner_headers, project):
        res = client.put(f"/api/v1/projects/{project['id']}", json={"status": "demolished"},
                         headers=owner_headers)
        assert res.status_code == 422

    def test_get_includes_job_rollup(self, client, owner_headers, project, workflow):
        for title in ("Unit 1", "Unit 2"):
            client.post("/api/v1/jobs", json={"title": title, "project_id": project["id"]},
                        headers=owner_headers)
        res = client.get(f"/api/v1/projects/{project['id']}", headers=owner_headers)
        data = res.get_json()
        assert data["job_count"] == 2
        assert data["jobs_by_status"] == {"planning": 2}

    def test_delete_blocked_while_jobs_exist(self, client, owner_headers, project):
        res = client.post("/api/v1/jobs", json={"title": "Unit 1", "project_id": project["id"]},
                          headers=owner_headers)
        job_id = res.get_json()["id"]

        res = client.delete(f"/api/v1/projects/{project['id']}", headers=owner_headers)
        assert res.status_code == 409

        client.delete(f"/api/v1/jobs/{job_id}", headers=owner_headers)
        res = client.delete(f"/api/v1/projects/{project['id']}", headers=owner_headers)
        assert res.status_code == 200
        assert client.get(f"/api/v1/projects/{project['id']}", headers=owner_headers).status_code == 404


class TestProjectAccess:
    def test_client_can_view_but_not_create(self, client, headers_for, project):
        headers = headers_for("client")
        assert client.get("/api/v1/projects", headers=headers).status_code == 200
        res = client.post("/api/v1/projects", json={"name": "Nope"}, headers=headers)
        assert res.status_code == 403

    def test_other_company_gets_404(self, client, other_headers, project):
        res = client.get(f"/api/v1/projects/{project['id']}", headers=other_headers)
        assert res.status_code == 404
        res = client.put(f"/api/v1/projects/{project['id']}", json={"name": "Mine now"},
                         headers=other_headers)
        assert res.status_code == 404

    def test_job_cannot_reference_foreign_project(self, client, other_headers, project):
        res = client.post("/api/v1/jobs", json={"title": "Sneaky", "project_id": project["id"]},
                          headers=other_headers)
        assert res.status_code == 404

    def test_unauthenticated(self, client):
        assert client.get("/api/v1/projects").status_code == 401
