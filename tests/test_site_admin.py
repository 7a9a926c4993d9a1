"""
Site admin tests — cross-company listing, company lifecycle and the
per-request company selection used by site admins.
"""

from app.services import job_service
from tests.conftest import PASSWORD


class TestSiteAdminCompanies:
    def test_list_companies_with_counts(self, client, site_admin_headers, owner, other_owner, job):
        res = client.get("/api/v1/site-admin/companies", headers=site_admin_headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["total"] == 2
        acme = next(c for c in data["items"] if c["id"] == owner.company_id)
        assert acme["user_count"] == 1
        assert acme["job_count"] == 1

    def test_search_companies(self, client, site_admin_headers, owner, other_owner):
        res = client.get("/api/v1/site-admin/companies?search=rival", headers=site_admin_headers)
        assert [c["name"] for c in res.get_json()["items"]] == ["Rival Homes"]

    def test_create_company(self, client, site_admin_headers):
        res = client.post("/api/v1/site-admin/companies", json={
            "name": "Northside Renovations", "subscription_plan": "professional", "max_users": 50,
        }, headers=site_admin_headers)
        assert res.status_code == 201
        data = res.get_json()
        assert data["slug"] == "northside-renovations"
        assert data["max_users"] == 50

    def test_create_company_requires_name(self, client, site_admin_headers):
        res = client.post("/api/v1/site-admin/companies", json={}, headers=site_admin_headers)
        assert res.status_code == 422

    def test_duplicate_slug(self, client, site_admin_headers, owner):
        res = client.post("/api/v1/site-admin/companies", json={"name": "Copy", "slug": "acme-build"},
                          headers=site_admin_headers)
        assert res.status_code == 409

    def test_owner_is_not_site_admin(self, client, owner_headers):
        res = client.get("/api/v1/site-admin/companies", headers=owner_headers)
        assert res.status_code == 403

    def test_suspend_company_blocks_its_users(self, client, site_admin_headers, owner, owner_headers):
        res = client.put(f"/api/v1/site-admin/companies/{owner.company_id}",
                         json={"subscription_status": "suspended"}, headers=site_admin_headers)
        assert res.status_code == 200
        assert res.get_json()["subscription_status"] == "suspended"

        # Existing tokens stop working and new logins are refused
        assert client.get("/api/v1/jobs", headers=owner_headers).status_code == 403
        res = client.post("/api/v1/auth/login", json={"email": owner.email, "password": PASSWORD})
        assert res.status_code == 403

    def test_invalid_subscription_status(self, client, site_admin_headers, owner):
        res = client.put(f"/api/v1/site-admin/companies/{owner.company_id}",
                         json={"subscription_status": "frozen"}, headers=site_admin_headers)
        assert res.status_code == 422


class TestSiteAdminScope:
    def test_all_jobs_across_companies(self, client, site_admin_headers, owner, other_owner):
        job_service.create_job(owner.company_id, {"title": "Deck"}, owner.id)
        job_service.create_job(other_owner.company_id, {"title": "Garage"}, other_owner.id)

        res = client.get("/api/v1/site-admin/jobs", headers=site_admin_headers)
        assert res.get_json()["total"] == 2

        res = client.get(f"/api/v1/site-admin/jobs?company_id={other_owner.company_id}",
                         headers=site_admin_headers)
        assert [j["title"] for j in res.get_json()["items"]] == ["Garage"]

    def test_company_endpoints_need_a_company(self, client, site_admin_headers):
        res = client.get("/api/v1/jobs", headers=site_admin_headers)
        assert res.status_code == 400

    def test_company_selected_by_query(self, client, site_admin_headers, owner):
        job_service.create_job(owner.company_id, {"title": "Deck"}, owner.id)
        res = client.get(f"/api/v1/jobs?company_id={owner.company_id}", headers=site_admin_headers)
        assert res.status_code == 200
        assert res.get_json()["total"] == 1

    def test_company_selected_by_header(self, client, site_admin_headers, owner):
        headers = dict(site_admin_headers, **{"X-Company-Id": str(owner.company_id)})
        res = client.get("/api/v1/company", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["id"] == owner.company_id

    def test_unknown_company(self, client, site_admin_headers):
        res = client.get("/api/v1/jobs?company_id=9999", headers=site_admin_headers)
        assert res.status_code == 404

    def test_non_numeric_company(self, client, site_admin_headers):
        res = client.get("/api/v1/jobs?company_id=abc", headers=site_admin_headers)
        assert res.status_code == 400

    def test_regular_user_cannot_switch_company(self, client, owner_headers, other_owner):
        job_service.create_job(other_owner.company_id, {"title": "Garage"}, other_owner.id)
        res = client.get(f"/api/v1/jobs?company_id={other_owner.company_id}", headers=owner_headers)
        assert res.status_code == 200
        assert res.get_json()["total"] == 0
