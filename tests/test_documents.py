"""
Document tests — multipart upload, metadata, download, soft delete,
signed share links, the access trail and categories.
"""

import io
import json
import os
import time
from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

from app.models import db
from app.models.document import Document
from app.services import document_service

UPLOAD = "/api/v1/documents/upload"
PDF_BYTES = b"%PDF-1.4 site plan"


def _upload(client, headers, filename="plan.pdf", content=PDF_BYTES, **fields):
    data = {"file": (io.BytesIO(content), filename)}
    data.update({k: str(v) for k, v in fields.items()})
    return client.post(UPLOAD, data=data, content_type="multipart/form-data", headers=headers)


@pytest.fixture()
def document(client, owner_headers, job):
    res = _upload(client, owner_headers, job_id=job["id"], title="Site plan", tags="plans, council ,")
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ═══════════════════════════════════════════════════════════════
# BLOCK 1: Upload & metadata
# ═══════════════════════════════════════════════════════════════

class TestUpload:
    def test_upload(self, document, job, owner):
        assert document["job_id"] == job["id"]
        assert document["title"] == "Site plan"
        assert document["tags"] == ["plans", "council"]
        assert document["file_size"] == len(PDF_BYTES)
        assert document["file_extension"] == "pdf"
        assert document["storage_bucket"] == "documents"
        assert document["uploaded_by"] == owner.id

        row = db.session.get(Document, document["id"])
        assert row.storage_path.startswith(f"{row.company_id}/{job['id']}/")
        assert os.path.isfile(document_service.absolute_path(row))

    def test_image_goes_to_photos(self, client, owner_headers):
        res = _upload(client, owner_headers, filename="slab.jpg", content=b"\xff\xd8\xff")
        data = res.get_json()
        assert data["storage_bucket"] == "photos"
        assert data["job_id"] is None
        assert data["title"] == "slab.jpg"

    def test_extension_not_allowed(self, client, owner_headers):
        res = _upload(client, owner_headers, filename="payload.exe", content=b"MZ")
        assert res.status_code == 422
        assert "pdf" in res.get_json()["details"]["allowed"]

    def test_file_required(self, client, owner_headers):
        res = client.post(UPLOAD, data={"title": "Nothing"}, content_type="multipart/form-data",
                          headers=owner_headers)
        assert res.status_code == 400

    def test_task_implies_job(self, client, owner_headers, job, workflow):
        client.post(f"/api/v1/jobs/{job['id']}/stage-response", json={
            "question_id": workflow["q_surveyed"], "response_value": "Yes",
        }, headers=owner_headers)
        [task] = client.get(f"/api/v1/jobs/{job['id']}/tasks", headers=owner_headers).get_json()["items"]
        res = _upload(client, owner_headers, task_id=task["id"])
        assert res.get_json()["job_id"] == job["id"]

    def test_foreign_job(self, client, other_headers, job):
        res = _upload(client, other_headers, job_id=job["id"])
        assert res.status_code == 404

    def test_bad_coordinates(self, client, owner_headers):
        assert _upload(client, owner_headers, latitude="up north").status_code == 422

    def test_worker_uploads_client_cannot(self, client, headers_for):
        assert _upload(client, headers_for("worker")).status_code == 201
        assert _upload(client, headers_for("client")).status_code == 403

    def test_failed_insert_removes_file(self, client, owner_headers, company):
        folder = os.path.join(document_service.storage_root(), str(company.id), "general")
        before = set(os.listdir(folder)) if os.path.isdir(folder) else set()

        with patch.object(db.session, "commit", side_effect=RuntimeError("database went away")):
            res = _upload(client, owner_headers, filename="orphan.pdf")

        assert res.status_code == 500
        after = set(os.listdir(folder)) if os.path.isdir(folder) else set()
        assert after == before
        assert Document.query.filter_by(original_filename="orphan.pdf").count() == 0

    def test_json_body_needs_json_content_type(self, client, owner_headers, document):
        res = client.put(f"/api/v1/documents/{document['id']}", data="title=Oops",
                         content_type="text/plain", headers=owner_headers)
        assert res.status_code == 415


class TestDocumentMetadata:
    def test_list_and_search(self, client, owner_headers, document, job):
        _upload(client, owner_headers, filename="invoice.pdf", title="Invoice 12")
        res = client.get("/api/v1/documents", headers=owner_headers)
        assert res.get_json()["total"] == 2
        res = client.get(f"/api/v1/documents?job_id={job['id']}", headers=owner_headers)
        assert [d["id"] for d in res.get_json()["items"]] == [document["id"]]
        res = client.get("/api/v1/documents?search=invoice", headers=owner_headers)
        assert [d["title"] for d in res.get_json()["items"]] == ["Invoice 12"]

    def test_update(self, client, owner_headers, document):
        categories = client.get("/api/v1/document-categories", headers=owner_headers).get_json()["items"]
        permits = next(c for c in categories if c["name"] == "Permits")
        res = client.put(f"/api/v1/documents/{document['id']}", json={
            "title": "Site plan rev B", "category_id": permits["id"], "tags": ["rev-b"],
        }, headers=owner_headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["title"] == "Site plan rev B"
        assert data["category_name"] == "Permits"
        assert data["tags"] == ["rev-b"]

    def test_blank_title(self, client, owner_headers, document):
        res = client.put(f"/api/v1/documents/{document['id']}", json={"title": " "}, headers=owner_headers)
        assert res.status_code == 422

    def test_other_company_hidden(self, client, other_headers, document):
        assert client.get(f"/api/v1/documents/{document['id']}", headers=other_headers).status_code == 404
        assert client.get("/api/v1/documents", headers=other_headers).get_json()["total"] == 0


# ═══════════════════════════════════════════════════════════════
# BLOCK 2: Download, delete, access trail
# ═══════════════════════════════════════════════════════════════

class TestDownloadAndDelete:
    def test_download(self, client, owner_headers, document):
        res = client.get(f"/api/v1/documents/{document['id']}/download", headers=owner_headers)
        assert res.status_code == 200
        assert res.data == PDF_BYTES
        assert "attachment" in res.headers["Content-Disposition"]
        assert res.headers["X-Content-Type-Options"] == "nosniff"

    def test_inline_preview(self, client, owner_headers, document):
        res = client.get(f"/api/v1/documents/{document['id']}/preview", headers=owner_headers)
        assert res.status_code == 200
        assert res.data == PDF_BYTES
        assert res.headers["Content-Disposition"].startswith("inline")
        assert res.mimetype == "application/pdf"

        log = client.get(f"/api/v1/documents/{document['id']}/access-log", headers=owner_headers)
        assert [r["action"] for r in log.get_json()["items"]] == ["view"]

    def test_client_can_preview(self, client, headers_for, document):
        res = client.get(f"/api/v1/documents/{document['id']}/preview", headers=headers_for("client"))
        assert res.status_code == 200

    def test_soft_delete(self, client, owner_headers, document):
        row = db.session.get(Document, document["id"])
        path = document_service.absolute_path(row)

        res = client.delete(f"/api/v1/documents/{document['id']}", headers=owner_headers)
        assert res.status_code == 200
        assert not os.path.exists(path)
        assert client.get(f"/api/v1/documents/{document['id']}", headers=owner_headers).status_code == 404

        db.session.expire_all()
        row = db.session.get(Document, document["id"])
        assert row.is_deleted is True
        assert row.deleted_at is not None

    def test_foreman_cannot_delete(self, client, headers_for, document):
        assert client.delete(f"/api/v1/documents/{document['id']}",
                             headers=headers_for("foreman")).status_code == 403

    def test_missing_file(self, client, owner_headers, document):
        os.remove(document_service.absolute_path(db.session.get(Document, document["id"])))
        res = client.get(f"/api/v1/documents/{document['id']}/download", headers=owner_headers)
        assert res.status_code == 404

    def test_access_log(self, client, owner_headers, owner, document):
        client.get(f"/api/v1/documents/{document['id']}/download", headers=owner_headers)
        client.post(f"/api/v1/documents/{document['id']}/share", headers=owner_headers)
        client.delete(f"/api/v1/documents/{document['id']}", headers=owner_headers)

        res = client.get(f"/api/v1/documents/{document['id']}/access-log", headers=owner_headers)
        assert res.status_code == 200
        rows = res.get_json()["items"]
        assert sorted(r["action"] for r in rows) == ["delete", "download", "share"]
        assert all(r["user_id"] == owner.id for r in rows)


# ═══════════════════════════════════════════════════════════════
# BLOCK 3: Share links
# ═══════════════════════════════════════════════════════════════

class TestDocumentSharing:
    def test_share_and_public_download(self, client, owner_headers, document):
        res = client.post(f"/api/v1/documents/{document['id']}/share", headers=owner_headers)
        assert res.status_code == 201
        data = res.get_json()
        assert data["document_id"] == document["id"]
        assert data["share_url"].endswith(data["token"])
        assert data["expires_at"]

        public = client.get(f"/api/v1/shared-documents/{data['token']}")
        assert public.status_code == 200
        assert public.data == PDF_BYTES
        assert public.headers["Cache-Control"] == "no-store"

        log = client.get(f"/api/v1/documents/{document['id']}/access-log", headers=owner_headers)
        anonymous = [r for r in log.get_json()["items"] if r["user_id"] is None]
        assert [r["action"] for r in anonymous] == ["download"]

    def test_tampered_token(self, client, owner_headers, document):
        token = client.post(f"/api/v1/documents/{document['id']}/share",
                            headers=owner_headers).get_json()["token"]
        assert client.get(f"/api/v1/shared-documents/{token[:-4]}abcd").status_code == 404
        assert client.get("/api/v1/shared-documents/garbage").status_code == 404

    def test_expired_token(self, client, document):
        body = json.dumps({"company_id": document["company_id"], "document_id": document["id"]},
                          sort_keys=True, separators=(",", ":")).encode()
        stale = Fernet(os.environ["ENCRYPTION_KEY"]).encrypt_at_time(body, int(time.time()) - 8 * 24 * 3600)
        assert client.get(f"/api/v1/shared-documents/{stale.decode()}").status_code == 410

    def test_deleted_document(self, client, owner_headers, document):
        token = client.post(f"/api/v1/documents/{document['id']}/share",
                            headers=owner_headers).get_json()["token"]
        client.delete(f"/api/v1/documents/{document['id']}", headers=owner_headers)
        assert client.get(f"/api/v1/shared-documents/{token}").status_code == 404

    def test_client_role_cannot_share(self, client, headers_for, document):
        res = client.post(f"/api/v1/documents/{document['id']}/share", headers=headers_for("client"))
        assert res.status_code == 403


# ═══════════════════════════════════════════════════════════════
# BLOCK 4: Categories
# ═══════════════════════════════════════════════════════════════

class TestCategories:
    def test_defaults_seeded(self, client, owner_headers):
        res = client.get("/api/v1/document-categories", headers=owner_headers)
        names = [c["name"] for c in res.get_json()["items"]]
        assert set(names) == {"Photos", "Contracts", "Quotes", "Permits", "Invoices", "Other"}
        assert all(c["is_default"] for c in res.get_json()["items"])

    def test_company_category(self, client, owner_headers, other_headers):
        res = client.post("/api/v1/document-categories", json={"name": "Variations", "color": "#000000"},
                          headers=owner_headers)
        assert res.status_code == 201
        assert res.get_json()["is_default"] is False

        mine = [c["name"] for c in client.get("/api/v1/document-categories",
                                                 headers=owner_headers).get_json()["items"]]
        theirs = [c["name"] for c in client.get("/api/v1/document-categories",
                                                   headers=other_headers).get_json()["items"]]
        assert mine[-1] == "Variations"
        assert "Variations" not in theirs

    def test_duplicate_name(self, client, owner_headers):
        client.get("/api/v1/document-categories", headers=owner_headers)
        res = client.post("/api/v1/document-categories", json={"name": "Photos"}, headers=owner_headers)
        assert res.status_code == 409

    def test_name_required(self, client, owner_headers):
        assert client.post("/api/v1/document-categories", json={},
                           headers=owner_headers).status_code == 400

    def test_foreign_category_rejected(self, client, owner_headers, other_headers, document):
        foreign = client.post("/api/v1/document-categories", json={"name": "Theirs"},
                              headers=other_headers).get_json()
        res = client.put(f"/api/v1/documents/{document['id']}", json={"category_id": foreign["id"]},
                         headers=owner_headers)
        assert res.status_code == 404
