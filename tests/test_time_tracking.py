"""
Time tracking tests.

Covers the check-in/out cycle (API and service with a fixed clock),
breaks, overtime and cost arithmetic, manual entries, approvals, bulk
approval and the worker-only-self rule.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import BadRequestError, ValidationError
from app.models import db
from app.models.time_tracking import TimeEntry
from app.services import time_tracking_service as svc
from tests.conftest import login

T = "/api/v1/time"


def at(hour, minute=0, day=2):
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture()
def worker_headers(client, worker_user):
    user, _ = worker_user
    return login(client, user.email)


@pytest.fixture()
def pending_entry(company, job, worker_user):
    """A closed 08:00-12:00 entry awaiting approval."""
    _, worker = worker_user
    return svc.create_entry(company.id, {
        "worker_id": worker.id, "job_id": job["id"],
        "start_time": "2026-03-02T08:00:00Z", "end_time": "2026-03-02T12:00:00Z",
    })


# ═══════════════════════════════════════════════════════════════
# BLOCK 1: Check-in / check-out through the API
# ═══════════════════════════════════════════════════════════════

class TestCheckInApi:
    def test_cycle(self, client, worker_headers, job, worker_user):
        _, worker = worker_user
        res = client.post(f"{T}/check-in", json={
            "job_id": job["id"], "latitude": -33.86, "longitude": 151.21, "location_name": "Front gate",
        }, headers=worker_headers)
        assert res.status_code == 201
        data = res.get_json()
        assert data["check_in"]["worker_id"] == worker.id
        assert data["time_entry"]["status"] == "active"
        assert data["time_entry"]["hourly_rate"] == 40.0

        status = client.get(f"{T}/status", headers=worker_headers).get_json()
        assert status["checked_in"] is True
        assert status["on_break"] is False

        res = client.post(f"{T}/check-out", json={"notes": "Left early"}, headers=worker_headers)
        assert res.status_code == 200
        out = res.get_json()
        assert out["time_entry"]["status"] == "pending"
        assert out["check_in"]["notes"] == "Left early"
        assert "daily_summary" in out

        assert client.get(f"{T}/status", headers=worker_headers).get_json()["checked_in"] is False

    def test_double_check_in(self, client, worker_headers, job):
        client.post(f"{T}/check-in", json={"job_id": job["id"]}, headers=worker_headers)
        res = client.post(f"{T}/check-in", json={"job_id": job["id"]}, headers=worker_headers)
        assert res.status_code == 400
        assert "check_in_id" in res.get_json()["details"]

    def test_check_out_without_check_in(self, client, worker_headers):
        assert client.post(f"{T}/check-out", json={}, headers=worker_headers).status_code == 400

    def test_job_required(self, client, worker_headers):
        assert client.post(f"{T}/check-in", json={}, headers=worker_headers).status_code == 400

    def test_bad_coordinates(self, client, worker_headers, job):
        res = client.post(f"{T}/check-in", json={"job_id": job["id"], "latitude": "north"},
                          headers=worker_headers)
        assert res.status_code == 422

    def test_worker_cannot_act_for_others(self, client, owner_headers, worker_headers, job):
        other = client.post("/api/v1/workers", json={"full_name": "Pat Plumber"},
                            headers=owner_headers).get_json()
        res = client.post(f"{T}/check-in", json={"job_id": job["id"], "worker_id": other["id"]},
                          headers=worker_headers)
        assert res.status_code == 403

    def test_manager_checks_in_a_worker(self, client, owner_headers, job, worker_user):
        _, worker = worker_user
        res = client.post(f"{T}/check-in", json={"job_id": job["id"], "worker_id": worker.id},
                          headers=owner_headers)
        assert res.status_code == 201

    def test_manager_without_worker_record(self, client, owner_headers, job):
        res = client.post(f"{T}/check-in", json={"job_id": job["id"]}, headers=owner_headers)
        assert res.status_code == 400

    def test_inactive_worker(self, client, owner_headers, job, worker_user):
        _, worker = worker_user
        client.put(f"/api/v1/workers/{worker.id}", json={"employment_status": "inactive"},
                   headers=owner_headers)
        res = client.post(f"{T}/check-in", json={"job_id": job["id"], "worker_id": worker.id},
                          headers=owner_headers)
        assert res.status_code == 422

    def test_client_role_cannot_track(self, client, headers_for, job):
        res = client.post(f"{T}/check-in", json={"job_id": job["id"]}, headers=headers_for("client"))
        assert res.status_code == 403


# ═══════════════════════════════════════════════════════════════
# BLOCK 2: Cost and overtime with a fixed clock
# ═══════════════════════════════════════════════════════════════

class TestCostAndOvertime:
    def test_regular_shift(self, company, job, worker_user):
        _, worker = worker_user
        svc.check_in(company.id, worker.id, job["id"], now=at(8))
        result = svc.check_out(company.id, worker.id, now=at(12))
        entry = result["time_entry"]
        assert result["total_minutes"] == 240
        assert entry["entry_type"] == "regular"
        assert entry["total_cost"] == 160.0
        assert result["daily_summary"]["regular_hours"] == 4.0

    def test_long_shift_is_overtime(self, company, job, worker_user):
        _, worker = worker_user
        svc.check_in(company.id, worker.id, job["id"], now=at(7))
        result = svc.check_out(company.id, worker.id, now=at(15, 30))
        entry = result["time_entry"]
        assert result["total_minutes"] == 510
        assert entry["entry_type"] == "overtime"
        assert entry["overtime_rate"] == 60.0
        assert entry["total_cost"] == 510.0
        assert result["daily_summary"]["overtime_hours"] == 8.5

    def test_second_shift_tips_into_overtime(self, company, job, worker_user):
        _, worker = worker_user
        svc.check_in(company.id, worker.id, job["id"], now=at(6))
        first = svc.check_out(company.id, worker.id, now=at(12))
        assert first["time_entry"]["entry_type"] == "regular"

        svc.check_in(company.id, worker.id, job["id"], now=at(13))
        second = svc.check_out(company.id, worker.id, now=at(16))
        assert second["time_entry"]["entry_type"] == "overtime"
        assert second["daily_summary"]["regular_hours"] == 6.0
        assert second["daily_summary"]["overtime_hours"] == 3.0

    def test_breaks_are_deducted(self, company, job, worker_user):
        _, worker = worker_user
        _, entry = svc.check_in(company.id, worker.id, job["id"], now=at(7))
        brk = svc.start_break(company.id, entry.id, worker.id, "lunch", now=at(11))
        svc.end_break(company.id, brk.id, now=at(11, 30))
        result = svc.check_out(company.id, worker.id, now=at(15, 30))
        assert result["time_entry"]["break_duration_minutes"] == 30
        assert result["time_entry"]["total_cost"] == 480.0

    def test_open_break_closed_on_check_out(self, company, job, worker_user):
        _, worker = worker_user
        _, entry = svc.check_in(company.id, worker.id, job["id"], now=at(8))
        svc.start_break(company.id, entry.id, worker.id, now=at(11, 45))
        result = svc.check_out(company.id, worker.id, now=at(12))
        assert result["time_entry"]["break_duration_minutes"] == 15
        assert result["time_entry"]["total_cost"] == 150.0

    def test_next_day_check_in_allowed_after_forgotten_check_out(self, company, job, worker_user):
        _, worker = worker_user
        svc.check_in(company.id, worker.id, job["id"], now=at(8))
        svc.check_in(company.id, worker.id, job["id"], now=at(8, day=3))
        with pytest.raises(BadRequestError):
            svc.check_in(company.id, worker.id, job["id"], now=at(9, day=3))

    @pytest.mark.parametrize("minutes, breaks, rate, expected", [
        (60, 0, 40, "40.00"),
        (90, 30, 40, "40.00"),
        (10, 20, 40, "0.00"),
        (45, 0, "33.33", "25.00"),
    ])
    def test_compute_cost(self, minutes, breaks, rate, expected):
        assert str(svc.compute_cost(minutes, breaks, rate)) == expected


# ═══════════════════════════════════════════════════════════════
# BLOCK 3: Breaks through the API
# ═══════════════════════════════════════════════════════════════

class TestBreaks:
    def test_break_cycle(self, client, worker_headers, job):
        entry = client.post(f"{T}/check-in", json={"job_id": job["id"]},
                            headers=worker_headers).get_json()["time_entry"]
        res = client.post(f"{T}/breaks", json={"time_entry_id": entry["id"], "break_type": "lunch"},
                          headers=worker_headers)
        assert res.status_code == 201
        brk = res.get_json()
        assert client.get(f"{T}/status", headers=worker_headers).get_json()["on_break"] is True

        again = client.post(f"{T}/breaks", json={"time_entry_id": entry["id"]}, headers=worker_headers)
        assert again.status_code == 400

        assert client.post(f"{T}/breaks/{brk['id']}/end", headers=worker_headers).status_code == 200
        assert client.post(f"{T}/breaks/{brk['id']}/end", headers=worker_headers).status_code == 400

        listing = client.get(f"{T}/entries/{entry['id']}/breaks", headers=worker_headers).get_json()
        assert listing["total"] == 1

    def test_invalid_break_type(self, client, worker_headers, job):
        entry = client.post(f"{T}/check-in", json={"job_id": job["id"]},
                            headers=worker_headers).get_json()["time_entry"]
        res = client.post(f"{T}/breaks", json={"time_entry_id": entry["id"], "break_type": "nap"},
                          headers=worker_headers)
        assert res.status_code == 422

    def test_break_on_closed_entry(self, client, owner_headers, pending_entry):
        res = client.post(f"{T}/breaks", json={"time_entry_id": pending_entry.id}, headers=owner_headers)
        assert res.status_code == 400

    def test_unknown_break(self, client, owner_headers):
        assert client.post(f"{T}/breaks/4242/end", headers=owner_headers).status_code == 404


# ═══════════════════════════════════════════════════════════════
# BLOCK 4: Manual entries
# ═══════════════════════════════════════════════════════════════

class TestEntries:
    def test_manual_entry(self, client, owner_headers, job, worker_user):
        _, worker = worker_user
        res = client.post(f"{T}/entries", json={
            "worker_id": worker.id, "job_id": job["id"],
            "start_time": "2026-03-02T08:00:00Z", "end_time": "2026-03-02T10:30:00Z",
            "break_duration_minutes": 30, "description": "Formwork",
        }, headers=owner_headers)
        assert res.status_code == 201
        data = res.get_json()
        assert data["status"] == "pending"
        assert data["duration_minutes"] == 150
        assert data["total_cost"] == 80.0
        assert data["worker_name"] == "Wes Worker"

    def test_end_before_start(self, client, owner_headers, job, worker_user):
        _, worker = worker_user
        res = client.post(f"{T}/entries", json={
            "worker_id": worker.id, "job_id": job["id"],
            "start_time": "2026-03-02T10:00:00Z", "end_time": "2026-03-02T09:00:00Z",
        }, headers=owner_headers)
        assert res.status_code == 422

    def test_start_required(self, client, owner_headers, job, worker_user):
        _, worker = worker_user
        res = client.post(f"{T}/entries", json={"worker_id": worker.id, "job_id": job["id"]},
                          headers=owner_headers)
        assert res.status_code == 400

    def test_update_recomputes(self, client, owner_headers, pending_entry):
        res = client.put(f"{T}/entries/{pending_entry.id}", json={"end_time": "2026-03-02T13:00:00Z"},
                         headers=owner_headers)
        assert res.status_code == 200
        assert res.get_json()["duration_minutes"] == 300
        assert res.get_json()["total_cost"] == 200.0

    def test_status_not_settable_to_approved(self, client, owner_headers, pending_entry):
        res = client.put(f"{T}/entries/{pending_entry.id}", json={"status": "approved"},
                         headers=owner_headers)
        assert res.status_code == 422

    def test_filters(self, client, owner_headers, pending_entry, job):
        res = client.get(f"{T}/entries?status=pending&job_id={job['id']}&date_from=2026-03-02&date_to=2026-03-02",
                         headers=owner_headers)
        assert [e["id"] for e in res.get_json()["items"]] == [pending_entry.id]
        res = client.get(f"{T}/entries?date_from=2026-03-03", headers=owner_headers)
        assert res.get_json()["total"] == 0

    def test_worker_sees_only_own_entries(self, client, owner_headers, worker_headers, company, job,
                                          pending_entry):
        other = client.post("/api/v1/workers", json={"full_name": "Pat Plumber"},
                            headers=owner_headers).get_json()
        svc.create_entry(company.id, {
            "worker_id": other["id"], "job_id": job["id"], "start_time": "2026-03-02T08:00:00Z",
        })
        assert client.get(f"{T}/entries", headers=owner_headers).get_json()["total"] == 2
        res = client.get(f"{T}/entries", headers=worker_headers)
        assert [e["id"] for e in res.get_json()["items"]] == [pending_entry.id]

    def test_delete(self, client, owner_headers, pending_entry):
        assert client.delete(f"{T}/entries/{pending_entry.id}", headers=owner_headers).status_code == 200
        assert client.get(f"{T}/entries/{pending_entry.id}", headers=owner_headers).status_code == 404

    def test_approved_entry_is_locked(self, client, owner_headers, company, owner, pending_entry):
        svc.approve_entry(company.id, pending_entry.id, "approved", owner.id)
        res = client.put(f"{T}/entries/{pending_entry.id}", json={"description": "edit"},
                         headers=owner_headers)
        assert res.status_code == 400
        assert client.delete(f"{T}/entries/{pending_entry.id}", headers=owner_headers).status_code == 400


# ═══════════════════════════════════════════════════════════════
# BLOCK 5: Approvals
# ═══════════════════════════════════════════════════════════════

class TestApprovals:
    def test_approve(self, client, owner_headers, owner, pending_entry):
        res = client.post(f"{T}/approvals", json={
            "time_entry_id": pending_entry.id, "approval_status": "approved", "notes": "Looks right",
        }, headers=owner_headers)
        assert res.status_code == 201
        data = res.get_json()
        assert data["time_entry"]["status"] == "approved"
        assert data["time_entry"]["approved_by"] == owner.id
        assert data["approval"]["notes"] == "Looks right"

        again = client.post(f"{T}/approvals", json={
            "time_entry_id": pending_entry.id, "approval_status": "approved",
        }, headers=owner_headers)
        assert again.status_code == 400

        history = client.get(f"{T}/approvals?time_entry_id={pending_entry.id}", headers=owner_headers)
        assert history.get_json()["total"] == 1

    def test_changes_requested_keeps_pending(self, client, owner_headers, pending_entry):
        res = client.post(f"{T}/approvals", json={
            "time_entry_id": pending_entry.id, "approval_status": "changes_requested",
        }, headers=owner_headers)
        assert res.get_json()["time_entry"]["status"] == "pending"

    def test_approve_with_adjusted_times(self, client, owner_headers, pending_entry):
        res = client.post(f"{T}/approvals", json={
            "time_entry_id": pending_entry.id, "approval_status": "approved",
            "approved_end_time": "2026-03-02T11:00:00Z",
        }, headers=owner_headers)
        entry = res.get_json()["time_entry"]
        assert entry["duration_minutes"] == 180
        assert entry["total_cost"] == 120.0

    def test_invalid_status(self, client, owner_headers, pending_entry):
        res = client.post(f"{T}/approvals", json={
            "time_entry_id": pending_entry.id, "approval_status": "maybe",
        }, headers=owner_headers)
        assert res.status_code == 422

    def test_open_entry_cannot_be_approved(self, company, owner, job, worker_user):
        _, worker = worker_user
        _, entry = svc.check_in(company.id, worker.id, job["id"])
        with pytest.raises(BadRequestError):
            svc.approve_entry(company.id, entry.id, "approved", owner.id)

    def test_foreman_approves_worker_cannot(self, client, headers_for, worker_headers, pending_entry):
        body = {"time_entry_id": pending_entry.id, "approval_status": "rejected"}
        assert client.post(f"{T}/approvals", json=body, headers=worker_headers).status_code == 403
        res = client.post(f"{T}/approvals", json=body, headers=headers_for("foreman"))
        assert res.status_code == 201
        assert res.get_json()["time_entry"]["status"] == "rejected"

    def test_bulk(self, client, owner_headers, company, job, worker_user, pending_entry, owner):
        _, worker = worker_user
        second = svc.create_entry(company.id, {
            "worker_id": worker.id, "job_id": job["id"],
            "start_time": "2026-03-03T08:00:00Z", "end_time": "2026-03-03T09:00:00Z",
        })
        svc.approve_entry(company.id, pending_entry.id, "approved", owner.id)

        res = client.post(f"{T}/approvals/bulk", json={
            "time_entry_ids": [pending_entry.id, second.id, 999999], "approval_status": "approved",
        }, headers=owner_headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["processed"] == [second.id]
        assert {e["time_entry_id"] for e in data["errors"]} == {pending_entry.id, 999999}
        assert db.session.get(TimeEntry, second.id).status == "approved"

    def test_bulk_needs_ids(self, client, owner_headers):
        res = client.post(f"{T}/approvals/bulk", json={"time_entry_ids": [], "approval_status": "approved"},
                          headers=owner_headers)
        assert res.status_code == 400

    def test_bulk_invalid_status(self, company, owner, pending_entry):
        with pytest.raises(ValidationError):
            svc.bulk_approve(company.id, [pending_entry.id], "nope", owner.id)

    def test_other_company_entry(self, client, other_headers, pending_entry):
        res = client.post(f"{T}/approvals", json={
            "time_entry_id": pending_entry.id, "approval_status": "approved",
        }, headers=other_headers)
        assert res.status_code == 404
