"""
Worker application service — public job applications and their review.

Anyone can apply to an active company through its slug. Owners and admins
review applications; approving one puts the applicant on the company's
worker roster.
"""

import logging
from decimal import Decimal, InvalidOperation

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import Company
from app.models.workforce import (
    APPLICATION_STATUSES,
    APPLICATION_TRANSITIONS,
    EMPLOYMENT_TYPES,
    Worker,
    WorkerApplication,
)
from app.services.helpers.scoped_queries import get_scoped
from app.utils.helpers import parse_date, utcnow

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("full_name", "email", "phone")
MAX_REFERENCES = 2
_LIST_FIELDS = ("skills", "certifications", "licenses")
_TEXT_FIELDS = ("address", "work_experience", "previous_employer", "cover_letter", "source")


def _string_list(value, field) -> list[str]:
    if value in (None, ""):
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list")
    return [str(v).strip() for v in value if str(v).strip()]


def _references(value) -> list[dict]:
    if value in (None, ""):
        return []
    if not isinstance(value, list) or not all(isinstance(r, dict) for r in value):
        raise ValidationError("references must be a list of objects")
    if len(value) > MAX_REFERENCES:
        raise ValidationError(f"At most {MAX_REFERENCES} references are accepted")
    keys = ("name", "phone", "email", "relationship")
    return [{k: r.get(k) for k in keys} for r in value if r.get("name")]


def _normalized_email(value) -> str:
    try:
        return validate_email(str(value), check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}")


def _build_application(company_id, data) -> WorkerApplication:
    missing = [f for f in REQUIRED_FIELDS if not str(data.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required field: {missing[0]}", details={"missing": missing})

    app_row = WorkerApplication(
        company_id=company_id,
        full_name=str(data["full_name"]).strip(),
        email=_normalized_email(data["email"]),
        phone=str(data["phone"]).strip(),
        status="pending",
    )
    for field in _TEXT_FIELDS:
        if data.get(field):
            setattr(app_row, field, str(data[field]).strip())
    for field in _LIST_FIELDS:
        setattr(app_row, field, _string_list(data.get(field), field))
    app_row.references = _references(data.get("references"))

    if data.get("date_of_birth"):
        dob = parse_date(data["date_of_birth"])
        if dob is None:
            raise ValidationError("date_of_birth must be a date (YYYY-MM-DD)")
        app_row.date_of_birth = dob
    if data.get("desired_hourly_rate") not in (None, ""):
        try:
            rate = Decimal(str(data["desired_hourly_rate"]))
        except (InvalidOperation, ValueError):
            raise ValidationError("desired_hourly_rate must be a number")
        if rate < 0:
            raise ValidationError("desired_hourly_rate cannot be negative")
        app_row.desired_hourly_rate = rate
    if data.get("years_experience") not in (None, ""):
        try:
            years = int(data["years_experience"])
        except (TypeError, ValueError):
            raise ValidationError("years_experience must be an integer")
        if years < 0:
            raise ValidationError("years_experience cannot be negative")
        app_row.years_experience = years
    if data.get("availability") is not None:
        app_row.availability = data["availability"]

    contact = data.get("emergency_contact") or {}
    if not isinstance(contact, dict):
        raise ValidationError("emergency_contact must be an object")
    app_row.emergency_contact_name = contact.get("name")
    app_row.emergency_contact_phone = contact.get("phone")
    app_row.emergency_contact_relationship = contact.get("relationship")
    return app_row


# ═════════════════════════════════════════════════════════════════════════════
# Public submission
# ═════════════════════════════════════════════════════════════════════════════


def submit_application(company_slug, data) -> WorkerApplication:
    """Create a pending application for the company behind ``company_slug``.

    Suspended or cancelled companies look the same as unknown ones.
    """
    company = Company.query.filter_by(slug=company_slug).first()
    if company is None or not company.is_active:
        raise NotFoundError("Company", company_slug)

    application = _build_application(company.id, data)
    existing = (
        WorkerApplication.query_for_company(company.id)
        .filter(
            func.lower(WorkerApplication.email) == application.email.lower(),
            WorkerApplication.status.in_(("pending", "approved")),
        )
        .first()
    )
    if existing is not None:
        state = "pending review" if existing.status == "pending" else "already approved"
        raise ConflictError(
            "WorkerApplication", "email", application.email,
            message=f"An application with this email is {state}",
        )

    db.session.add(application)
    db.session.commit()
    logger.info("Worker application %s received for company %s", application.id, company.id)
    return application


# ═════════════════════════════════════════════════════════════════════════════
# Review
# ═════════════════════════════════════════════════════════════════════════════


def list_applications(company_id, status=None):
    q = WorkerApplication.query_for_company(company_id)
    if status:
        if status not in APPLICATION_STATUSES:
            raise ValidationError(f"Invalid status: {status}", details={"allowed": list(APPLICATION_STATUSES)})
        q = q.filter(WorkerApplication.status == status)
    return q.order_by(WorkerApplication.applied_at.desc(), WorkerApplication.id.desc())


def get_application(company_id, application_id) -> WorkerApplication:
    return get_scoped(WorkerApplication, application_id, company_id=company_id)


def _hire(application: WorkerApplication, employment_type) -> Worker:
    if employment_type not in EMPLOYMENT_TYPES:
        raise ValidationError(f"Invalid employment_type: {employment_type}",
                              details={"allowed": list(EMPLOYMENT_TYPES)})
    worker = Worker(
        company_id=application.company_id,
        full_name=application.full_name,
        email=application.email,
        phone=application.phone,
        employment_type=employment_type,
        employment_status="active",
        hourly_rate=application.desired_hourly_rate or 0,
        skills=list(application.skills or []),
        hire_date=utcnow().date(),
    )
    db.session.add(worker)
    db.session.flush()
    return worker


def review_application(company_id, application_id, reviewer_id, data) -> WorkerApplication:
    """Change status and/or reviewer notes.

    Approval creates the Worker in the same transaction; an optional
    ``employment_type`` (default ``full_time``) is applied to it.
    """
    application = get_application(company_id, application_id)
    new_status = data.get("status")

    if "reviewer_notes" in data:
        application.reviewer_notes = data["reviewer_notes"]
    if "rejection_reason" in data:
        application.rejection_reason = data["rejection_reason"]

    if new_status and new_status != application.status:
        if new_status not in APPLICATION_STATUSES:
            raise ValidationError(f"Invalid status: {new_status}",
                                  details={"allowed": list(APPLICATION_STATUSES)})
        if new_status not in APPLICATION_TRANSITIONS[application.status]:
            raise ConflictError(
                "WorkerApplication", "status", new_status,
                message=f"Cannot change application status from {application.status} to {new_status}",
            )
        if new_status == "approved":
            worker = _hire(application, data.get("employment_type") or "full_time")
            application.worker_id = worker.id
        application.status = new_status
        application.reviewed_at = utcnow()
        application.reviewed_by = reviewer_id

    db.session.commit()
    logger.info("Application %s is %s (reviewer %s)", application.id, application.status, reviewer_id)
    return application


def delete_application(company_id, application_id) -> None:
    application = get_application(company_id, application_id)
    db.session.delete(application)
    db.session.commit()
