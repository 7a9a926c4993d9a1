"""Project CRUD service, scoped to one company."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from sqlalchemy import or_

from app.core.exceptions import ConflictError, ValidationError
from app.models import db
from app.models.project import PRIORITIES, PROJECT_STATUSES, Project
from app.services.helpers.scoped_queries import get_scoped
from app.utils.helpers import parse_date

_TEXT_FIELDS = ("name", "description", "client_name", "client_email", "client_phone", "address")


def parse_money(value, field: str):
    """Decimal from user input; None passes through. Negative amounts are rejected."""
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    return amount


def _apply(project: Project, data: dict) -> None:
    for field in _TEXT_FIELDS:
        if field in data:
            setattr(project, field, data[field])
    if "name" in data and not str(data.get("name") or "").strip():
        raise ValidationError("name cannot be empty")
    if "status" in data:
        if data["status"] not in PROJECT_STATUSES:
            raise ValidationError(f"Invalid status: {data['status']}")
        project.status = data["status"]
    if "priority" in data:
        if data["priority"] not in PRIORITIES:
            raise ValidationError(f"Invalid priority: {data['priority']}")
        project.priority = data["priority"]
    if "start_date" in data:
        project.start_date = parse_date(data["start_date"])
    if "end_date" in data:
        project.end_date = parse_date(data["end_date"])
    if "estimated_budget" in data:
        project.estimated_budget = parse_money(data["estimated_budget"], "estimated_budget")
    if project.start_date and project.end_date and project.end_date < project.start_date:
        raise ValidationError("end_date must be on or after start_date")


def list_projects(company_id: int, status: str | None = None, search: str | None = None):
    query = Project.query_for_company(company_id)
    if status:
        query = query.filter(Project.status == status)
    if search:
        like = f"%{search}%"
        query = query.filter(or_(
            Project.name.ilike(like),
            Project.client_name.ilike(like),
            Project.address.ilike(like),
        ))
    return query.order_by(Project.created_at.desc(), Project.id.desc())


def get_project(company_id: int, project_id: int) -> Project:
    return get_scoped(Project, project_id, company_id=company_id)


def create_project(company_id: int, data: dict, user_id: int | None = None) -> Project:
    name = str(data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    project = Project(company_id=company_id, created_by=user_id)
    _apply(project, dict(data, name=name))
    db.session.add(project)
    db.session.commit()
    return project


def update_project(company_id: int, project_id: int, data: dict) -> Project:
    project = get_project(company_id, project_id)
    _apply(project, data)
    db.session.commit()
    return project


def delete_project(company_id: int, project_id: int) -> None:
    project = get_project(company_id, project_id)
    if project.jobs.count():
        raise ConflictError(
            "Project", "jobs", message="Project still has jobs; move or delete them first",
        )
    db.session.delete(project)
    db.session.commit()
