"""
Company-scoped query helpers.

Every get-by-id on company data goes through these helpers instead of
``db.session.get(Model, pk)``. A bare ``.get()`` skips the company filter.

Usage:
    # Company-owned rows (CompanyModel subclasses)
    job = get_scoped(Job, job_id, company_id=company_id)

    # Rows owned through a parent (questions, templates, transitions)
    question = get_scoped(StageQuestion, question_id, stage_id=stage.id)

Cross-company access is indistinguishable from a missing record: both raise
NotFoundError → HTTP 404.
"""

import logging

from sqlalchemy import select

from app.core.exceptions import NotFoundError
from app.models import db

logger = logging.getLogger(__name__)


def get_scoped(model, pk: int, *, company_id: int | None = None, stage_id: int | None = None,
               job_id: int | None = None):
    """Fetch a single entity by PK with a mandatory scope filter.

    Raises:
        ValueError: no scope was given, or a scope column is missing on the model.
        NotFoundError: the row does not exist inside the given scope.
    """
    provided_scopes = {
        "company_id": company_id,
        "stage_id": stage_id,
        "job_id": job_id,
    }
    provided_scopes = {k: v for k, v in provided_scopes.items() if v is not None}

    if not provided_scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires a scope filter (company_id, stage_id or job_id)"
        )

    missing_fields = [field for field in provided_scopes if not hasattr(model, field)]
    if missing_fields:
        raise ValueError(
            f"{model.__name__} has no scope column(s) {sorted(missing_fields)}; "
            "refusing an unscoped lookup"
        )

    try:
        pk = int(pk)
    except (TypeError, ValueError):
        raise NotFoundError(resource=model.__name__, resource_id=pk)

    stmt = select(model).where(model.id == pk)
    for field, value in provided_scopes.items():
        stmt = stmt.where(getattr(model, field) == value)

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug("get_scoped: %s id=%s not found in scope %s", model.__name__, pk, provided_scopes)
        raise NotFoundError(resource=model.__name__, resource_id=pk, company_id=company_id)

    return result

