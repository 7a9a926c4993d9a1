"""
Document service — file uploads on the local upload folder, metadata,
soft delete, signed share links and the access trail.

Files live under ``UPLOAD_FOLDER`` at
``<company_id>/<job_id|general>/<timestamp>_<secure filename>``; the
database row stores that relative path.
"""

import logging
import os
from datetime import timedelta

from flask import current_app
from sqlalchemy import or_
from werkzeug.utils import secure_filename

from app.core.exceptions import ConflictError, GoneError, NotFoundError, ValidationError
from app.models import db
from app.models.document import DEFAULT_CATEGORIES, Document, DocumentAccessLog, DocumentCategory
from app.models.job import Job
from app.models.stage import JobTask
from app.services.helpers.scoped_queries import get_scoped
from app.utils.crypto import ShareTokenExpired, ShareTokenInvalid, issue_share_token, read_share_token
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Storage helpers
# ═════════════════════════════════════════════════════════════════════════════


def storage_root() -> str:
    return current_app.config["UPLOAD_FOLDER"]


def absolute_path(document: Document) -> str:
    return os.path.join(storage_root(), *document.storage_path.split("/"))


def file_extension(filename: str) -> str:
    return filename.rsplit(".", 1)[1].lower() if "." in filename else ""


def bucket_for(mime_type: str | None) -> str:
    return "photos" if (mime_type or "").startswith("image/") else "documents"


def build_storage_path(company_id, job_id, filename, now) -> str:
    safe = secure_filename(filename) or "upload"
    folder = str(job_id) if job_id else "general"
    return f"{company_id}/{folder}/{now.strftime('%Y%m%d%H%M%S%f')}_{safe}"


def _remove_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        logger.warning("File already missing: %s", path)


# ═════════════════════════════════════════════════════════════════════════════
# Access log
# ═════════════════════════════════════════════════════════════════════════════


def log_access(document: Document, action: str, user_id=None, ip_address=None) -> DocumentAccessLog:
    entry = DocumentAccessLog(
        document_id=document.id, user_id=user_id, action=action, ip_address=ip_address,
    )
    db.session.add(entry)
    return entry


def get_access_log(company_id, document_id) -> list[DocumentAccessLog]:
    document = get_scoped(Document, document_id, company_id=company_id)
    return (
        DocumentAccessLog.query.filter_by(document_id=document.id)
        .order_by(DocumentAccessLog.created_at.desc(), DocumentAccessLog.id.desc())
        .all()
    )


# ═════════════════════════════════════════════════════════════════════════════
# Categories
# ═════════════════════════════════════════════════════════════════════════════


def ensure_default_categories() -> None:
    existing = {
        c.name for c in DocumentCategory.query.filter(DocumentCategory.company_id.is_(None)).all()
    }
    missing = [c for c in DEFAULT_CATEGORIES if c["name"] not in existing]
    for definition in missing:
        db.session.add(DocumentCategory(company_id=None, **definition))
    if missing:
        db.session.commit()
        logger.info("Seeded %d default document categories", len(missing))


def list_categories(company_id) -> list[DocumentCategory]:
    """System defaults first, then the company's own categories."""
    ensure_default_categories()
    return (
        DocumentCategory.query.filter(
            or_(DocumentCategory.company_id.is_(None), DocumentCategory.company_id == company_id)
        )
        .order_by(DocumentCategory.company_id.isnot(None), DocumentCategory.name.asc())
        .all()
    )


def create_category(company_id, data) -> DocumentCategory:
    name = str(data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    clash = DocumentCategory.query.filter(
        DocumentCategory.name == name,
        or_(DocumentCategory.company_id.is_(None), DocumentCategory.company_id == company_id),
    ).first()
    if clash:
        raise ConflictError("DocumentCategory", "name", name)
    category = DocumentCategory(
        company_id=company_id,
        name=name,
        icon=data.get("icon"),
        color=data.get("color"),
        description=data.get("description"),
    )
    db.session.add(category)
    db.session.commit()
    return category


def _resolve_category(company_id, category_id):
    if category_id in (None, ""):
        return None
    category = db.session.get(DocumentCategory, category_id) if str(category_id).isdigit() else None
    if category is None or category.company_id not in (None, company_id):
        raise NotFoundError("DocumentCategory", category_id, company_id)
    return category.id


def _resolve_links(company_id, job_id, task_id):
    """Validate optional job/task links; a task implies its job."""
    job = get_scoped(Job, job_id, company_id=company_id) if job_id not in (None, "") else None
    task = None
    if task_id not in (None, ""):
        task = (
            JobTask.query.join(Job, Job.id == JobTask.job_id)
            .filter(JobTask.id == task_id, Job.company_id == company_id)
            .first()
        ) if str(task_id).isdigit() else None
        if task is None:
            raise NotFoundError("JobTask", task_id, company_id)
        if job is not None and task.job_id != job.id:
            raise ValidationError("Task does not belong to the given job")
    return (job.id if job else (task.job_id if task else None)), (task.id if task else None)


# ═════════════════════════════════════════════════════════════════════════════
# Documents
# ═════════════════════════════════════════════════════════════════════════════


def _tags(value):
    if value in (None, ""):
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        raise ValidationError("tags must be a list")
    return [str(t).strip() for t in value if str(t).strip()]


def _float_or_none(value, field):
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")


def upload_document(company_id, file_storage, data, user_id, now=None) -> Document:
    """Store ``file_storage`` (a werkzeug FileStorage) and record it.

    The file is removed again when the database insert fails.
    """
    now = now or utcnow()
    filename = file_storage.filename or ""
    ext = file_extension(filename)
    allowed = current_app.config.get("ALLOWED_UPLOAD_EXTENSIONS", frozenset())
    if ext not in allowed:
        raise ValidationError(
            f"File type .{ext or '?'} is not allowed", details={"allowed": sorted(allowed)},
        )

    job_id, task_id = _resolve_links(company_id, data.get("job_id"), data.get("task_id"))
    category_id = _resolve_category(company_id, data.get("category_id"))
    tags = _tags(data.get("tags"))
    latitude = _float_or_none(data.get("latitude"), "latitude")
    longitude = _float_or_none(data.get("longitude"), "longitude")

    relative = build_storage_path(company_id, job_id, filename, now)
    target = os.path.join(storage_root(), *relative.split("/"))
    os.makedirs(os.path.dirname(target), exist_ok=True)
    file_storage.save(target)
    size = os.path.getsize(target)

    mime_type = file_storage.mimetype or "application/octet-stream"
    document = Document(
        company_id=company_id,
        job_id=job_id,
        task_id=task_id,
        category_id=category_id,
        title=(data.get("title") or filename).strip(),
        description=data.get("description"),
        original_filename=filename,
        file_extension=ext,
        file_size=size,
        mime_type=mime_type,
        storage_path=relative,
        storage_bucket=bucket_for(mime_type),
        tags=tags,
        latitude=latitude,
        longitude=longitude,
        location_name=data.get("location_name"),
        uploaded_by=user_id,
    )
    try:
        db.session.add(document)
        db.session.commit()
    except Exception:
        db.session.rollback()
        _remove_file(target)
        logger.exception("Document insert failed; removed %s", relative)
        raise
    logger.info("Document %s uploaded (%s, %d bytes)", document.id, relative, size)
    return document


def list_documents(company_id, job_id=None, category_id=None, task_id=None, search=None):
    q = Document.query_for_company(company_id).filter(Document.is_deleted.is_(False))
    if job_id:
        q = q.filter(Document.job_id == job_id)
    if task_id:
        q = q.filter(Document.task_id == task_id)
    if category_id:
        q = q.filter(Document.category_id == category_id)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(
            Document.title.ilike(like),
            Document.description.ilike(like),
            Document.original_filename.ilike(like),
        ))
    return q.order_by(Document.created_at.desc(), Document.id.desc())


def get_document(company_id, document_id) -> Document:
    document = get_scoped(Document, document_id, company_id=company_id)
    if document.is_deleted:
        raise NotFoundError("Document", document_id, company_id)
    return document


def update_document(company_id, document_id, data) -> Document:
    document = get_document(company_id, document_id)
    if "title" in data:
        title = str(data.get("title") or "").strip()
        if not title:
            raise ValidationError("title cannot be empty")
        document.title = title
    if "description" in data:
        document.description = data["description"]
    if "tags" in data:
        document.tags = _tags(data["tags"])
    if "category_id" in data:
        document.category_id = _resolve_category(company_id, data["category_id"])
    if "job_id" in data or "task_id" in data:
        document.job_id, document.task_id = _resolve_links(
            company_id, data.get("job_id", document.job_id), data.get("task_id", document.task_id),
        )
    if "latitude" in data:
        document.latitude = _float_or_none(data["latitude"], "latitude")
    if "longitude" in data:
        document.longitude = _float_or_none(data["longitude"], "longitude")
    if "location_name" in data:
        document.location_name = data["location_name"]
    db.session.commit()
    return document


def _existing_file(document: Document) -> str:
    path = absolute_path(document)
    if not os.path.isfile(path):
        logger.error("Stored file missing for document %s: %s", document.id, document.storage_path)
        raise NotFoundError("File", document.id)
    return path


def prepare_download(company_id, document_id, user_id=None, ip_address=None, *,
                     action="download") -> tuple[Document, str]:
    """Return the document and its absolute path, logging the access.

    ``action`` is "download" for attachments and "view" for inline previews.
    """
    document = get_document(company_id, document_id)
    path = _existing_file(document)
    log_access(document, action, user_id, ip_address)
    db.session.commit()
    return document, path


def delete_document(company_id, document_id, user_id=None, ip_address=None) -> None:
    """Soft-delete: the row stays for the access trail, the file goes."""
    document = get_document(company_id, document_id)
    document.is_deleted = True
    document.deleted_at = utcnow()
    log_access(document, "delete", user_id, ip_address)
    db.session.commit()
    _remove_file(absolute_path(document))
    logger.info("Document %s deleted by user %s", document.id, user_id)


# ═════════════════════════════════════════════════════════════════════════════
# Share links
# ═════════════════════════════════════════════════════════════════════════════


def share_document(company_id, document_id, user_id=None, ip_address=None) -> dict:
    document = get_document(company_id, document_id)
    token = issue_share_token({"document_id": document.id, "company_id": document.company_id})
    ttl = current_app.config.get("SHARE_LINK_TTL", 7 * 24 * 3600)
    log_access(document, "share", user_id, ip_address)
    db.session.commit()
    base = (current_app.config.get("PUBLIC_BASE_URL") or "").rstrip("/")
    return {
        "document_id": document.id,
        "token": token,
        "share_url": f"{base}/api/v1/shared-documents/{token}",
        "expires_at": (utcnow() + timedelta(seconds=ttl)).isoformat(),
    }


def resolve_shared_document(token: str, ip_address=None) -> tuple[Document, str]:
    """Open a share token and return the document plus its file path.

    Raises NotFoundError for a bad token or a deleted document and
    GoneError for an expired token.
    """
    ttl = current_app.config.get("SHARE_LINK_TTL", 7 * 24 * 3600)
    try:
        payload = read_share_token(token, ttl)
    except ShareTokenExpired:
        raise GoneError("This share link has expired")
    except ShareTokenInvalid:
        raise NotFoundError("Shared document")

    document = db.session.get(Document, payload.get("document_id"))
    if document is None or document.is_deleted or document.company_id != payload.get("company_id"):
        raise NotFoundError("Shared document")
    path = _existing_file(document)
    log_access(document, "download", None, ip_address)
    db.session.commit()
    return document, path
