"""Document storage models — uploaded files, categories and the access trail."""

from datetime import datetime, timezone

from app.models import db
from app.models.base import CompanyModel


ACCESS_ACTIONS = ("view", "download", "share", "delete")

DEFAULT_CATEGORIES = (
    {"name": "Photos", "icon": "camera", "color": "#3B82F6", "description": "Site and progress photos"},
    {"name": "Contracts", "icon": "file-signature", "color": "#10B981", "description": "Signed contracts and agreements"},
    {"name": "Quotes", "icon": "file-invoice", "color": "#F59E0B", "description": "Quotes and estimates"},
    {"name": "Permits", "icon": "stamp", "color": "#8B5CF6", "description": "Permits and certificates"},
    {"name": "Invoices", "icon": "receipt", "color": "#EF4444", "description": "Invoices and payment records"},
    {"name": "Other", "icon": "folder", "color": "#6B7280", "description": "Everything else"},
)


class DocumentCategory(db.Model):
    """Category; ``company_id`` NULL marks a system default shared by all companies."""

    __tablename__ = "document_categories"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    icon = db.Column(db.String(50))
    color = db.Column(db.String(7))
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_document_category_name"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "icon": self.icon,
            "color": self.color,
            "description": self.description,
            "is_default": self.company_id is None,
        }


class Document(CompanyModel):
    __tablename__ = "documents"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, db.ForeignKey("jobs.id", ondelete="SET NULL"), index=True)
    task_id = db.Column(db.Integer, db.ForeignKey("job_tasks.id", ondelete="SET NULL"))
    category_id = db.Column(db.Integer, db.ForeignKey("document_categories.id", ondelete="SET NULL"))
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    original_filename = db.Column(db.String(255), nullable=False)
    file_extension = db.Column(db.String(20))
    file_size = db.Column(db.Integer, nullable=False, default=0)
    mime_type = db.Column(db.String(100))
    storage_path = db.Column(db.String(500), nullable=False, unique=True)
    storage_bucket = db.Column(db.String(30), nullable=False, default="documents")
    tags = db.Column(db.JSON, default=list)
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    location_name = db.Column(db.String(200))
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    category = db.relationship("DocumentCategory")

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "job_id": self.job_id,
            "task_id": self.task_id,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "title": self.title,
            "description": self.description,
            "original_filename": self.original_filename,
            "file_extension": self.file_extension,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "storage_bucket": self.storage_bucket,
            "tags": self.tags or [],
            "latitude": self.latitude,
            "longitude": self.longitude,
            "location_name": self.location_name,
            "uploaded_by": self.uploaded_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class DocumentAccessLog(db.Model):
    __tablename__ = "document_access_log"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    action = db.Column(db.String(20), nullable=False)
    ip_address = db.Column(db.String(45))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint(
            "action IN ('view','download','share','delete')", name="ck_document_access_action",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "document_id": self.document_id,
            "user_id": self.user_id,
            "action": self.action,
            "ip_address": self.ip_address,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
