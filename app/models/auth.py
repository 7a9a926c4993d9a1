"""
Auth Models — companies, users, sessions.

A company is the tenant. Each user belongs to one company (site admins may
have none) and carries a single role; the role → permission matrix lives in
``app.services.permission_service``.
"""

import uuid
from datetime import datetime, timezone

from app.models import db


ROLES = ("site_admin", "owner", "admin", "foreman", "worker", "client")
SUBSCRIPTION_PLANS = ("trial", "starter", "professional", "enterprise")
SUBSCRIPTION_STATUSES = ("active", "suspended", "cancelled")
USER_STATUSES = ("active", "invited", "inactive")


# ═══════════════════════════════════════════════════════════════
# 1. COMPANIES
# ═══════════════════════════════════════════════════════════════
class Company(db.Model):
    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    address = db.Column(db.Text)
    phone = db.Column(db.String(50))
    email = db.Column(db.String(200))
    subscription_plan = db.Column(db.String(30), nullable=False, default="trial")
    subscription_status = db.Column(db.String(30), nullable=False, default="active")
    max_users = db.Column(db.Integer, default=25)
    max_jobs = db.Column(db.Integer, default=500)
    settings = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "subscription_status IN ('active','suspended','cancelled')",
            name="ck_company_subscription_status",
        ),
    )

    # Relationships
    users = db.relationship("User", back_populates="company", lazy="dynamic")

    @property
    def is_active(self):
        return self.subscription_status == "active"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "subscription_plan": self.subscription_plan,
            "subscription_status": self.subscription_status,
            "max_users": self.max_users,
            "max_jobs": self.max_jobs,
            "settings": self.settings or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Company {self.id}: {self.slug}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=True
    )  # NULL only for site admins
    email = db.Column(db.String(200), nullable=False, unique=True)
    password_hash = db.Column(db.String(256))  # NULL for invited-pending users
    full_name = db.Column(db.String(200))
    phone = db.Column(db.String(50))
    role = db.Column(db.String(20), nullable=False, default="worker")
    status = db.Column(db.String(20), nullable=False, default="active")
    invite_token = db.Column(db.String(256))
    invite_expires_at = db.Column(db.DateTime)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "role IN ('site_admin','owner','admin','foreman','worker','client')",
            name="ck_user_role",
        ),
        db.CheckConstraint(
            "company_id IS NOT NULL OR role = 'site_admin'",
            name="ck_user_company_required",
        ),
        db.Index("ix_users_company_id", "company_id"),
    )

    # Relationships
    company = db.relationship("Company", back_populates="users")
    sessions = db.relationship("Session", back_populates="user", lazy="dynamic", cascade="all, delete-orphan")

    @property
    def is_site_admin(self):
        return self.role == "site_admin"

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "email": self.email,
            "full_name": self.full_name,
            "phone": self.phone,
            "role": self.role,
            "status": self.status,
            "is_site_admin": self.is_site_admin,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"


# ═══════════════════════════════════════════════════════════════
# 3. SESSIONS (Refresh tokens & login tracking)
# ═══════════════════════════════════════════════════════════════
class Session(db.Model):
    __tablename__ = "sessions"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash = db.Column(db.String(256), nullable=False)  # SHA-256 of refresh token
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    expires_at = db.Column(db.DateTime, nullable=False)
    last_used_at = db.Column(db.DateTime)

    # Relationships
    user = db.relationship("User", back_populates="sessions")

    @property
    def is_expired(self):
        return datetime.now(timezone.utc) > self.expires_at.replace(tzinfo=timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
        }
