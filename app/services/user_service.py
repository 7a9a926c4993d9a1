"""
User Service — signup, login, user CRUD, invite flow, role management.
"""

import logging
import re
from datetime import datetime, timedelta, timezone

from email_validator import EmailNotValidError, validate_email

from app.models import db
from app.models.auth import ROLES, Company, Session, User
from app.services import permission_service
from app.services.jwt_service import generate_invite_token
from app.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

INVITE_EXPIRY_DAYS = 7
MIN_PASSWORD_LENGTH = 8
# Roles a company owner/admin may hand out; site_admin is reserved.
COMPANY_ROLES = tuple(r for r in ROLES if r != "site_admin")


class UserServiceError(Exception):
    """Custom exception for user service errors."""
    def __init__(self, message, status_code=400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _normalize_email(email: str) -> str:
    try:
        return validate_email(email or "", check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise UserServiceError(f"Invalid email: {e}")


def _check_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise UserServiceError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def _email_taken(email: str) -> bool:
    return User.query.filter(db.func.lower(User.email) == email.lower()).first() is not None


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug[:80] or "company"


def unique_slug(name: str) -> str:
    """Slug derived from ``name``; ``-2``, ``-3``… appended on collision."""
    base = slugify(name)
    slug = base
    n = 2
    while Company.query.filter_by(slug=slug).first() is not None:
        slug = f"{base}-{n}"
        n += 1
    return slug


# ═══════════════════════════════════════════════════════════════
# Signup: new company + owner
# ═══════════════════════════════════════════════════════════════
def signup(company_name: str, email: str, password: str, full_name: str = None) -> User:
    """Create a company and its first owner in one transaction."""
    if not (company_name or "").strip():
        raise UserServiceError("company_name is required")
    email = _normalize_email(email)
    _check_password(password)
    if _email_taken(email):
        raise UserServiceError("An account with this email already exists", 409)

    company = Company(name=company_name.strip(), slug=unique_slug(company_name), email=email)
    db.session.add(company)
    db.session.flush()

    user = User(
        company_id=company.id,
        email=email,
        password_hash=hash_password(password),
        full_name=full_name,
        role="owner",
        status="active",
    )
    db.session.add(user)
    db.session.commit()
    logger.info("Signup: company=%s owner=%s", company.id, user.id)
    return user


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def _check_user_limit(company: Company) -> None:
    current_count = User.query.filter(
        User.company_id == company.id, User.status != "inactive",
    ).count()
    if company.max_users is not None and current_count >= company.max_users:
        raise UserServiceError(
            f"User limit reached ({company.max_users}). Upgrade your plan.", 403
        )


def _check_grantable(role: str, actor: User | None) -> None:
    if role not in ROLES:
        raise UserServiceError(f"Invalid role: {role}")
    if role == "site_admin" and not (actor and actor.is_site_admin):
        raise UserServiceError("Only a site admin can grant site_admin", 403)


def create_user(
    company_id: int,
    email: str,
    password: str = None,
    full_name: str = None,
    role: str = "worker",
    phone: str = None,
    status: str = "active",
    actor: User = None,
) -> User:
    """Create a new user in a company."""
    email = _normalize_email(email)
    _check_grantable(role, actor)
    if password is not None:
        _check_password(password)

    company = db.session.get(Company, company_id)
    if not company:
        raise UserServiceError("Company not found", 404)
    if not company.is_active:
        raise UserServiceError("Company is inactive", 403)
    _check_user_limit(company)

    if _email_taken(email):
        raise UserServiceError(f"User with email {email} already exists", 409)

    user = User(
        company_id=company_id,
        email=email,
        password_hash=hash_password(password) if password else None,
        full_name=full_name,
        phone=phone,
        role=role,
        status=status,
    )
    db.session.add(user)
    db.session.commit()
    return user


def create_site_admin(email: str, password: str, full_name: str = None) -> User:
    email = _normalize_email(email)
    _check_password(password)
    if _email_taken(email):
        raise UserServiceError(f"User with email {email} already exists", 409)
    user = User(
        company_id=None,
        email=email,
        password_hash=hash_password(password),
        full_name=full_name,
        role="site_admin",
        status="active",
    )
    db.session.add(user)
    db.session.commit()
    return user


def get_user_by_email(email: str) -> User | None:
    return User.query.filter(db.func.lower(User.email) == (email or "").strip().lower()).first()


def get_company_user(company_id: int, user_id: int) -> User:
    user = User.query.filter_by(id=user_id, company_id=company_id).first()
    if not user:
        raise UserServiceError("User not found", 404)
    return user


def update_user(company_id: int, user_id: int, **kwargs) -> User:
    user = get_company_user(company_id, user_id)
    for key in ("full_name", "phone"):
        if key in kwargs:
            setattr(user, key, kwargs[key])
    db.session.commit()
    return user


def change_role(company_id: int, user_id: int, new_role: str, actor: User) -> User:
    """Change a user's role. Owners can only be demoted by owners or site admins."""
    user = get_company_user(company_id, user_id)
    _check_grantable(new_role, actor)
    if new_role == "owner" and actor.role not in ("owner", "site_admin"):
        raise UserServiceError("Only an owner can grant the owner role", 403)
    if user.role == "owner" and actor.role not in ("owner", "site_admin"):
        raise UserServiceError("Admins cannot change an owner's role", 403)
    user.role = new_role
    db.session.commit()
    permission_service.invalidate_cache(user.id)
    return user


def deactivate_user(company_id: int, user_id: int, actor: User) -> User:
    """Deactivate a user (soft disable) and revoke all their sessions."""
    user = get_company_user(company_id, user_id)
    if user.id == actor.id:
        raise UserServiceError("You cannot deactivate yourself")
    if user.role == "owner" and actor.role not in ("owner", "site_admin"):
        raise UserServiceError("Admins cannot deactivate an owner", 403)
    user.status = "inactive"
    Session.query.filter_by(user_id=user.id, is_active=True).update({"is_active": False})
    db.session.commit()
    permission_service.invalidate_cache(user.id)
    return user


def list_users(company_id: int, status: str = None, role: str = None) -> list[User]:
    q = User.query.filter_by(company_id=company_id)
    if status:
        q = q.filter_by(status=status)
    if role:
        q = q.filter_by(role=role)
    return q.order_by(User.created_at.asc(), User.id.asc()).all()


def change_password(user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password or "", user.password_hash):
        raise UserServiceError("Current password is incorrect", 401)
    _check_password(new_password)
    user.password_hash = hash_password(new_password)
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Invite Flow
# ═══════════════════════════════════════════════════════════════
def invite_user(company_id: int, email: str, role: str = "worker", full_name: str = None,
                actor: User = None) -> User:
    """Create (or refresh) an invited user and return it with its invite token."""
    email = _normalize_email(email)
    _check_grantable(role, actor)

    existing = get_user_by_email(email)
    if existing:
        if existing.company_id != company_id or existing.status != "invited":
            raise UserServiceError("User already exists", 409)
        existing.invite_token = generate_invite_token()
        existing.invite_expires_at = datetime.now(timezone.utc) + timedelta(days=INVITE_EXPIRY_DAYS)
        db.session.commit()
        return existing

    company = db.session.get(Company, company_id)
    if not company:
        raise UserServiceError("Company not found", 404)
    _check_user_limit(company)

    user = User(
        company_id=company_id,
        email=email,
        full_name=full_name,
        role=role,
        status="invited",
        invite_token=generate_invite_token(),
        invite_expires_at=datetime.now(timezone.utc) + timedelta(days=INVITE_EXPIRY_DAYS),
    )
    db.session.add(user)
    db.session.commit()
    return user


def accept_invite(invite_token: str, password: str, full_name: str = None) -> User:
    """Accept an invitation — set password, activate user."""
    user = User.query.filter_by(invite_token=invite_token, status="invited").first()
    if not user:
        raise UserServiceError("Invalid or expired invite token", 404)

    if user.invite_expires_at and datetime.now(timezone.utc) > user.invite_expires_at.replace(tzinfo=timezone.utc):
        raise UserServiceError("Invite token has expired", 400)

    _check_password(password)
    user.password_hash = hash_password(password)
    user.status = "active"
    user.invite_token = None
    user.invite_expires_at = None
    if full_name:
        user.full_name = full_name
    db.session.commit()
    return user


# ═══════════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════════
def authenticate_user(email: str, password: str) -> User:
    """Authenticate with email + password. Returns User on success."""
    user = get_user_by_email(email)
    if not user or not user.password_hash or not verify_password(password or "", user.password_hash):
        raise UserServiceError("Invalid email or password", 401)

    if user.status != "active":
        raise UserServiceError(f"Account is {user.status}", 403)

    if user.company is not None and not user.company.is_active:
        raise UserServiceError(f"Company is {user.company.subscription_status}", 403)

    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    return user
