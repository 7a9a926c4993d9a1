"""
Auth tests — password hashing, JWT service, signup/login/refresh/logout,
invite registration and password change.
"""

import jwt as pyjwt
import pytest

from app.models import db
from app.models.auth import Company, Session, User
from app.services import user_service
from app.services.jwt_service import decode_access_token, generate_token_pair
from app.services.user_service import UserServiceError
from app.utils.crypto import hash_password, verify_password
from tests.conftest import PASSWORD, login


# ═══════════════════════════════════════════════════════════════
# BLOCK 1: Crypto & JWT
# ═══════════════════════════════════════════════════════════════

class TestCrypto:
    def test_hash_and_verify(self):
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_verify_rejects_non_bcrypt_hash(self):
        assert verify_password("anything", "not-a-hash") is False


class TestJWTService:
    def test_access_token_round_trip(self, owner):
        tokens = generate_token_pair(owner)
        payload = decode_access_token(tokens["access_token"])
        assert payload["sub"] == owner.id
        assert payload["company_id"] == owner.company_id
        assert payload["role"] == "owner"
        assert tokens["token_type"] == "Bearer"

    def test_refresh_token_is_not_an_access_token(self, owner):
        tokens = generate_token_pair(owner)
        with pytest.raises(pyjwt.InvalidTokenError):
            decode_access_token(tokens["refresh_token"])


# ═══════════════════════════════════════════════════════════════
# BLOCK 2: User service
# ═══════════════════════════════════════════════════════════════

class TestUserService:
    def test_signup_creates_company_and_owner(self, owner):
        assert owner.role == "owner"
        assert owner.status == "active"
        company = db.session.get(Company, owner.company_id)
        assert company.name == "Acme Build"
        assert company.slug == "acme-build"
        assert company.subscription_status == "active"

    def test_signup_slugs_are_unique(self, owner):
        second = user_service.signup("Acme Build", "boss@acmebuild.net", PASSWORD)
        assert second.company.slug != owner.company.slug
        assert second.company.slug.startswith("acme-build")

    def test_signup_duplicate_email(self, owner):
        with pytest.raises(UserServiceError) as exc:
            user_service.signup("Other Co", "OWNER@acmebuild.com", PASSWORD)
        assert exc.value.status_code == 409

    def test_short_password_rejected(self):
        with pytest.raises(UserServiceError):
            user_service.signup("Tiny Co", "a@tinyco.com", "short")

    def test_authenticate_wrong_password(self, owner):
        with pytest.raises(UserServiceError) as exc:
            user_service.authenticate_user(owner.email, "nope-nope-nope")
        assert exc.value.status_code == 401

    def test_authenticate_inactive_company(self, owner):
        owner.company.subscription_status = "suspended"
        db.session.commit()
        with pytest.raises(UserServiceError) as exc:
            user_service.authenticate_user(owner.email, PASSWORD)
        assert exc.value.status_code == 403

    def test_user_limit(self, company, make_user):
        company.max_users = 2
        db.session.commit()
        make_user("worker")
        with pytest.raises(UserServiceError) as exc:
            make_user("foreman")
        assert exc.value.status_code == 403

    def test_only_site_admin_grants_site_admin(self, company, owner):
        with pytest.raises(UserServiceError) as exc:
            user_service.create_user(
                company.id, "sneaky@acmebuild.com", PASSWORD, role="site_admin", actor=owner,
            )
        assert exc.value.status_code == 403


# ═══════════════════════════════════════════════════════════════
# BLOCK 3: Auth API
# ═══════════════════════════════════════════════════════════════

class TestAuthAPI:
    def test_signup_endpoint(self, client):
        res = client.post("/api/v1/auth/signup", json={
            "company_name": "Brick & Beam",
            "email": "founder@brickbeam.com",
            "password": PASSWORD,
            "full_name": "Fran Founder",
        })
        assert res.status_code == 201
        data = res.get_json()
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["user"]["role"] == "owner"
        assert data["company"]["name"] == "Brick & Beam"

    def test_signup_missing_fields(self, client):
        res = client.post("/api/v1/auth/signup", json={"email": "x@brickbeam.com"})
        assert res.status_code == 400
        assert "company_name" in res.get_json()["error"]

    def test_login_success(self, client, owner):
        res = client.post("/api/v1/auth/login", json={"email": owner.email, "password": PASSWORD})
        assert res.status_code == 200
        data = res.get_json()
        assert data["user"]["id"] == owner.id
        assert data["company"]["id"] == owner.company_id
        assert Session.query.filter_by(user_id=owner.id, is_active=True).count() == 1

    def test_login_bad_password(self, client, owner):
        res = client.post("/api/v1/auth/login", json={"email": owner.email, "password": "wrong-password"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid email or password"

    def test_login_missing_fields(self, client):
        res = client.post("/api/v1/auth/login", json={"email": ""})
        assert res.status_code == 400

    def test_me(self, client, owner_headers, owner):
        res = client.get("/api/v1/auth/me", headers=owner_headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["user"]["email"] == owner.email
        assert "company.manage" in data["permissions"]
        assert "stages.override" in data["permissions"]

    def test_me_requires_token(self, client):
        res = client.get("/api/v1/auth/me")
        assert res.status_code == 401

    def test_me_with_garbage_token(self, client):
        res = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert res.status_code == 401

    def test_refresh_rotates_tokens(self, client, owner):
        res = client.post("/api/v1/auth/login", json={"email": owner.email, "password": PASSWORD})
        refresh_token = res.get_json()["refresh_token"]

        res = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
        assert res.status_code == 200
        new_refresh = res.get_json()["refresh_token"]
        assert new_refresh != refresh_token

        # The old refresh token no longer matches the session
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
        assert res.status_code == 401

    def test_refresh_rejects_access_token(self, client, owner):
        res = client.post("/api/v1/auth/login", json={"email": owner.email, "password": PASSWORD})
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": res.get_json()["access_token"]})
        assert res.status_code == 401

    def test_logout_revokes_session(self, client, owner):
        res = client.post("/api/v1/auth/login", json={"email": owner.email, "password": PASSWORD})
        refresh_token = res.get_json()["refresh_token"]

        res = client.post("/api/v1/auth/logout", json={"refresh_token": refresh_token})
        assert res.status_code == 200
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
        assert res.status_code == 401

    def test_logout_without_anything(self, client):
        res = client.post("/api/v1/auth/logout", json={})
        assert res.status_code == 401

    def test_change_password(self, client, owner_headers, owner):
        res = client.put("/api/v1/auth/password", json={
            "current_password": PASSWORD, "new_password": "An0therSecret",
        }, headers=owner_headers)
        assert res.status_code == 200
        assert login(client, owner.email, "An0therSecret")

    def test_change_password_wrong_current(self, client, owner_headers):
        res = client.put("/api/v1/auth/password", json={
            "current_password": "not-my-password", "new_password": "An0therSecret",
        }, headers=owner_headers)
        assert res.status_code in (400, 401)

    def test_invite_then_register(self, client, owner_headers):
        res = client.post("/api/v1/company/users/invite", json={
            "email": "newbie@acmebuild.com", "role": "foreman",
        }, headers=owner_headers)
        assert res.status_code == 201
        token = res.get_json()["invite_token"]
        assert res.get_json()["status"] == "invited"

        res = client.post("/api/v1/auth/register", json={
            "invite_token": token, "password": PASSWORD, "full_name": "Nina Newbie",
        })
        assert res.status_code == 201
        data = res.get_json()
        assert data["user"]["status"] == "active"
        assert data["user"]["role"] == "foreman"

        # Token is single use
        res = client.post("/api/v1/auth/register", json={"invite_token": token, "password": PASSWORD})
        assert res.status_code == 404

    def test_register_short_password(self, client):
        res = client.post("/api/v1/auth/register", json={"invite_token": "abc", "password": "short"})
        assert res.status_code == 400

    def test_deactivated_user_token_rejected(self, client, owner_headers, make_user):
        user = make_user("foreman")
        headers = login(client, user.email)
        res = client.post(f"/api/v1/company/users/{user.id}/deactivate", headers=owner_headers)
        assert res.status_code == 200
        assert db.session.get(User, user.id).status == "inactive"

        res = client.get("/api/v1/auth/me", headers=headers)
        assert res.status_code == 403
