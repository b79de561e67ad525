"""
tests/test_users_routes.py -- Integration tests for /api/v1/user/* routes.

Covers:
  - GET /user/me: profile of the token's user; 401 without token; 403 if unverified
  - PATCH /user/me: updates names/avatar; rejects role/email/unknown keys (strict)
  - GET /user/get-all-users: staff roles only; pagination meta; filters; sortBy/sortOrder
"""

from __future__ import annotations

import pytest

from auth.models import Role, TokenClaims


@pytest.fixture
def auth_headers(tokens):
    """Return a function that builds Bearer headers for a stored user."""

    def build(user) -> dict[str, str]:
        token = tokens.issue_access_token(TokenClaims(user_id=user.id, email=user.email, role=user.role))
        return {"Authorization": f"Bearer {token}"}

    return build


class TestMe:
    """GET and PATCH /api/v1/user/me."""

    def test_get_profile(self, client, make_user, auth_headers):
        user = make_user()
        resp = client.get("/api/v1/user/me", headers=auth_headers(user))
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Profile retrieved successfully"
        assert body["data"]["id"] == user.id
        assert body["data"]["lastName"] == "Lovelace"
        assert "password" not in body["data"]

    def test_requires_token(self, client):
        resp = client.get("/api/v1/user/me")
        assert resp.status_code == 401

    def test_unverified_profile_is_forbidden(self, client, make_user, auth_headers):
        user = make_user(verified=False)
        resp = client.get("/api/v1/user/me", headers=auth_headers(user))
        assert resp.status_code == 403

    def test_deleted_user_is_404(self, client, store, make_user, auth_headers):
        user = make_user()
        headers = auth_headers(user)
        store.delete(user.id)
        assert client.get("/api/v1/user/me", headers=headers).status_code == 404

    def test_patch_updates_allowed_fields(self, client, make_user, auth_headers):
        user = make_user()
        resp = client.patch(
            "/api/v1/user/me",
            json={"firstName": "Augusta", "avatar": "https://cdn.example.com/a.png"},
            headers=auth_headers(user),
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["firstName"] == "Augusta"
        assert data["lastName"] == "Lovelace"
        assert data["avatar"] == "https://cdn.example.com/a.png"

    @pytest.mark.parametrize("field", ["role", "email", "isVerified", "password"])
    def test_patch_rejects_protected_fields(self, client, store, make_user, auth_headers, field):
        user = make_user()
        value = {"role": "OWNER", "email": "x@y.co", "isVerified": False, "password": "whatever1"}[field]
        resp = client.patch("/api/v1/user/me", json={field: value}, headers=auth_headers(user))

        assert resp.status_code == 422
        assert resp.json()["errorSource"][0]["path"] == field
        assert store.find_by_id(user.id).role == Role.USER

    def test_patch_validates_name_length(self, client, make_user, auth_headers):
        user = make_user()
        resp = client.patch("/api/v1/user/me", json={"lastName": "L"}, headers=auth_headers(user))
        assert resp.status_code == 422


class TestGetAllUsers:
    """GET /api/v1/user/get-all-users."""

    @pytest.fixture
    def admin(self, make_user):
        for i in range(3):
            make_user(email=f"user{i}@example.com", first_name=f"User{i}", verified=i != 0)
        return make_user(email="admin@example.com", role=Role.ADMIN, first_name="Grace", last_name="Hopper")

    @pytest.mark.parametrize("role", [Role.ADMIN, Role.SUPER_ADMIN, Role.OWNER])
    def test_staff_roles_allowed(self, client, make_user, auth_headers, role):
        staff = make_user(email=f"{role.value.lower()}@example.com", role=role)
        assert client.get("/api/v1/user/get-all-users", headers=auth_headers(staff)).status_code == 200

    def test_plain_user_forbidden(self, client, make_user, auth_headers):
        user = make_user()
        resp = client.get("/api/v1/user/get-all-users", headers=auth_headers(user))
        assert resp.status_code == 403
        assert resp.json()["code"] == "forbidden"

    def test_pagination_meta(self, client, admin, auth_headers):
        resp = client.get("/api/v1/user/get-all-users?page=2&limit=3", headers=auth_headers(admin))
        body = resp.json()
        assert body["meta"] == {"page": 2, "limit": 3, "total": 4, "totalPages": 2}
        assert len(body["data"]) == 1

    def test_search_term(self, client, admin, auth_headers):
        resp = client.get("/api/v1/user/get-all-users?searchTerm=hopper", headers=auth_headers(admin))
        assert [u["email"] for u in resp.json()["data"]] == ["admin@example.com"]

    def test_filters(self, client, admin, auth_headers):
        resp = client.get("/api/v1/user/get-all-users?role=USER&isVerified=false", headers=auth_headers(admin))
        assert [u["email"] for u in resp.json()["data"]] == ["user0@example.com"]

    def test_limit_is_bounded(self, client, admin, auth_headers):
        resp = client.get("/api/v1/user/get-all-users?limit=1000", headers=auth_headers(admin))
        assert resp.status_code == 422
        assert resp.json()["errorSource"][0]["path"] == "limit"

    def test_unknown_role_filter_is_422(self, client, admin, auth_headers):
        resp = client.get("/api/v1/user/get-all-users?role=ROOT", headers=auth_headers(admin))
        assert resp.status_code == 422

    def test_sort_order_asc(self, client, admin, auth_headers):
        resp = client.get("/api/v1/user/get-all-users?sortOrder=asc", headers=auth_headers(admin))
        emails = [u["email"] for u in resp.json()["data"]]
        assert emails[0] == "user0@example.com"
        assert emails[-1] == "admin@example.com"

    def test_sort_by_camel_case_column(self, client, admin, auth_headers):
        resp = client.get("/api/v1/user/get-all-users?sortBy=firstName&sortOrder=asc", headers=auth_headers(admin))
        names = [u["firstName"] for u in resp.json()["data"]]
        assert names == sorted(names)
        assert names[0] == "Grace"

    def test_unknown_sort_column_falls_back(self, client, admin, auth_headers):
        resp = client.get("/api/v1/user/get-all-users?sortBy=password", headers=auth_headers(admin))
        assert resp.status_code == 200
        assert resp.json()["data"][0]["email"] == "admin@example.com"

    def test_bad_sort_order_is_422(self, client, admin, auth_headers):
        resp = client.get("/api/v1/user/get-all-users?sortOrder=sideways", headers=auth_headers(admin))
        assert resp.status_code == 422
        assert resp.json()["errorSource"][0]["path"] == "sortOrder"

    def test_percent_search_matches_nothing(self, client, admin, auth_headers):
        resp = client.get("/api/v1/user/get-all-users", params={"searchTerm": "%"}, headers=auth_headers(admin))
        assert resp.json()["data"] == []
        assert resp.json()["meta"]["total"] == 0
