"""
api/routes/v1/users.py -- Profile and user-listing endpoints.

Routes:
  GET   /api/v1/user/me              -- own profile (any authenticated role)
  PATCH /api/v1/user/me              -- update firstName / lastName / avatar only
  GET   /api/v1/user/get-all-users   -- paginated listing (ADMIN, SUPER_ADMIN, OWNER)
                                        ?page ?limit ?searchTerm ?role ?isVerified ?sortBy ?sortOrder

Security:
  IDOR guard: /me routes take the user id from the verified token, never from
  the path or body.
  [M7] PATCH /me rejects unknown keys (extra="forbid"), so role, email and
       isVerified cannot be smuggled through a profile update.
"""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic.alias_generators import to_snake

from api.models import PageMeta, UpdateProfileRequest, UserResponse
from api.responses import send_response
from auth.dependencies import require_auth
from auth.models import STAFF_ROLES, AuthContext, Role
from auth.users import MAX_PAGE_SIZE, UserService

# Auth policy:
# - GET   /api/v1/user/me:             requires auth, any role
# - PATCH /api/v1/user/me:             requires auth, any role
# - GET   /api/v1/user/get-all-users:  requires ADMIN, SUPER_ADMIN or OWNER
router = APIRouter()


def _service(request: Request) -> UserService:
    return request.app.state.user_service


@router.get("/user/me")
def get_my_profile(request: Request, ctx: AuthContext = Depends(require_auth())) -> JSONResponse:
    """Return the caller's profile. Unverified accounts get 403."""
    user = _service(request).get_profile(ctx.user_id)
    return send_response(200, "Profile retrieved successfully", UserResponse.from_domain(user))


@router.patch("/user/me")
def update_my_profile(
    request: Request,
    body: UpdateProfileRequest,
    ctx: AuthContext = Depends(require_auth()),
) -> JSONResponse:
    user = _service(request).update_profile(
        ctx.user_id,
        first_name=body.first_name,
        last_name=body.last_name,
        avatar=str(body.avatar) if body.avatar else None,
    )
    return send_response(200, "Profile updated successfully", UserResponse.from_domain(user))


@router.get("/user/get-all-users")
def get_all_users(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    search_term: Optional[str] = Query(None, alias="searchTerm", max_length=100),
    role: Optional[Role] = Query(None),
    is_verified: Optional[bool] = Query(None, alias="isVerified"),
    sort_by: str = Query("createdAt", alias="sortBy", max_length=50),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    ctx: AuthContext = Depends(require_auth(*STAFF_ROLES)),
) -> JSONResponse:
    """List users, newest first by default.

    searchTerm matches name or email, case-insensitively. sortBy takes one of
    createdAt, updatedAt, email, firstName, lastName; anything else sorts by
    createdAt.
    """
    result = _service(request).list_users(
        page=page,
        limit=limit,
        search=search_term,
        role=role,
        is_verified=is_verified,
        sort_by=to_snake(sort_by),
        sort_order=sort_order,
    )
    meta = PageMeta(page=result.page, limit=result.limit, total=result.total, total_pages=result.total_pages)
    return send_response(
        200,
        "Users retrieved successfully",
        [UserResponse.from_domain(u) for u in result.items],
        meta=meta,
    )
