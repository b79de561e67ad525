"""
auth/users.py -- Profile and user-listing use cases.

Only first_name, last_name and avatar are self-service fields. Email, role,
password and verification state change through the auth flows or not at all.
"""

from __future__ import annotations

from auth.models import Page, PublicUser, Role
from auth.store import UserStore
from core.errors import ForbiddenError, NotFoundError

MAX_PAGE_SIZE = 100


class UserService:
    def __init__(self, store: UserStore) -> None:
        self.store = store

    def get_profile(self, user_id: int) -> PublicUser:
        user = self.store.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User profile not found")
        if not user.is_verified:
            raise ForbiddenError("Please verify your account first")
        return user.public()

    def update_profile(
        self,
        user_id: int,
        first_name: str | None = None,
        last_name: str | None = None,
        avatar: str | None = None,
    ) -> PublicUser:
        """Apply the provided fields; None means "leave unchanged"."""
        changes = {
            key: value
            for key, value in (("first_name", first_name), ("last_name", last_name), ("avatar", avatar))
            if value is not None
        }
        if not changes:
            user = self.store.find_by_id(user_id)
        else:
            user = self.store.update_by_id(user_id, **changes)
        if user is None:
            raise NotFoundError("User not found")
        return user.public()

    def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        role: Role | None = None,
        is_verified: bool | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Page:
        """Return a page of users, newest first unless sort_by/sort_order say otherwise.

        Out-of-range paging is clamped.
        """
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        users, total = self.store.list_users(
            page=page,
            limit=limit,
            search=search,
            role=role,
            is_verified=is_verified,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return Page(items=[u.public() for u in users], page=page, limit=limit, total=total)
