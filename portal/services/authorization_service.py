from __future__ import annotations

import logging
from typing import Any, Iterable

from fastapi import HTTPException, Request, status

logger = logging.getLogger(__name__)

MANAGER_ROLES = ("ADMIN", "MANAGER")
STAFF_ROLES = ("ADMIN", "MANAGER", "MITARBEITER")
CONSUMER_ROLE = "KUNDE"


class AuthorizationService:
    """Centralize role and customer-scope checks for portal endpoints."""

    @staticmethod
    def normalize_role(role: str | None) -> str:
        return (role or "").strip().upper()

    @classmethod
    def has_role(cls, user: Any, roles: Iterable[str]) -> bool:
        allowed = {cls.normalize_role(role) for role in roles}
        return cls.normalize_role(getattr(user, "role", None)) in allowed

    @classmethod
    def is_manager_or_admin(cls, user: Any) -> bool:
        return cls.has_role(user, MANAGER_ROLES)

    @classmethod
    def is_consumer(cls, user: Any) -> bool:
        return cls.normalize_role(getattr(user, "role", None)) == CONSUMER_ROLE

    @staticmethod
    def log_access_denied(*, reason: str, user: Any, request: Request | None, target: Any = None) -> None:
        endpoint = f"{request.method} {request.url.path}" if request is not None else "-"
        logger.warning(
            "Access denied (%s): user_id=%s user_role=%s target=%s endpoint=%s",
            reason,
            getattr(user, "id", None),
            getattr(user, "role", None),
            target,
            endpoint,
        )

    @classmethod
    def ensure_role(cls, *, request: Request | None, user: Any, roles: Iterable[str]) -> None:
        if not cls.has_role(user, roles):
            cls.log_access_denied(reason="role_denied", user=user, request=request)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    @classmethod
    def ensure_customer_access(cls, *, request: Request | None, user: Any, customer_id: int | None) -> None:
        """KUNDE users only see records of their own customer; staff see everything."""
        if not cls.is_consumer(user):
            return
        own_customer = getattr(user, "customer_id", None)
        if customer_id is None or own_customer is None or int(own_customer) != int(customer_id):
            cls.log_access_denied(reason="customer_mismatch", user=user, request=request, target=customer_id)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    @classmethod
    def ensure_comment_delete(cls, *, request: Request | None, user: Any, author_id: int | None) -> str:
        """Authors may delete their own comments, managers and admins any comment.

        Returns which of the two applied so the audit entry can say why.
        """
        if author_id is not None and getattr(user, "id", None) is not None and int(author_id) == int(user.id):
            return "author"
        if cls.is_manager_or_admin(user):
            return "moderator"
        cls.log_access_denied(reason="comment_not_owned", user=user, request=request, target=author_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
