from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Session

from portal.models.comment import Comment
from portal.models.user import User
from portal.services.authorization_service import AuthorizationService
from portal.services.cascade import (
    MODERATED_COMMENT_REASON,
    OWN_COMMENT_REASON,
    CascadeResult,
    delete_entity,
)

logger = logging.getLogger(__name__)

OWNER_FIELDS = {"task": "task_id", "ticket": "ticket_id"}


def list_comments(db: Session, owner: str, owner_id: int) -> List[Dict[str, Any]]:
    column = getattr(Comment, OWNER_FIELDS[owner])
    rows = db.query(Comment).filter(column == owner_id).order_by(Comment.created_at.asc(), Comment.id.asc()).all()
    author_ids = {row.author_id for row in rows}
    authors = {}
    if author_ids:
        authors = {user.id: user for user in db.query(User).filter(User.id.in_(author_ids)).all()}
    return [serialize_comment(row, authors.get(row.author_id)) for row in rows]


def add_comment(db: Session, *, owner: str, owner_id: int, author: Any, content: str) -> Comment:
    comment = Comment(
        author_id=author.id,
        content=content.strip(),
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow(),
    )
    setattr(comment, OWNER_FIELDS[owner], owner_id)
    db.add(comment)
    return comment


def remove_comment(
    db: Session,
    *,
    owner: str,
    owner_id: int,
    comment_id: int,
    user: Any,
    request: Optional[Request],
    ip_address: str,
) -> CascadeResult:
    """Ownership and permission checks run before anything is written."""
    comment = db.query(Comment).filter(Comment.id == comment_id).first()
    if comment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comment not found")

    if getattr(comment, OWNER_FIELDS[owner]) != owner_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Comment does not belong to this {owner}",
        )

    grant = AuthorizationService.ensure_comment_delete(request=request, user=user, author_id=comment.author_id)
    reason = OWN_COMMENT_REASON if grant == "author" else MODERATED_COMMENT_REASON

    return delete_entity(
        db,
        kind="comment",
        entity_id=comment_id,
        actor=user,
        ip_address=ip_address,
        reason=reason,
    )


def serialize_comment(comment: Comment, author: Optional[User] = None) -> Dict[str, Any]:
    return {
        "id": comment.id,
        "task_id": comment.task_id,
        "ticket_id": comment.ticket_id,
        "author_id": comment.author_id,
        "author_name": author.name if author else "Unbekannt",
        "content": comment.content,
        "created_at": comment.created_at,
        "updated_at": comment.updated_at,
    }
