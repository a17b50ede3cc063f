from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from portal.core import config
from portal.core.database import get_db
from portal.services.deadlines import run_deadline_sweep
from portal.services.email_service import EmailService

router = APIRouter(prefix="/api/v1/cron", tags=["cron"])
logger = logging.getLogger(__name__)


def require_cron_secret(request: Request) -> None:
    secret = config.CRON_SECRET
    if not secret:
        return
    header = request.headers.get("authorization") or ""
    if not hmac.compare_digest(header.encode("latin-1", "ignore"), f"Bearer {secret}".encode()):
        logger.warning("Cron call rejected path=%s", request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("/task-deadlines", dependencies=[Depends(require_cron_secret)])
def task_deadlines(db: Session = Depends(get_db)):
    return run_deadline_sweep(db, EmailService.from_db(db))
