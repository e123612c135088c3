import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from chatrelay.config import SERVER_CONFIG
from chatrelay.db.dbmodels import Visitor
from chatrelay.utils.models import VisitorRequest, VisitorResponse
from chatrelay.utils.request_info import get_client_ip, get_user_agent
from chatrelay.visitors.geo import lookup_location
from chatrelay.visitors.identity import create_visitor_token, read_visitor_token

logger = logging.getLogger(__name__)

router = APIRouter()


def get_db():
    from chatrelay.db.db import SessionLocal
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _find_visitor(db: Session, visitor_id: str) -> Optional[Visitor]:
    return db.query(Visitor).filter(Visitor.visitor_id == visitor_id).first()


@router.post("/visitor", response_model=VisitorResponse, response_model_by_alias=True, response_model_exclude_none=True)
async def register_visitor(request: Request, body: Optional[VisitorRequest] = None, db: Session = Depends(get_db)):
    """Identify a returning visitor by cookie, or record a new one."""
    body = body or VisitorRequest()
    cookie_name = SERVER_CONFIG["VISITOR_COOKIE_NAME"]

    try:
        known_id = read_visitor_token(request.cookies.get(cookie_name))
        visitor = _find_visitor(db, known_id) if known_id else None

        if visitor is not None:
            visitor.last_seen_at = _utcnow()
            db.commit()
            logger.info("👤 Returning visitor: %s", visitor.visitor_id)
            return VisitorResponse(success=True, visitor_id=visitor.visitor_id)

        ip = get_client_ip(request)
        location = await run_in_threadpool(lookup_location, ip) or {}
        now = _utcnow()
        visitor = Visitor(
            visitor_id=str(uuid.uuid4()),
            ip=ip,
            user_agent=get_user_agent(request),
            country=location.get("country"),
            city=location.get("city"),
            lat=location.get("lat"),
            lon=location.get("lon"),
            created_at=now,
            last_seen_at=now,
        )
        db.add(visitor)
        db.commit()
        logger.info("👤 New visitor: %s from %s", visitor.visitor_id, ip)

    except Exception as e:
        db.rollback()
        logger.exception("❌ Error registering visitor")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    response = JSONResponse(
        status_code=201,
        content=VisitorResponse(success=True, visitor_id=visitor.visitor_id).model_dump(by_alias=True, exclude_none=True),
    )
    if body.consent:
        response.set_cookie(
            key=cookie_name,
            value=create_visitor_token(visitor.visitor_id),
            max_age=SERVER_CONFIG["VISITOR_COOKIE_MAX_AGE"],
            httponly=True,
            samesite="lax",
        )
    return response
