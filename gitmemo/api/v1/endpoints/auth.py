"""
Password verification.

A correct password yields a session token that write endpoints expect in
the X-Session-Token header.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from gitmemo.api.deps import get_session_authority
from gitmemo.database import get_db
from gitmemo.services import config_service
from gitmemo.services.auth_service import SessionAuthority

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


class VerifyRequest(BaseModel):
    password: str = Field(..., min_length=1)


class VerifyResponse(BaseModel):
    is_valid: bool
    session_token: Optional[str] = None
    expires_in: Optional[int] = None


@router.post("/verify", response_model=VerifyResponse)
async def verify_password(
    request: VerifyRequest,
    db: AsyncSession = Depends(get_db),
    authority: SessionAuthority = Depends(get_session_authority),
):
    expected = await config_service.resolve_password(db)
    if not authority.check_password(request.password, expected):
        logger.info("Password verification failed")
        return VerifyResponse(is_valid=False)

    return VerifyResponse(
        is_valid=True,
        session_token=authority.issue(),
        expires_in=authority.ttl_seconds,
    )
