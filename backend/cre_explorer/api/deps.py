"""Shared route dependencies."""

import logging
from typing import Optional

from fastapi import Header, HTTPException

logger = logging.getLogger(__name__)


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """
    Opaque user id set by the auth proxy in front of the API.

    The API never validates credentials itself; a request without the header
    is unauthenticated.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()
