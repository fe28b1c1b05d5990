"""
Shared-Secret Authentication

Every protected route requires the ``X-KnowledgeIndex-Secret`` header to match
the configured shared secret. The comparison is constant-time.
"""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from ..config import settings

SECRET_HEADER = "X-KnowledgeIndex-Secret"

secret_header = APIKeyHeader(name=SECRET_HEADER, auto_error=False)


def require_shared_secret(
    provided: Optional[str] = Depends(secret_header),
) -> None:
    """
    Raises
    ------
    HTTPException(401)
        If the header is missing, wrong, or no secret is configured.
    """
    expected = settings.shared_secret.get_secret_value()

    if not expected or not provided or not hmac.compare_digest(
        provided.encode("utf-8"), expected.encode("utf-8")
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing shared secret.",
        )
