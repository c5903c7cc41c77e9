"""API key authentication and caller identity via FastAPI dependency injection."""

import hmac

from fastapi import Header, HTTPException, Security
from fastapi.security import APIKeyHeader

from mneme.server.config import settings

_api_key_header = APIKeyHeader(name="X-Mneme-Key", auto_error=False)

MAX_OWNER_ID_LENGTH = 200


async def require_auth(
    api_key: str | None = Security(_api_key_header),
) -> None:
    """Enforce API key authentication when MNEME_API_KEY is configured.

    Attach as a dependency to any route or router that should be protected.
    When MNEME_API_KEY is empty, all requests are allowed (local dev mode).
    """
    if not settings.api_key:
        return

    if not api_key:
        raise HTTPException(status_code=401, detail="Missing X-Mneme-Key header")

    if not hmac.compare_digest(api_key.encode(), settings.api_key.encode()):
        raise HTTPException(status_code=403, detail="Invalid API key")


async def require_owner(
    x_owner_id: str | None = Header(None),
) -> str:
    """The owner whose notes a request reads, from the X-Owner-Id header.

    The owner is passed explicitly down the pipeline; nothing reads it from
    request-global state.
    """
    owner_id = (x_owner_id or "").strip()
    if not owner_id:
        raise HTTPException(status_code=400, detail="Missing X-Owner-Id header")
    if len(owner_id) > MAX_OWNER_ID_LENGTH:
        raise HTTPException(status_code=400, detail="X-Owner-Id too long")
    return owner_id
