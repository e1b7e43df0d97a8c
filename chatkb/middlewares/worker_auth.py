import hmac
from typing import Optional
from fastapi import Depends, Header, HTTPException, Query
from chatkb.core.config import Settings
from chatkb.routers.deps import get_settings

async def require_cron_secret(
    secret: Optional[str] = Query(default=None),
    x_cron_secret: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Secreto compartido del cron: ?secret=... o header X-Cron-Secret."""
    if not settings.cron_secret:
        raise HTTPException(status_code=503, detail="Worker not configured")
    given = secret or x_cron_secret or ""
    if not hmac.compare_digest(given.encode(), settings.cron_secret.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")
