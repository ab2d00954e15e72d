import secrets

from fastapi import Header, HTTPException, status

from app.config import settings


def require_sync_admin(x_sync_admin_token: str | None = Header(default=None)):
    """Guard admin sync routes when SYNC_ADMIN_TOKEN is configured."""
    expected = settings.sync_admin_token
    if not expected:
        return
    if not x_sync_admin_token or not secrets.compare_digest(x_sync_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid sync admin token")
