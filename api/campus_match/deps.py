from fastapi import Header, HTTPException, Request

from . import config
from .tags import TagIndex


def validate_admin_token(token: str | None, admin_token: str | None) -> None:
    if not admin_token or not token or token != admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def require_admin(x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")) -> None:
    validate_admin_token(x_admin_token, config.ADMIN_TOKEN)


def get_tag_index(request: Request) -> TagIndex:
    tag_index = getattr(request.app.state, "tag_index", None)
    if tag_index is None:
        raise HTTPException(status_code=503, detail="Tag index not loaded")
    return tag_index
