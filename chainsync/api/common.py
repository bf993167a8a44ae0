"""Helpers shared by the HTTP routers."""

import hmac
from typing import Any, Dict, Optional

from fastapi import Header, Request

from chainsync.errors import AuthorizationError, RecordValidationError


def get_services(request: Request):
    """Services wired into the running app (see ``chainsync.app``)."""
    return request.app.state.services


def envelope(message: str, data: Any = None, success: bool = True) -> Dict[str, Any]:
    """Standard response body."""
    return {"success": success, "message": message, "data": data}


def require_sync_api_key(
    request: Request,
    x_sync_api_key: Optional[str] = Header(default=None),
) -> None:
    """Reject the request unless it carries the shared sync secret.

    Runs before the endpoint, so the body of an unauthorized request is never
    read.
    """
    expected = get_services(request).config.sync_api_key
    if not x_sync_api_key or not hmac.compare_digest(
        x_sync_api_key.encode("utf-8"), expected.encode("utf-8")
    ):
        raise AuthorizationError("Unauthorized: invalid sync API key")


async def read_json(request: Request) -> Any:
    """Parse the request body as JSON.

    Raises:
        RecordValidationError: If the body is not valid JSON
    """
    try:
        return await request.json()
    except ValueError as e:
        raise RecordValidationError(
            "request", [{"loc": ("body",), "msg": "invalid JSON body", "type": "json_invalid"}]
        ) from e
