from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

JSON_CONTENT_TYPE = "application/json"


def decode_body(response: httpx.Response) -> Any:
    """Return the JSON body, or None when the response carries no decodable JSON."""
    content_type = response.headers.get("content-type", "")
    if JSON_CONTENT_TYPE not in content_type:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def error_message(status_code: int, data: Any) -> str:
    """Prefer the server's ``message``/``error`` field over a generic message."""
    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        if message:
            return str(message)
    return f"Request failed ({status_code})"


def json_headers(
    body: Any = None,
    token: Optional[str] = None,
    extra: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    if body is not None:
        headers["Content-Type"] = JSON_CONTENT_TYPE
    if token:
        headers["Authorization"] = f"Bearer {token}"
    if extra:
        headers.update(extra)
    return headers
