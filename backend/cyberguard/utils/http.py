# cyberguard/utils/http.py
from __future__ import annotations

from flask import request

from cyberguard.errors import InvalidSettings


def json_body() -> dict:
    """Request body as a dict. Missing or unparseable is ``{}``; any other JSON type is a 400."""
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise InvalidSettings("request body must be a JSON object")
    return body
