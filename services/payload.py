"""JSON request bodies and their conversion to WTForms form data."""
from __future__ import annotations

from flask import request
from werkzeug.datastructures import MultiDict

from services.errors import InvalidArgument


def json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise InvalidArgument("Request body must be a JSON object")
    return body


def form_data(body: dict) -> MultiDict:
    """Flatten a JSON object into the string values WTForms fields expect.

    Numbers are passed on as text and nulls count as absent. Booleans, lists
    and nested objects are rejected.
    """
    data = MultiDict()
    for key, value in body.items():
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise InvalidArgument(f"{key} must be a string or number")
        data[key] = str(value)
    return data
