import re
from flask import request

from ledger.exceptions import InvalidRequest


def validate_email(email):
    return re.match(r'^[\w\.+-]+@[\w\.-]+\.\w+$', email or "")


def json_body(required=True):
    """Request JSON as a dict; anything else is a 400 unless the body is optional."""
    data = request.get_json(silent=True)
    if data is None and not required:
        return {}
    if not isinstance(data, dict):
        raise InvalidRequest("Invalid or missing JSON body")
    return data


def client_ip():
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr
