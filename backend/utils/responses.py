"""Response envelope helpers - PatentsBrowser

Every endpoint answers with {"statusCode", "message", "data"}; error
responses add "code" when the failure has a machine-readable reason.
"""
from typing import Any, Optional


def success_response(message: str, data: Any = None, status_code: int = 200) -> dict:
    return {"statusCode": status_code, "message": message, "data": data}


def error_response(status_code: int, message: str, code: Optional[str] = None, data: Any = None) -> dict:
    body = {"statusCode": status_code, "message": message, "data": data}
    if code:
        body["code"] = code
    return body
