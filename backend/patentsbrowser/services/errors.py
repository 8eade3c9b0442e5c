"""Service-layer error base.

Services raise ServiceError subclasses; server.py renders them into the
response envelope with their status code and optional machine code.
"""
from typing import Optional


class ServiceError(Exception):
    status_code = 400
    code: Optional[str] = None

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
