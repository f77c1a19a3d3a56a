"""
HTTP errors shared by services and routes.

Each class maps one condition of the error taxonomy onto a status code so that
callers (and tests) can tell "not signed in" apart from "no profile" apart from
"the upstream provider failed".
"""
from typing import Optional

from fastapi import HTTPException, status

LOGIN_PATH = "/connexion"


class NotAuthenticated(HTTPException):
    def __init__(self, detail: str = "Not authenticated") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer", "X-Redirect": LOGIN_PATH},
        )


class ProfileNotFound(HTTPException):
    def __init__(self, detail: str = "Profile not found") -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ValidationFailed(HTTPException):
    def __init__(self, detail: str, step: Optional[int] = None) -> None:
        body = {"error": detail, "step": step} if step is not None else detail
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=body)


class UpstreamError(HTTPException):
    def __init__(self, summary: str, details: Optional[str] = None) -> None:
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": summary, "details": details},
        )
