from __future__ import annotations


class IdentityError(Exception):
    pass


class NotFoundError(IdentityError):
    pass


class ConflictError(IdentityError):
    pass


class InvalidReferenceError(IdentityError):
    """One or more ids/codes in a replace request do not resolve in scope."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class AuthError(IdentityError):
    pass
