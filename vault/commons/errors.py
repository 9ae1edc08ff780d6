"""
Domain exceptions for the vault.

Services raise these; the CLI (or any outer layer) catches VaultError and
maps it to its own response. Nothing else should leak out of a service.
"""

from typing import Optional

VIEWER_DENIED_MESSAGE = "Invalid or expired access token."


class VaultError(Exception):
    """Base error. Carries a message and a machine-readable code."""

    code = "vault_error"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class InvalidScope(VaultError):
    code = "invalid_scope"

    def __init__(self, message: str = "At least one report must be selected."):
        super().__init__(message)


class Forbidden(VaultError):
    """At least one requested report does not exist or belongs to someone else."""

    code = "forbidden"

    def __init__(self, message: str = "One or more reports do not belong to the owner."):
        super().__init__(message)


class NotFound(VaultError):
    code = "not_found"

    def __init__(self, message: str = "Grant not found."):
        super().__init__(message)


class Conflict(VaultError):
    code = "conflict"

    def __init__(self, message: str = "A report with this id already exists."):
        super().__init__(message)


class TokenCollision(VaultError):
    code = "token_collision"

    def __init__(self, message: str = "Generated token already in use."):
        super().__init__(message)


class InvalidDocument(VaultError):
    code = "invalid_document"


class UpstreamExtractionFailure(VaultError):
    """The external extraction call failed. The original error is chained."""

    code = "upstream_extraction_failure"


class ViewerAccessDenied(VaultError):
    """
    Parent of every failure a token holder can see.
    Subclasses share one public message so a viewer cannot tell an unknown
    token from a revoked or expired one.
    """

    code = "access_denied"

    def __init__(self, message: str = VIEWER_DENIED_MESSAGE):
        super().__init__(message)


class InvalidToken(ViewerAccessDenied):
    code = "invalid_token"


class GrantExpiredOrRevoked(ViewerAccessDenied):
    code = "grant_expired_or_revoked"
