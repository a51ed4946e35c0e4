

from typing import Any, Optional


class RelayError(Exception):
    """Base exception for lead relay failures."""

    status_code = 500


class AuthenticityError(RelayError):
    """Inbound request failed its shared-secret or signature check."""

    status_code = 401


class UpstreamAuthError(RelayError):
    """Portal auth endpoint did not hand out an access token."""
    pass


class UpstreamHttpError(RelayError):
    """Portal read API answered with a non-success status."""

    def __init__(self, status: int, body: Any):
        self.status = status
        self.body = body
        super().__init__(f"Upstream request failed with status {status}: {body}")


class CrmHttpError(RelayError):
    """CRM transport failure or non-success HTTP status."""

    def __init__(self, status: Optional[int], body: Any):
        self.status = status
        self.body = body
        super().__init__(f"CRM request failed with status {status}: {body}")


class CrmCommandError(RelayError):
    """CRM answered 2xx but reported success: false."""

    def __init__(self, body: Any):
        self.body = body
        error = body.get("error") if isinstance(body, dict) else None
        super().__init__(f"CRM command failed: {error or body}")


class ContactError(RelayError):
    """Contact could not be created or updated."""
    pass


class DealError(RelayError):
    """Deal could not be created."""
    pass


class NoteError(RelayError):
    """Note could not be attached to a deal."""
    pass
