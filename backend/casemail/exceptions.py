"""Errors raised by the classification and review services."""


class CasemailError(Exception):
    """Base class for service errors surfaced to callers."""


class NotFoundError(CasemailError):
    """A referenced email, case or pending item does not exist."""


class AuthorizationError(CasemailError):
    """The caller's firm does not own the referenced entity."""


class AlreadyResolvedError(CasemailError):
    """The pending classification has already been assigned or dismissed."""


class GenerationError(CasemailError):
    """The generative model call failed (transport, HTTP status or empty body)."""
