"""
Domain errors raised by the services and the credential layer.

Every error carries the HTTP status it maps to and a field -> messages
mapping, rendered by the handler in ``conduit.main`` as::

    {"errors": {"<field>": ["<message>", ...]}}
"""
from typing import Dict, List, Optional, Union

ErrorMap = Dict[str, List[str]]


def _as_error_map(errors: Dict[str, Union[str, List[str]]]) -> ErrorMap:
    return {
        field: [messages] if isinstance(messages, str) else list(messages)
        for field, messages in errors.items()
    }


class ConduitError(Exception):
    """Base class for every error the domain surfaces to callers."""

    status_code: int = 500

    def __init__(self, errors: Dict[str, Union[str, List[str]]]):
        self.errors: ErrorMap = _as_error_map(errors)
        super().__init__(self.errors)


# ==================== Validation ====================


class ValidationError(ConduitError):
    """Malformed input or a uniqueness conflict on structured input."""

    status_code = 422


# ==================== Authentication / authorization ====================


class AuthError(ConduitError):
    """Base class for credential and ownership failures."""

    status_code = 401
    headers: Optional[Dict[str, str]] = {"WWW-Authenticate": "Token"}

    def __init__(self, errors: Optional[Dict[str, Union[str, List[str]]]] = None):
        super().__init__(errors or {"token": "is invalid"})


class MissingCredentials(AuthError):
    def __init__(self):
        super().__init__({"token": "is missing"})


class InvalidCredentials(AuthError):
    """Unknown email or wrong password; the two are deliberately indistinguishable."""

    def __init__(self):
        super().__init__({"email or password": "is invalid"})


class MalformedToken(AuthError):
    pass


class InvalidSignature(AuthError):
    pass


class ExpiredToken(AuthError):
    def __init__(self):
        super().__init__({"token": "has expired"})


class Forbidden(AuthError):
    """The viewer is authenticated but does not own the resource."""

    status_code = 403
    headers = None

    def __init__(self, resource: str):
        super().__init__({resource: "forbidden"})


# ==================== Lookup ====================


class NotFound(ConduitError):
    status_code = 404

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__({resource: "not found"})
