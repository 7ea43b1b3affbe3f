"""Exception hierarchy shared by the engines, the service and the HTTP adapter"""


class ElectionError(Exception):
    """Base class for every error raised by the election engines"""

    status = 500

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "detail": self.detail or self.message}


class ConfigurationError(ElectionError):
    """Malformed parameters, incomplete or duplicate submissions"""

    status = 400


class StateError(ElectionError):
    """Operation not allowed in the election's current phase"""

    status = 409


class ProofError(ElectionError):
    """A zero-knowledge proof or a key backup failed verification"""

    status = 422


class NotFoundError(ElectionError):
    status = 404


class CompletenessError(ElectionError):
    """Too few trustees, missing shares, or a tally beyond the discrete-log bound"""

    status = 500


class IdentityError(ElectionError):
    """Caller is not allowed to act on this election"""

    status = 403
