from bson import ObjectId
from bson.errors import InvalidId


class ChatError(Exception):
    """Base class for messaging failures that map onto an HTTP status."""

    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFound(ChatError):
    status_code = 404


class Forbidden(ChatError):
    status_code = 403


class InvalidArgument(ChatError):
    status_code = 400


class AuthenticationFailed(ChatError):
    status_code = 401


class Unavailable(ChatError):
    status_code = 503


def to_object_id(value: str, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise InvalidArgument(f"Invalid {label}: {value!r}")
