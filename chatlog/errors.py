from typing import Optional


class ChatLogError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_body(self) -> dict:
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


# missing or malformed input, nothing was written
class ValidationError(ChatLogError):
    status_code = 400


class NotFoundError(ChatLogError):
    status_code = 404


class ConflictError(ChatLogError):
    status_code = 409


# store unreachable or an unexpected failure
class InternalError(ChatLogError):
    status_code = 500
