"""Domain errors raised by the service layer.

Each carries the HTTP status it maps to; ``main.py`` renders them the same
way FastAPI renders ``HTTPException`` (``{"detail": ...}``). The WebSocket
gateway keeps only the message.
"""


class ChatError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequestError(ChatError):
    status_code = 400


class ForbiddenError(ChatError):
    status_code = 403


class NotFoundError(ChatError):
    status_code = 404


class ConflictError(ChatError):
    status_code = 409
