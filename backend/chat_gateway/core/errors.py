from typing import Literal

from fastapi import Request
from fastapi.responses import JSONResponse

ErrorType = Literal[
    "bad_request",
    "unauthorized",
    "forbidden",
    "not_found",
    "rate_limit",
    "offline",
]

Surface = Literal["api", "chat", "auth", "stream", "history", "database"]

STATUS_BY_TYPE: dict[str, int] = {
    "bad_request": 400,
    "unauthorized": 401,
    "forbidden": 403,
    "not_found": 404,
    "rate_limit": 429,
    "offline": 503,
}

MESSAGES_BY_CODE: dict[str, str] = {
    "bad_request:api": "The request couldn't be processed. Please check your input and try again.",
    "unauthorized:auth": "You need to sign in before continuing.",
    "forbidden:auth": "Your account does not have access to this feature.",
    "rate_limit:chat": "You have exceeded your maximum number of messages for the day. Please try again later.",
    "not_found:chat": "The requested chat was not found. Please check the chat ID and try again.",
    "forbidden:chat": "This chat belongs to another user. Please check the chat ID and try again.",
    "unauthorized:chat": "You need to sign in to view this chat. Please sign in and try again.",
    "offline:chat": "We're having trouble sending your message. Please check your internet connection and try again.",
    "not_found:stream": "There is no stream to resume for this chat.",
}

DEFAULT_MESSAGE = "Something went wrong. Please try again later."


class ChatError(Exception):
    """Client-visible failure classified as ``<type>:<surface>``.

    ``cause`` is returned to the client as-is, so it must never carry
    internal details. Database errors are reported with a generic message.
    """

    def __init__(self, code: str, cause: str | None = None) -> None:
        error_type, _, surface = code.partition(":")
        if error_type not in STATUS_BY_TYPE:
            raise ValueError(f"Unknown error type: {error_type}")
        self.code = code
        self.type: ErrorType = error_type  # type: ignore[assignment]
        self.surface: Surface = surface  # type: ignore[assignment]
        self.cause = cause
        self.status_code = STATUS_BY_TYPE[error_type]
        if surface == "database":
            self.message = DEFAULT_MESSAGE
        else:
            self.message = MESSAGES_BY_CODE.get(code, DEFAULT_MESSAGE)
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str | None]:
        return {"code": self.code, "message": self.message, "cause": self.cause}

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    return exc.to_response()
