class LocalChatError(Exception):
    pass


class RequestFailed(LocalChatError):
    """The generation endpoint did not return a usable success response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StreamReadFailed(LocalChatError):
    """Reading the response body failed after streaming had started."""


class Cancelled(LocalChatError):
    """The user stopped the generation."""


class SessionBusyError(LocalChatError):
    def __init__(self, session_id: str):
        super().__init__(f"Chat session {session_id} already has an active generation")
        self.session_id = session_id
