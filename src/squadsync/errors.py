# src/squadsync/errors.py

class SessionError(Exception):
    """Base exception for session-related errors."""
    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")

# Specific error codes
INVALID_NAME = "INVALID_NAME"
INVALID_ROOM_CODE = "INVALID_ROOM_CODE"
INVALID_MESSAGE = "INVALID_MESSAGE"
ROOM_NOT_FOUND = "ROOM_NOT_FOUND"
CONNECT_TIMEOUT = "CONNECT_TIMEOUT"
NOT_CONNECTED = "NOT_CONNECTED"
NOT_PERMITTED = "NOT_PERMITTED"

# Helper function to raise common errors
def raise_error(code: str, message: str):
    raise SessionError(code, message)
