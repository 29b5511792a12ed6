"""Local replica of the shared session state"""

import logging

from .models import SessionState

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Holds this client's copy of the session state.

    Writes are whole-object swaps. The store never looks at which field
    changed; deciding whether an incoming snapshot is news is the
    protocol's job.
    """

    def __init__(self, state: SessionState = None):
        self._state = state if state is not None else SessionState()

    def get(self) -> SessionState:
        return self._state

    def replace(self, new_state: SessionState):
        if not isinstance(new_state, SessionState):
            raise TypeError(f"Expected SessionState, got {type(new_state).__name__}")
        self._state = new_state

    def reset(self):
        logger.debug("Session state reset")
        self._state = SessionState()
