"""
Client-side effects emitted for a UI to render.

The library does not draw anything or play sounds; it announces them here.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List

logger = logging.getLogger(__name__)

EFFECT_ROLLING = "rolling"            # data: active
EFFECT_ROLL_SUCCESS = "roll_success"  # data: sound (False while muted)
EFFECT_NOTICE = "notice"              # data: level, message
EFFECT_PHASE = "phase"                # data: phase
EFFECT_ROOM_CLOSED = "room_closed"
EFFECT_ROSTER = "roster"              # data: participants, host_id
EFFECT_CHAT = "chat"                  # data: message
EFFECT_SCORES = "scores"              # data: count

NOTICE_INFO = "info"
NOTICE_WARNING = "warning"
NOTICE_ERROR = "error"


@dataclass
class Effect:
    effect: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


EffectListener = Callable[[Effect], None]


class EffectBus:
    """Fan-out of effects to listeners, with a short log of recent ones."""

    def __init__(self, log_size: int = 50):
        self._listeners: List[EffectListener] = []
        self.log: Deque[Effect] = deque(maxlen=log_size)

    def subscribe(self, listener: EffectListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, effect_type: str, **data) -> Effect:
        effect = Effect(effect=effect_type, data=data)
        self.log.append(effect)
        for listener in list(self._listeners):
            try:
                listener(effect)
            except Exception as e:
                logger.error(f"Effect listener failed on {effect_type}: {e}")
        return effect

    def notice(self, message: str, level: str = NOTICE_INFO) -> Effect:
        return self.emit(EFFECT_NOTICE, level=level, message=message)

    def count(self, effect_type: str) -> int:
        return sum(1 for effect in self.log if effect.effect == effect_type)
