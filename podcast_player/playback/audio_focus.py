"""Audio focus subscription.

Platform adapters translate interruption and output-route notifications
into calls on an `AudioFocus` dispatcher, which forwards them to every
registered listener.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import List

logger = logging.getLogger(__name__)


class AudioFocusListener(ABC):
    """Receiver of audio focus changes."""

    @abstractmethod
    def on_focus_lost(self) -> None:
        """Another audio source took the output, e.g. an incoming call."""
        pass

    @abstractmethod
    def on_focus_regained(self, should_resume: bool) -> None:
        """Focus came back; `should_resume` tells whether playback may continue."""
        pass

    @abstractmethod
    def on_output_route_removed(self) -> None:
        """The active output device went away, e.g. headphones unplugged."""
        pass


class AudioFocus:
    """Dispatches audio focus events to registered listeners.

    Example:
        focus = AudioFocus()
        focus.register(session)
        focus.focus_lost()  # called by the platform adapter
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: List[AudioFocusListener] = []

    def register(self, listener: AudioFocusListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unregister(self, listener: AudioFocusListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def focus_lost(self) -> None:
        logger.info("Audio focus lost")
        for listener in self._snapshot():
            listener.on_focus_lost()

    def focus_regained(self, should_resume: bool) -> None:
        logger.info(f"Audio focus regained (should_resume={should_resume})")
        for listener in self._snapshot():
            listener.on_focus_regained(should_resume)

    def output_route_removed(self) -> None:
        logger.info("Audio output route removed")
        for listener in self._snapshot():
            listener.on_output_route_removed()

    def _snapshot(self) -> List[AudioFocusListener]:
        with self._lock:
            return list(self._listeners)
