"""Now-playing metadata bridge.

The session publishes full track metadata when the episode or its artwork
changes and timing-only updates otherwise.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

ARTWORK_TIMEOUT = 10.0


@dataclass(frozen=True)
class NowPlayingInfo:
    """Track metadata shown by the system media controls.

    `rate` is 0 while playback is paused.
    """

    title: str
    artist: str = ""
    album: str = ""
    duration: float = 0.0
    elapsed: float = 0.0
    rate: float = 0.0
    artwork: Optional[bytes] = None


class NowPlayingCenter(ABC):
    """System media-controls surface."""

    @abstractmethod
    def publish(self, info: NowPlayingInfo) -> None:
        """Replace the displayed track metadata."""
        pass

    @abstractmethod
    def update_timing(self, elapsed: float, rate: float, duration: float) -> None:
        """Update position, rate and duration of the displayed track."""
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class InMemoryNowPlayingCenter(NowPlayingCenter):
    """Keeps the latest now-playing info in memory.

    Used headless and as a reference for platform adapters.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.info: Optional[NowPlayingInfo] = None

    def publish(self, info: NowPlayingInfo) -> None:
        with self._lock:
            self.info = info

    def update_timing(self, elapsed: float, rate: float, duration: float) -> None:
        with self._lock:
            if self.info is not None:
                self.info = replace(self.info, elapsed=elapsed, rate=rate, duration=duration)

    def clear(self) -> None:
        with self._lock:
            self.info = None


def fetch_artwork(url: str, timeout: float = ARTWORK_TIMEOUT) -> Optional[bytes]:
    """
    Download artwork image bytes.

    Returns:
        Optional[bytes]: The image bytes, or `None` if the URL is empty or the download failed.
    """
    if not url:
        return None

    try:
        response = httpx.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"Failed to load artwork from {url}: {e}")
        return None

    return response.content or None
