"""Audio transport interface.

A transport wraps a concrete media player. The playback session drives it
through the commands below and receives media events through a
`TransportListener`.
"""

from abc import ABC, abstractmethod
from typing import Optional


class TransportListener(ABC):
    """Receiver of media events raised by an audio transport."""

    @abstractmethod
    def on_source_ready(self, duration: Optional[float]) -> None:
        """The loaded source can play; `duration` is in seconds when known."""
        pass

    @abstractmethod
    def on_source_failed(self, error: Exception) -> None:
        """The loaded source cannot be played."""
        pass

    @abstractmethod
    def on_tick(self, media_time: float, observed_at: Optional[float] = None) -> None:
        """
        Periodic position report while playing.

        Parameters:
            media_time (float): Current media position in seconds.
            observed_at (Optional[float]): Clock reading when the position was sampled; defaults to the time of delivery.
        """
        pass

    @abstractmethod
    def on_end_of_media(self) -> None:
        """Playback reached the end of the source."""
        pass


class AudioTransport(ABC):
    """Media player driven by the playback session.

    Implementations report back asynchronously through the listener given
    to `load`. `set_rate` must not start playback on its own.
    """

    @abstractmethod
    def load(self, source: str, listener: TransportListener) -> None:
        """Start loading `source` (a URL or local file path)."""
        pass

    @abstractmethod
    def play(self) -> None:
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def seek(self, position: float) -> None:
        """Move the media position to `position` seconds."""
        pass

    @abstractmethod
    def set_rate(self, rate: float) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop playback and release the loaded source."""
        pass
