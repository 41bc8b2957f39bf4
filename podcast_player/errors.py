"""Custom exceptions for the podcast player core."""

from typing import Optional


class PodcastPlayerError(Exception):
    """Base exception for all podcast player errors."""

    pass


class NetworkError(PodcastPlayerError):
    """Search, feed or download fetch failures."""

    pass


class ParseError(PodcastPlayerError):
    """Malformed feed or API response."""

    pass


class FeedParseError(ParseError):
    """RSS feed could not be parsed into a channel.

    Carries the offending element name or the XML position so the
    failure can be diagnosed from logs.
    """

    def __init__(
        self,
        message: str,
        element: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        self.element = element
        self.line = line
        self.column = column

        details = []
        if element:
            details.append(f"element={element}")
        if line is not None:
            details.append(f"line={line}")
        if column is not None:
            details.append(f"column={column}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class StorageError(PodcastPlayerError):
    """Local persistence failure."""

    pass


class PlaybackError(PodcastPlayerError):
    """Audio source could not be played."""

    pass


class ValidationError(PodcastPlayerError):
    """Input rejected before any network or storage call."""

    pass
