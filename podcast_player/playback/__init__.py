"""Playback session and its platform collaborators.

Provides:
- PlaybackSession state machine driving an AudioTransport
- Audio focus subscription (interruptions, output route changes)
- Now-playing metadata bridge and remote control commands
"""

from .audio_focus import AudioFocus, AudioFocusListener
from .now_playing import InMemoryNowPlayingCenter, NowPlayingCenter, NowPlayingInfo, fetch_artwork
from .remote import RemoteCommand
from .session import (
    ALLOWED_PLAYBACK_RATES,
    PlaybackSession,
    PlaybackState,
    PlaybackStatus,
    create_session_from_config,
)
from .transport import AudioTransport, TransportListener

__all__ = [
    "ALLOWED_PLAYBACK_RATES",
    "AudioFocus",
    "AudioFocusListener",
    "AudioTransport",
    "InMemoryNowPlayingCenter",
    "NowPlayingCenter",
    "NowPlayingInfo",
    "PlaybackSession",
    "PlaybackState",
    "PlaybackStatus",
    "RemoteCommand",
    "TransportListener",
    "create_session_from_config",
    "fetch_artwork",
]
