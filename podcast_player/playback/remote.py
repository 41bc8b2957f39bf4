"""Remote control commands issued by lock screens, headsets and car units."""

from enum import Enum


class RemoteCommand(Enum):
    PLAY = "play"
    PAUSE = "pause"
    TOGGLE = "toggle"
    SKIP_FORWARD = "skip_forward"
    SKIP_BACKWARD = "skip_backward"
    CHANGE_POSITION = "change_position"
