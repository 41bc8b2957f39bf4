from .podcast_commands import main

__all__ = ["main"]
