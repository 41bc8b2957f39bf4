"""Podcast player core.

Feed ingestion, episode reconciliation, offline downloads and the
playback session that drives an audio transport.
"""

__version__ = "1.0.0"
