"""Podcast management module.

Provides functionality for:
- Podcast directory search
- RSS feed parsing
- Episode reconciliation
- Subscriptions and feed refresh
- Episode downloading
"""

from .downloader import DownloadManager, DownloadResult, DownloadState, DownloadTransport, HttpDownloadTransport
from .feed_parser import Enclosure, FeedParser, ParsedChannel, ParsedItem, parse_duration, parse_feed
from .reconciler import EpisodeReconciler, ReconciliationResult, episode_identity
from .search import PodcastSearchClient
from .subscriptions import SubscriptionService, podcast_id_for_feed, validate_feed_url

__all__ = [
    "DownloadManager",
    "DownloadResult",
    "DownloadState",
    "DownloadTransport",
    "HttpDownloadTransport",
    "Enclosure",
    "FeedParser",
    "ParsedChannel",
    "ParsedItem",
    "parse_duration",
    "parse_feed",
    "EpisodeReconciler",
    "ReconciliationResult",
    "episode_identity",
    "PodcastSearchClient",
    "SubscriptionService",
    "podcast_id_for_feed",
    "validate_feed_url",
]
