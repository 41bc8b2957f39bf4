"""Subscription service.

Fetches and parses podcast feeds, then writes the podcast and its
episodes through to the store.
"""

import hashlib
import logging
from datetime import UTC, datetime
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from ..db.models import Podcast
from ..db.repository import PodcastRepositoryInterface
from ..errors import PodcastPlayerError, ValidationError
from .feed_parser import FeedParser, ParsedChannel
from .reconciler import EpisodeReconciler

logger = logging.getLogger(__name__)


def validate_feed_url(feed_url: Optional[str]) -> str:
    """
    Check that `feed_url` is an absolute http(s) URL.

    Returns:
        str: The stripped URL.

    Raises:
        ValidationError: If the URL is empty or not http(s).
    """
    url = (feed_url or "").strip()
    if not url:
        raise ValidationError("Feed URL is empty")

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid feed URL: {url}")
    return url


def podcast_id_for_feed(feed_url: str) -> str:
    """Stable podcast id for feeds added by URL rather than from search."""
    return hashlib.sha1(feed_url.encode("utf-8")).hexdigest()


class SubscriptionService:
    """Service for subscribing to podcasts and keeping their feeds current.

    Example:
        service = SubscriptionService(repository)
        result = service.subscribe(podcast_from_search)
        print(f"New episodes: {result['new_episodes']}")
    """

    def __init__(
        self,
        repository: PodcastRepositoryInterface,
        feed_parser: Optional[FeedParser] = None,
        download_manager=None,
    ):
        """
        Create a SubscriptionService over the given repository.

        Parameters:
            feed_parser (Optional[FeedParser]): Parser used to fetch feeds; a default one is created when `None`.
            download_manager (Optional[DownloadManager]): When given, active downloads are cancelled on unsubscribe.
        """
        self.repository = repository
        self.feed_parser = feed_parser or FeedParser()
        self.reconciler = EpisodeReconciler(repository)
        self.download_manager = download_manager

    def subscribe(self, podcast: Podcast) -> Dict[str, Any]:
        """
        Subscribe to a podcast, typically one returned by search.

        The feed is fetched and parsed before anything is written, so a network or parse failure leaves the store untouched. On success the podcast metadata is refreshed from the channel, the podcast is marked subscribed and its episodes are reconciled.

        Returns:
            dict: `podcast_id`, `title`, `new_episodes`, `updated_episodes`, `skipped` and `warnings`.

        Raises:
            ValidationError: If the podcast has no valid feed URL.
            NetworkError: If the feed cannot be fetched.
            FeedParseError: If the feed cannot be parsed.
            StorageError: If the store fails.
        """
        feed_url = validate_feed_url(podcast.feed_url)
        channel = self.feed_parser.parse_url(feed_url)

        stored = self.repository.upsert_podcast(
            Podcast(
                id=podcast.id,
                title=channel.title,
                author=channel.author or podcast.author or "",
                description=channel.description or podcast.description or "",
                image_url=channel.image_url or podcast.image_url or "",
                feed_url=feed_url,
                is_subscribed=True,
                last_checked=datetime.now(UTC),
            )
        )

        reconciled = self.reconciler.reconcile(stored.id, channel)
        logger.info(
            f"Subscribed to '{stored.title}': {reconciled.inserted} new episodes"
        )

        return {
            "podcast_id": stored.id,
            "title": stored.title,
            "new_episodes": reconciled.inserted,
            "updated_episodes": reconciled.updated,
            "skipped": reconciled.skipped,
            "warnings": reconciled.warnings,
        }

    def subscribe_url(self, feed_url: str, podcast_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Subscribe to a feed by URL.

        Without an explicit `podcast_id` the id is derived from the feed URL, so subscribing twice to the same URL targets the same podcast.
        """
        url = validate_feed_url(feed_url)
        existing = self.repository.get_podcast(podcast_id) if podcast_id else None
        podcast = Podcast(
            id=podcast_id or podcast_id_for_feed(url),
            title=existing.title if existing else "",
            feed_url=url,
        )
        return self.subscribe(podcast)

    def refresh(self, podcast_id: str) -> Dict[str, Any]:
        """
        Refresh a podcast by fetching its feed, updating metadata and reconciling episodes.

        Failures are reported in the result rather than raised, so a batch refresh can continue with the next podcast.

        Returns:
            result (dict): Refresh outcome containing:
                - podcast_id (str): The podcast identifier.
                - new_episodes (int): Number of episodes inserted.
                - updated_episodes (int): Number of episodes whose feed fields changed.
                - warnings (list): Per-item parse warnings.
                - error (str|None): Error message if the refresh failed, `None` on success.
        """
        result = {
            "podcast_id": podcast_id,
            "new_episodes": 0,
            "updated_episodes": 0,
            "warnings": [],
            "error": None,
        }

        podcast = self.repository.get_podcast(podcast_id)
        if not podcast:
            result["error"] = f"Podcast not found: {podcast_id}"
            return result

        logger.info(f"Refreshing podcast: {podcast.title}")

        try:
            channel = self.feed_parser.parse_url(validate_feed_url(podcast.feed_url))
            self._update_podcast_metadata(podcast, channel)

            reconciled = self.reconciler.reconcile(podcast_id, channel)
            result["new_episodes"] = reconciled.inserted
            result["updated_episodes"] = reconciled.updated
            result["warnings"] = reconciled.warnings

            self.repository.update_podcast(podcast_id, last_checked=datetime.now(UTC))
            logger.info(
                f"Refresh complete for '{podcast.title}': {reconciled.inserted} new episodes"
            )
        except PodcastPlayerError as e:
            logger.error(f"Failed to refresh podcast {podcast.title}: {e}")
            result["error"] = str(e)

        return result

    def refresh_all(self, subscribed_only: bool = True) -> Dict[str, Any]:
        """
        Refresh every podcast in the store.

        Returns:
            overall_result (dict): Aggregated results with keys:
                - refreshed (int): Podcasts refreshed successfully.
                - failed (int): Podcasts that failed to refresh.
                - new_episodes (int): Total episodes inserted.
                - results (list): Per-podcast dictionaries returned by `refresh`.
        """
        podcasts = self.repository.list_podcasts(
            subscribed=True if subscribed_only else None
        )

        overall_result = {
            "refreshed": 0,
            "failed": 0,
            "new_episodes": 0,
            "results": [],
        }

        for podcast in podcasts:
            result = self.refresh(podcast.id)
            overall_result["results"].append(result)

            if result["error"]:
                overall_result["failed"] += 1
            else:
                overall_result["refreshed"] += 1
                overall_result["new_episodes"] += result["new_episodes"]

        logger.info(
            f"Refresh complete: {overall_result['refreshed']} refreshed, "
            f"{overall_result['failed']} failed, "
            f"{overall_result['new_episodes']} new episodes"
        )

        return overall_result

    def unsubscribe(self, podcast_id: str) -> int:
        """
        Unsubscribe from a podcast and remove its downloaded audio.

        Returns:
            int: Number of audio files removed.
        """
        if self.download_manager is not None:
            active = self.download_manager.active_downloads()
            for episode in self.repository.list_episodes(podcast_id=podcast_id):
                if episode.id in active:
                    self.download_manager.cancel(episode.id)

        return self.repository.unsubscribe(podcast_id)

    def _update_podcast_metadata(self, podcast: Podcast, channel: ParsedChannel) -> None:
        """Update podcast metadata from the parsed channel."""
        updates = {}

        if channel.title and channel.title != podcast.title:
            updates["title"] = channel.title
        if channel.author and channel.author != podcast.author:
            updates["author"] = channel.author
        if channel.description and channel.description != podcast.description:
            updates["description"] = channel.description
        if channel.image_url and channel.image_url != podcast.image_url:
            updates["image_url"] = channel.image_url

        if updates:
            self.repository.update_podcast(podcast.id, **updates)
            logger.debug(f"Updated podcast metadata: {list(updates.keys())}")
