"""Episode reconciliation.

Maps parsed feed items onto durable episode rows. Remote fields are
refreshed from the feed; locally owned fields (download and playback
state) are never touched.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional

from ..db.models import REMOTE_EPISODE_FIELDS, Episode, EpisodeUpdate
from ..db.repository import PodcastRepositoryInterface
from .feed_parser import ParsedChannel, ParsedItem

logger = logging.getLogger(__name__)


def episode_identity(item: ParsedItem) -> Optional[str]:
    """
    Derive the episode identity for a parsed item.

    The feed GUID is used when present. Items with an empty GUID get a deterministic identity derived from the audio URL, so several GUID-less items in one feed never collapse into a single row.

    Returns:
        Optional[str]: The identity, or `None` if the item has no audio URL.
    """
    if item.guid:
        return item.guid
    if item.enclosure and item.enclosure.url:
        digest = hashlib.sha1(item.enclosure.url.encode("utf-8")).hexdigest()
        return f"sha1:{digest}"
    return None


@dataclass
class ReconciliationResult:
    """Counts produced by one reconciliation pass.

    Attributes:
        items_seen: Items in the parsed channel.
        inserted: New episode rows created.
        updated: Existing rows whose remote fields changed.
        unchanged: Existing rows that already matched the feed.
        skipped: Items without audio, or duplicate identities within the feed.
        warnings: Per-item parse warnings carried over from the parser.
    """

    podcast_id: str
    items_seen: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    warnings: List[str] = field(default_factory=list)


class EpisodeReconciler:
    """Merges parsed feed items into the subscription store.

    Example:
        reconciler = EpisodeReconciler(repository)
        result = reconciler.reconcile(podcast.id, parser.parse_bytes(content))
        print(f"{result.inserted} new, {result.updated} updated")
    """

    def __init__(self, repository: PodcastRepositoryInterface):
        self.repository = repository

    def reconcile(self, podcast_id: str, channel: ParsedChannel) -> ReconciliationResult:
        """
        Write every playable item of `channel` through to the store.

        At most one write is issued per item: an insert for a new identity, a narrow update of the changed remote fields for an existing one, or nothing when the stored row already matches.

        Raises:
            StorageError: If the store fails; items before the failure stay written.
        """
        result = ReconciliationResult(podcast_id=podcast_id)
        seen_ids = set()

        for item in channel.items:
            result.items_seen += 1
            result.warnings.extend(item.warnings)

            if not item.enclosure or not item.enclosure.url:
                logger.debug(f"Skipping item without enclosure URL: {item.title}")
                result.skipped += 1
                continue

            episode_id = episode_identity(item)
            if episode_id in seen_ids:
                logger.warning(
                    f"Duplicate episode identity {episode_id!r} in feed for podcast {podcast_id}; "
                    f"skipping '{item.title}'"
                )
                result.skipped += 1
                continue
            seen_ids.add(episode_id)

            remote = self._remote_fields(item)
            existing = self.repository.get_episode(episode_id)

            if existing is None:
                self.repository.upsert_episode(
                    Episode(
                        id=episode_id,
                        podcast_id=podcast_id,
                        is_downloaded=False,
                        download_path=None,
                        play_progress=0.0,
                        is_played=False,
                        last_played_date=None,
                        **remote,
                    )
                )
                result.inserted += 1
                logger.debug(f"Added episode: {item.title}")
                continue

            changed = self._changed_fields(existing, remote, item)
            if changed:
                self.repository.update_episode_fields(episode_id, EpisodeUpdate(**changed))
                result.updated += 1
                logger.debug(f"Updated episode {episode_id}: {list(changed.keys())}")
            else:
                result.unchanged += 1

        logger.info(
            f"Reconciled podcast {podcast_id}: {result.items_seen} items, "
            f"{result.inserted} inserted, {result.updated} updated, "
            f"{result.unchanged} unchanged, {result.skipped} skipped"
        )
        return result

    def _remote_fields(self, item: ParsedItem) -> Dict[str, Any]:
        return {
            "title": item.title,
            "description": item.description or "",
            "audio_url": item.enclosure.url,
            "mime_type": item.enclosure.mime_type,
            "publish_date": _as_naive_utc(item.publish_date),
            "duration": float(item.duration),
            "file_size": item.enclosure.length,
        }

    def _changed_fields(
        self, existing: Episode, remote: Dict[str, Any], item: ParsedItem
    ) -> Dict[str, Any]:
        """Remote fields whose value differs from the stored row."""
        changed = {}
        for key in REMOTE_EPISODE_FIELDS:
            # An estimated date would move the episode on every refresh
            if key == "publish_date" and item.publish_date_estimated:
                continue
            if getattr(existing, key) != remote[key]:
                changed[key] = remote[key]
        return changed


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert to naive UTC, the form SQLite hands back."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)
