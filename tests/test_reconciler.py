"""Tests for episode reconciliation."""

import hashlib
from datetime import UTC, datetime
from unittest.mock import patch

import pytest

from podcast_player.db.models import EpisodeUpdate
from podcast_player.errors import StorageError
from podcast_player.podcast.feed_parser import Enclosure, FeedParser, ParsedChannel, ParsedItem
from podcast_player.podcast.reconciler import EpisodeReconciler, episode_identity


def _item(guid, title=None, url=None, **kwargs):
    return ParsedItem(
        title=title or f"Episode {guid or url}",
        guid=guid,
        description=kwargs.pop("description", "About the episode"),
        publish_date=kwargs.pop("publish_date", datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)),
        enclosure=Enclosure(url=url or f"https://example.com/{guid}.mp3", length=1000),
        duration=kwargs.pop("duration", 1800),
        **kwargs,
    )


@pytest.fixture
def reconciler(repository):
    return EpisodeReconciler(repository)


@pytest.fixture
def channel():
    return ParsedChannel(
        title="Test Podcast",
        items=[_item("guid-1"), _item("guid-2")],
    )


class TestEpisodeIdentity:
    """Tests for episode identity derivation."""

    def test_uses_guid(self):
        assert episode_identity(_item("abc")) == "abc"

    def test_empty_guid_falls_back_to_audio_url_hash(self):
        item = _item("", url="https://example.com/x.mp3")
        digest = hashlib.sha1(b"https://example.com/x.mp3").hexdigest()

        assert episode_identity(item) == f"sha1:{digest}"

    def test_no_audio(self):
        assert episode_identity(ParsedItem(title="Text", guid="")) is None


class TestReconcile:
    """Tests for EpisodeReconciler.reconcile."""

    def test_inserts_new_episodes(self, repository, reconciler, sample_podcast, channel):
        result = reconciler.reconcile(sample_podcast.id, channel)

        assert result.items_seen == 2
        assert result.inserted == 2
        assert result.updated == 0
        assert result.skipped == 0

        episode = repository.get_episode("guid-1")
        assert episode.podcast_id == sample_podcast.id
        assert episode.audio_url == "https://example.com/guid-1.mp3"
        assert episode.duration == 1800
        assert episode.file_size == 1000
        assert episode.is_downloaded is False
        assert episode.play_progress == 0
        assert episode.is_played is False

    def test_skips_items_without_audio(self, repository, reconciler, sample_podcast):
        channel = ParsedChannel(
            title="Test Podcast",
            items=[ParsedItem(title="Announcement", guid="text-1"), _item("guid-1")],
        )

        result = reconciler.reconcile(sample_podcast.id, channel)

        assert result.inserted == 1
        assert result.skipped == 1
        assert repository.get_episode("text-1") is None

    def test_inserts_non_audio_enclosures(self, repository, reconciler, sample_podcast):
        channel = FeedParser().parse_bytes(
            b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Video Podcast</title>
    <item>
      <title>Video Episode</title>
      <guid>video-1</guid>
      <enclosure url="https://example.com/video.mp4" length="2048" type="video/mp4"/>
    </item>
    <item>
      <title>Live Stream</title>
      <guid>stream-1</guid>
      <enclosure url="https://example.com/live.m3u8" type="application/x-mpegURL"/>
    </item>
  </channel>
</rss>"""
        )

        result = reconciler.reconcile(sample_podcast.id, channel)

        assert result.inserted == 2
        assert result.skipped == 0
        video = repository.get_episode("video-1")
        assert video.audio_url == "https://example.com/video.mp4"
        assert video.mime_type == "video/mp4"
        assert video.file_size == 2048
        assert repository.get_episode("stream-1").mime_type.lower() == "application/x-mpegurl"

    def test_empty_guids_do_not_collapse(self, repository, reconciler, sample_podcast):
        channel = ParsedChannel(
            title="Test Podcast",
            items=[
                _item("", url="https://example.com/a.mp3"),
                _item("", url="https://example.com/b.mp3"),
            ],
        )

        result = reconciler.reconcile(sample_podcast.id, channel)

        assert result.inserted == 2
        assert len(repository.list_episodes(podcast_id=sample_podcast.id)) == 2

    def test_duplicate_guid_first_occurrence_wins(self, repository, reconciler, sample_podcast):
        channel = ParsedChannel(
            title="Test Podcast",
            items=[_item("dup", title="First"), _item("dup", title="Second")],
        )

        result = reconciler.reconcile(sample_podcast.id, channel)

        assert result.inserted == 1
        assert result.skipped == 1
        assert repository.get_episode("dup").title == "First"

    def test_reconcile_is_idempotent_on_local_fields(
        self, repository, reconciler, sample_podcast, channel, tmp_path
    ):
        """Re-running reconciliation never touches download or playback state."""
        reconciler.reconcile(sample_podcast.id, channel)

        played_at = datetime(2024, 2, 1, 8, 30, 0)
        audio_path = str(tmp_path / "guid-1.mp3")
        repository.update_episode_fields(
            "guid-1",
            EpisodeUpdate(
                is_downloaded=True,
                download_path=audio_path,
                play_progress=321.0,
                is_played=True,
                last_played_date=played_at,
            ),
        )

        result = reconciler.reconcile(sample_podcast.id, channel)

        assert result.inserted == 0
        assert result.updated == 0
        assert result.unchanged == 2

        episode = repository.get_episode("guid-1")
        assert episode.is_downloaded is True
        assert episode.download_path == audio_path
        assert episode.play_progress == 321.0
        assert episode.is_played is True
        assert episode.last_played_date == played_at

    def test_updates_only_remote_fields(self, repository, reconciler, sample_podcast, channel):
        reconciler.reconcile(sample_podcast.id, channel)
        repository.update_episode_fields("guid-1", EpisodeUpdate(play_progress=50.0))

        changed = ParsedChannel(
            title="Test Podcast",
            items=[_item("guid-1", title="Renamed", duration=2000), _item("guid-2")],
        )
        result = reconciler.reconcile(sample_podcast.id, changed)

        assert result.updated == 1
        assert result.unchanged == 1

        episode = repository.get_episode("guid-1")
        assert episode.title == "Renamed"
        assert episode.duration == 2000
        assert episode.play_progress == 50.0

    def test_estimated_date_does_not_overwrite_stored_date(
        self, repository, reconciler, sample_podcast, channel
    ):
        reconciler.reconcile(sample_podcast.id, channel)

        undated = ParsedChannel(
            title="Test Podcast",
            items=[
                _item(
                    "guid-1",
                    publish_date=datetime.now(UTC),
                    publish_date_estimated=True,
                )
            ],
        )
        result = reconciler.reconcile(sample_podcast.id, undated)

        assert result.unchanged == 1
        assert repository.get_episode("guid-1").publish_date == datetime(2024, 1, 1, 12, 0, 0)

    def test_collects_item_warnings(self, reconciler, sample_podcast):
        channel = ParsedChannel(
            title="Test Podcast",
            items=[_item("guid-1", warnings=["Unparseable pubDate 'x'"])],
        )

        result = reconciler.reconcile(sample_podcast.id, channel)

        assert result.warnings == ["Unparseable pubDate 'x'"]

    def test_storage_failure_propagates(self, repository, reconciler, sample_podcast, channel):
        with patch.object(repository, "upsert_episode", side_effect=StorageError("disk full")):
            with pytest.raises(StorageError):
                reconciler.reconcile(sample_podcast.id, channel)
