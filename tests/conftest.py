"""
Pytest configuration and shared fixtures for podcast-player tests.

Environment variables that the configuration layer reads are cleared so
that tests behave the same regardless of the developer's shell or `.env`.
"""

import os
from datetime import datetime

import pytest

from podcast_player.db.factory import create_repository
from podcast_player.db.models import Episode, Podcast

for _name in list(os.environ):
    if _name.startswith(("PODCAST_", "PLAYBACK_")) or _name in ("DATABASE_URL", "DB_ECHO", "LOG_LEVEL"):
        del os.environ[_name]


SAMPLE_RSS_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">
  <channel>
    <title>Test Podcast</title>
    <description>A podcast for testing</description>
    <link>https://example.com</link>
    <itunes:author>Test Author</itunes:author>
    <itunes:image href="https://example.com/artwork.jpg"/>

    <item>
      <title>Episode 1: Introduction</title>
      <description>The first episode of our podcast.</description>
      <guid>episode-1-guid</guid>
      <pubDate>Mon, 01 Jan 2024 12:00:00 +0000</pubDate>
      <itunes:duration>01:30:00</itunes:duration>
      <enclosure url="https://example.com/ep1.mp3" length="54000000" type="audio/mpeg"/>
    </item>

    <item>
      <title>Episode 2: Deep Dive</title>
      <description><![CDATA[<p>A deeper look at the topic.</p>]]></description>
      <guid>episode-2-guid</guid>
      <pubDate>Mon, 08 Jan 2024 12:00:00 +0000</pubDate>
      <itunes:duration>45:30</itunes:duration>
      <enclosure url="https://example.com/ep2.mp3" length="27000000" type="audio/mpeg"/>
    </item>
  </channel>
</rss>"""


@pytest.fixture
def repository(tmp_path):
    """
    Create a temporary SQLite-backed repository for tests.

    Yields a repository instance configured to use a SQLite file under the provided temporary path and closes the repository when the fixture is torn down.
    """
    db_path = tmp_path / "test.db"
    repo = create_repository(f"sqlite:///{db_path}", create_tables=True)
    yield repo
    repo.close()


@pytest.fixture
def sample_podcast(repository):
    """Persist and return a subscribed sample podcast."""
    return repository.upsert_podcast(
        Podcast(
            id="1001",
            title="Test Podcast",
            author="Test Author",
            description="A test podcast",
            image_url="",
            feed_url="https://example.com/feed.xml",
            is_subscribed=True,
        )
    )


@pytest.fixture
def make_episode(repository, sample_podcast):
    """Factory fixture that persists episodes of the sample podcast."""

    def _make(episode_id="ep-1", **overrides):
        fields = {
            "id": episode_id,
            "podcast_id": sample_podcast.id,
            "title": f"Episode {episode_id}",
            "description": "",
            "audio_url": f"https://example.com/{episode_id}.mp3",
            "mime_type": "audio/mpeg",
            "publish_date": datetime(2024, 1, 1, 12, 0, 0),
            "duration": 600.0,
            "file_size": 1000,
        }
        fields.update(overrides)
        return repository.upsert_episode(Episode(**fields))

    return _make


@pytest.fixture
def sample_feed():
    """Raw bytes of a two-episode RSS feed."""
    return SAMPLE_RSS_FEED
