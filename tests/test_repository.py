"""Tests for the podcast repository."""

from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from podcast_player.db.factory import create_repository, get_database_url_from_config
from podcast_player.db.models import EpisodeUpdate, Podcast
from podcast_player.db.repository import SQLAlchemyPodcastRepository
from podcast_player.errors import StorageError, ValidationError


class TestPodcastOperations:
    """Tests for podcast upsert and queries."""

    def test_upsert_and_get_round_trip(self, repository):
        podcast = Podcast(
            id="42",
            title="Round Trip",
            author="Someone",
            description="Description",
            image_url="https://example.com/a.jpg",
            feed_url="https://example.com/feed.xml",
            is_subscribed=True,
        )

        repository.upsert_podcast(podcast)
        retrieved = repository.get_podcast("42")

        assert retrieved is not None
        assert retrieved.title == "Round Trip"
        assert retrieved.author == "Someone"
        assert retrieved.description == "Description"
        assert retrieved.image_url == "https://example.com/a.jpg"
        assert retrieved.feed_url == "https://example.com/feed.xml"
        assert retrieved.is_subscribed is True

    def test_upsert_overwrites_existing(self, repository, sample_podcast):
        repository.upsert_podcast(Podcast(id=sample_podcast.id, title="New Title"))

        retrieved = repository.get_podcast(sample_podcast.id)
        assert retrieved.title == "New Title"
        assert retrieved.author == "Test Author"

    def test_get_nonexistent_podcast(self, repository):
        assert repository.get_podcast("nonexistent-id") is None

    def test_list_podcasts_filters_and_orders(self, repository):
        repository.upsert_podcast(Podcast(id="2", title="Beta", is_subscribed=True))
        repository.upsert_podcast(Podcast(id="1", title="Alpha", is_subscribed=True))
        repository.upsert_podcast(Podcast(id="3", title="Gamma", is_subscribed=False))

        assert [p.title for p in repository.list_podcasts()] == ["Alpha", "Beta", "Gamma"]
        assert [p.title for p in repository.list_podcasts(subscribed=True)] == ["Alpha", "Beta"]
        assert [p.title for p in repository.list_podcasts(subscribed=False)] == ["Gamma"]
        assert len(repository.list_podcasts(limit=1)) == 1

    def test_update_podcast(self, repository, sample_podcast):
        updated = repository.update_podcast(sample_podcast.id, title="Updated", unknown_field="x")

        assert updated.title == "Updated"
        assert repository.update_podcast("missing", title="x") is None


class TestEpisodeOperations:
    """Tests for episode persistence."""

    def test_get_episode_loads_podcast(self, repository, make_episode, sample_podcast):
        make_episode("ep-1")

        episode = repository.get_episode("ep-1")

        assert episode.podcast.title == sample_podcast.title

    def test_list_episodes_newest_first(self, repository, make_episode):
        make_episode("old", publish_date=datetime(2023, 1, 1))
        make_episode("new", publish_date=datetime(2024, 6, 1))
        make_episode("mid", publish_date=datetime(2023, 6, 1))

        assert [e.id for e in repository.list_episodes()] == ["new", "mid", "old"]
        assert len(repository.list_episodes(limit=2)) == 2

    def test_list_episodes_filters(self, repository, make_episode, tmp_path):
        make_episode("a")
        make_episode("b")
        repository.update_episode_fields(
            "a", EpisodeUpdate(is_downloaded=True, download_path=str(tmp_path / "a.mp3"))
        )
        repository.update_episode_fields("b", EpisodeUpdate(is_played=True))

        assert [e.id for e in repository.list_episodes(downloaded=True)] == ["a"]
        assert [e.id for e in repository.list_episodes(played=False)] == ["a"]
        assert repository.list_episodes(podcast_id="other") == []


class TestPartialUpdates:
    """Tests for update_episode_fields."""

    def test_download_update_leaves_playback_fields(self, repository, make_episode, tmp_path):
        """Concurrent download and playback writes never clobber each other."""
        make_episode("ep-1")
        repository.update_episode_fields("ep-1", EpisodeUpdate(play_progress=77.0))

        repository.update_episode_fields(
            "ep-1", EpisodeUpdate(is_downloaded=True, download_path=str(tmp_path / "x.mp3"))
        )

        episode = repository.get_episode("ep-1")
        assert episode.play_progress == 77.0
        assert episode.is_downloaded is True

    def test_playback_update_leaves_download_fields(self, repository, make_episode, tmp_path):
        make_episode("ep-1")
        path = str(tmp_path / "x.mp3")
        repository.update_episode_fields("ep-1", EpisodeUpdate(is_downloaded=True, download_path=path))

        repository.update_episode_fields("ep-1", EpisodeUpdate(play_progress=12.5, is_played=False))

        episode = repository.get_episode("ep-1")
        assert episode.download_path == path
        assert episode.is_downloaded is True
        assert episode.play_progress == 12.5

    def test_explicit_none_clears_field(self, repository, make_episode, tmp_path):
        make_episode("ep-1")
        repository.update_episode_fields(
            "ep-1", EpisodeUpdate(is_downloaded=True, download_path=str(tmp_path / "x.mp3"))
        )

        repository.update_episode_fields(
            "ep-1", EpisodeUpdate(is_downloaded=False, download_path=None)
        )

        episode = repository.get_episode("ep-1")
        assert episode.download_path is None
        assert episode.is_downloaded is False

    def test_rejects_downloaded_without_path(self, repository, make_episode):
        make_episode("ep-1")

        with pytest.raises(ValidationError):
            repository.update_episode_fields("ep-1", EpisodeUpdate(is_downloaded=True))

        assert repository.get_episode("ep-1").is_downloaded is False

    def test_missing_episode(self, repository):
        assert repository.update_episode_fields("nope", EpisodeUpdate(is_played=True)) is None

    def test_update_model_rejects_unknown_and_negative(self):
        with pytest.raises(ValueError):
            EpisodeUpdate(unknown=True)
        with pytest.raises(ValueError):
            EpisodeUpdate(play_progress=-1)

    def test_changes_only_contains_set_fields(self):
        assert EpisodeUpdate(download_path=None).changes() == {"download_path": None}


class TestHistoryQueries:
    """Tests for listening history queries."""

    def test_recently_played(self, repository, make_episode):
        for index in range(12):
            make_episode(f"ep-{index}")
            repository.update_episode_fields(
                f"ep-{index}",
                EpisodeUpdate(last_played_date=datetime(2024, 1, index + 1)),
            )
        make_episode("never-played")

        recent = repository.list_recently_played()

        assert len(recent) == 10
        assert recent[0].id == "ep-11"
        assert "never-played" not in [e.id for e in recent]

    def test_in_progress(self, repository, make_episode):
        make_episode("started")
        make_episode("finished")
        make_episode("untouched")
        repository.update_episode_fields(
            "started", EpisodeUpdate(play_progress=30.0, last_played_date=datetime(2024, 1, 2))
        )
        repository.update_episode_fields(
            "finished", EpisodeUpdate(play_progress=30.0, is_played=True)
        )

        assert [e.id for e in repository.list_in_progress()] == ["started"]

    def test_reset_playback_history(self, repository, make_episode):
        make_episode("a")
        make_episode("b")
        repository.update_episode_fields(
            "a",
            EpisodeUpdate(play_progress=10.0, is_played=True, last_played_date=datetime(2024, 1, 1)),
        )

        count = repository.reset_playback_history()

        assert count == 2
        episode = repository.get_episode("a")
        assert episode.play_progress == 0
        assert episode.is_played is False
        assert episode.last_played_date is None


class TestUnsubscribe:
    """Tests for unsubscribe cleanup."""

    def test_unsubscribe_removes_downloads_and_keeps_rows(
        self, repository, sample_podcast, make_episode, tmp_path
    ):
        for index in range(3):
            make_episode(f"ep-{index}")
        for index in range(2):
            path = tmp_path / f"ep-{index}.mp3"
            path.write_bytes(b"audio")
            repository.update_episode_fields(
                f"ep-{index}", EpisodeUpdate(is_downloaded=True, download_path=str(path))
            )

        removed = repository.unsubscribe(sample_podcast.id)

        assert removed == 2
        assert not (tmp_path / "ep-0.mp3").exists()
        assert not (tmp_path / "ep-1.mp3").exists()
        assert repository.get_podcast(sample_podcast.id).is_subscribed is False

        episodes = repository.list_episodes(podcast_id=sample_podcast.id)
        assert len(episodes) == 3
        assert all(not e.is_downloaded and e.download_path is None for e in episodes)

    def test_unsubscribe_tolerates_missing_files(
        self, repository, sample_podcast, make_episode, tmp_path
    ):
        make_episode("ep-1")
        repository.update_episode_fields(
            "ep-1", EpisodeUpdate(is_downloaded=True, download_path=str(tmp_path / "gone.mp3"))
        )

        removed = repository.unsubscribe(sample_podcast.id)

        assert removed == 0
        assert repository.get_episode("ep-1").is_downloaded is False

    def test_unsubscribe_unknown_podcast(self, repository):
        assert repository.unsubscribe("missing") == 0


class TestDownloadSize:
    """Tests for total_download_size."""

    def test_sums_downloaded_episodes(self, repository, make_episode, tmp_path):
        make_episode("a", file_size=1000)
        make_episode("b", file_size=2500)
        make_episode("c", file_size=9999)
        for episode_id in ("a", "b"):
            repository.update_episode_fields(
                episode_id,
                EpisodeUpdate(is_downloaded=True, download_path=str(tmp_path / episode_id)),
            )

        assert repository.total_download_size() == 3500

    def test_empty(self, repository):
        assert repository.total_download_size() == 0


class TestStorageErrors:
    """Tests for storage failure translation."""

    def test_unopenable_database(self, tmp_path):
        bad_url = f"sqlite:///{tmp_path / 'missing-dir' / 'db.sqlite'}"

        with pytest.raises(StorageError):
            SQLAlchemyPodcastRepository(bad_url)

    def test_sqlalchemy_errors_become_storage_errors(self, repository):
        with patch.object(repository, "SessionLocal") as session_factory:
            session = session_factory.return_value
            session.scalars.side_effect = OperationalError("SELECT", {}, Exception("locked"))

            with pytest.raises(StorageError):
                repository.list_podcasts()

            session.rollback.assert_called_once()
            session.close.assert_called_once()


class TestFactory:
    """Tests for repository factory helpers."""

    def test_create_repository_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'env.db'}")

        repo = create_repository()
        try:
            assert repo.database_url.endswith("env.db")
        finally:
            repo.close()

    def test_database_url_from_config(self):
        class FakeConfig:
            DATABASE_URL = "sqlite:///./custom.db"

        assert get_database_url_from_config(FakeConfig()) == "sqlite:///./custom.db"

    def test_creates_missing_sqlite_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "library.db"

        repo = create_repository(f"sqlite:///{db_path}")
        try:
            assert db_path.parent.is_dir()
            assert repo.list_podcasts() == []
        finally:
            repo.close()

    def test_invalid_url(self):
        with pytest.raises(StorageError):
            create_repository("not a database url")
