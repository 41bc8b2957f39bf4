"""Repository pattern implementation for podcast data persistence.

Provides an abstract interface and SQLAlchemy implementation for the
subscription store. The repository is the single owner of durable podcast
and episode rows; other components write back through its narrow update
API.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Iterator, List, Optional

from sqlalchemy import create_engine, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, sessionmaker

from ..errors import StorageError, ValidationError
from ..utils.files import remove_file
from .models import Base, Episode, EpisodeUpdate, Podcast

logger = logging.getLogger(__name__)


class PodcastRepositoryInterface(ABC):
    """Abstract interface for podcast data persistence.

    All methods are synchronous with respect to the caller and raise
    `StorageError` when the underlying storage fails.
    """

    # --- Podcast Operations ---

    @abstractmethod
    def upsert_podcast(self, podcast: Podcast) -> Podcast:
        """
        Insert the podcast, or overwrite the stored row with the same `id`.

        Only attributes set on the given instance are written when the row already exists.

        Returns:
            Podcast: The persisted podcast.
        """
        pass

    @abstractmethod
    def get_podcast(self, podcast_id: str) -> Optional[Podcast]:
        """
        Retrieve a podcast by its identifier.

        Returns:
            Podcast if a podcast with the given ID exists, `None` otherwise.
        """
        pass

    @abstractmethod
    def list_podcasts(
        self, subscribed: Optional[bool] = None, limit: Optional[int] = None
    ) -> List[Podcast]:
        """
        Return podcasts ordered by title.

        Parameters:
            subscribed (Optional[bool]): Filter on `is_subscribed` when not `None`.
            limit (Optional[int]): Maximum number of podcasts to return.
        """
        pass

    @abstractmethod
    def update_podcast(self, podcast_id: str, **kwargs) -> Optional[Podcast]:
        """
        Update attributes of an existing podcast.

        Returns:
            Optional[Podcast]: The updated podcast, or `None` if it does not exist.
        """
        pass

    @abstractmethod
    def unsubscribe(self, podcast_id: str) -> int:
        """
        Mark a podcast as unsubscribed and remove its downloaded audio.

        Episode rows are kept so listening history is preserved; only their download fields are cleared.

        Returns:
            int: Number of audio files removed from disk.
        """
        pass

    # --- Episode Operations ---

    @abstractmethod
    def upsert_episode(self, episode: Episode) -> Episode:
        """Insert an episode or fully overwrite the stored row with the same `id`."""
        pass

    @abstractmethod
    def get_episode(self, episode_id: str) -> Optional[Episode]:
        """Retrieve an episode by its ID, or `None`."""
        pass

    @abstractmethod
    def update_episode_fields(
        self, episode_id: str, changes: EpisodeUpdate
    ) -> Optional[Episode]:
        """
        Apply a partial update to an episode.

        Only the fields explicitly set on `changes` are written; every other column keeps its stored value.

        Parameters:
            episode_id (str): Primary key of the episode.
            changes (EpisodeUpdate): Fields to write.

        Returns:
            Optional[Episode]: The updated episode, or `None` if no episode with `episode_id` exists.

        Raises:
            ValidationError: If the result would mark the episode downloaded without a download path.
        """
        pass

    @abstractmethod
    def list_episodes(
        self,
        podcast_id: Optional[str] = None,
        downloaded: Optional[bool] = None,
        played: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> List[Episode]:
        """
        List episodes, newest first.

        Parameters:
            podcast_id (Optional[str]): Restrict to one podcast.
            downloaded (Optional[bool]): Filter on `is_downloaded` when not `None`.
            played (Optional[bool]): Filter on `is_played` when not `None`.
            limit (Optional[int]): Maximum number of episodes to return.

        Returns:
            List[Episode]: Matching episodes ordered by publish date descending.
        """
        pass

    @abstractmethod
    def list_recently_played(self, limit: int = 10) -> List[Episode]:
        """Episodes with a last-played date, most recent first."""
        pass

    @abstractmethod
    def list_in_progress(self) -> List[Episode]:
        """Episodes that have been started but not finished."""
        pass

    @abstractmethod
    def reset_playback_history(self) -> int:
        """
        Clear `is_played`, `play_progress` and `last_played_date` on every episode.

        Returns:
            int: Number of episode rows touched.
        """
        pass

    @abstractmethod
    def total_download_size(self) -> int:
        """Sum of recorded `file_size` over all downloaded episodes, in bytes."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release all database connections held by the repository."""
        pass


class SQLAlchemyPodcastRepository(PodcastRepositoryInterface):
    """SQLAlchemy-based implementation of the podcast repository.

    Intended for a local SQLite file; any SQLAlchemy URL works.
    """

    def __init__(
        self,
        database_url: str,
        create_tables: bool = True,
        echo: bool = False,
    ):
        """
        Initialize the repository, configure its engine and verify the database can be opened.

        Parameters:
            database_url (str): SQLAlchemy-compatible database URL.
            create_tables (bool): Create missing tables on startup.
            echo (bool): If true, enable SQLAlchemy SQL statement logging.

        Raises:
            StorageError: If the database cannot be opened or the schema cannot be created.
        """
        self.database_url = database_url

        # SQLite connections are shared across download worker threads
        if database_url.startswith("sqlite"):
            self.engine = create_engine(
                database_url,
                echo=echo,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(database_url, echo=echo)

        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        try:
            if create_tables:
                Base.metadata.create_all(self.engine)
            else:
                with self.engine.connect():
                    pass
        except SQLAlchemyError as e:
            self.engine.dispose()
            raise StorageError(f"Failed to open database: {e}") from e

        logger.info(f"Database initialized: {database_url.split('@')[-1] if '@' in database_url else database_url}")

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """
        Provide a session for one unit of work, translating storage failures into `StorageError`.

        The session is rolled back on failure and always closed.
        """
        session = self.SessionLocal()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Storage operation failed: {e}")
            raise StorageError(str(e)) from e
        finally:
            session.close()

    # --- Podcast Operations ---

    def upsert_podcast(self, podcast: Podcast) -> Podcast:
        with self._session_scope() as session:
            merged = session.merge(podcast)
            session.commit()
            session.refresh(merged)
            logger.debug(f"Upserted podcast: {merged.title} ({merged.id})")
            return merged

    def get_podcast(self, podcast_id: str) -> Optional[Podcast]:
        with self._session_scope() as session:
            return session.get(Podcast, podcast_id)

    def list_podcasts(
        self, subscribed: Optional[bool] = None, limit: Optional[int] = None
    ) -> List[Podcast]:
        with self._session_scope() as session:
            stmt = select(Podcast)
            if subscribed is not None:
                stmt = stmt.where(Podcast.is_subscribed.is_(subscribed))
            stmt = stmt.order_by(Podcast.title)
            if limit:
                stmt = stmt.limit(limit)
            return list(session.scalars(stmt).all())

    def update_podcast(self, podcast_id: str, **kwargs) -> Optional[Podcast]:
        """
        Update attributes of an existing podcast.

        Only attributes that exist on the Podcast model are set from `kwargs`.
        """
        with self._session_scope() as session:
            podcast = session.get(Podcast, podcast_id)
            if podcast:
                for key, value in kwargs.items():
                    if hasattr(podcast, key):
                        setattr(podcast, key, value)
                session.commit()
                session.refresh(podcast)
                logger.debug(f"Updated podcast {podcast_id}: {list(kwargs.keys())}")
            return podcast

    def unsubscribe(self, podcast_id: str) -> int:
        """
        Mark a podcast as unsubscribed and clean up its downloaded audio.

        The subscription flag and the cleared download fields are committed in one transaction. Files are removed only after the commit succeeds, so a storage failure leaves both the rows and the files untouched.
        """
        with self._session_scope() as session:
            podcast = session.get(Podcast, podcast_id)
            if not podcast:
                return 0

            stmt = select(Episode).where(
                Episode.podcast_id == podcast_id,
                Episode.download_path.isnot(None),
            )
            downloaded = list(session.scalars(stmt).all())
            paths = [episode.download_path for episode in downloaded]

            podcast.is_subscribed = False
            for episode in downloaded:
                episode.is_downloaded = False
                episode.download_path = None

            session.commit()

        removed = sum(1 for path in paths if remove_file(path))
        logger.info(
            f"Unsubscribed from podcast {podcast_id}: "
            f"cleared {len(paths)} downloads, removed {removed} files"
        )
        return removed

    # --- Episode Operations ---

    def upsert_episode(self, episode: Episode) -> Episode:
        with self._session_scope() as session:
            merged = session.merge(episode)
            session.commit()
            session.refresh(merged)
            logger.debug(f"Upserted episode: {merged.title} ({merged.id})")
            return merged

    def get_episode(self, episode_id: str) -> Optional[Episode]:
        with self._session_scope() as session:
            stmt = (
                select(Episode)
                .options(joinedload(Episode.podcast))
                .where(Episode.id == episode_id)
            )
            return session.scalars(stmt).unique().first()

    def update_episode_fields(
        self, episode_id: str, changes: EpisodeUpdate
    ) -> Optional[Episode]:
        fields = changes.changes()
        with self._session_scope() as session:
            episode = session.get(Episode, episode_id)
            if not episode:
                logger.debug(f"Episode not found for update: {episode_id}")
                return None

            is_downloaded = fields.get("is_downloaded", episode.is_downloaded)
            download_path = fields.get("download_path", episode.download_path)
            if is_downloaded and not download_path:
                raise ValidationError(
                    f"Episode {episode_id} cannot be marked downloaded without a download path"
                )

            for key, value in fields.items():
                setattr(episode, key, value)
            session.commit()
            session.refresh(episode)
            logger.debug(f"Updated episode {episode_id}: {list(fields.keys())}")
            return episode

    def list_episodes(
        self,
        podcast_id: Optional[str] = None,
        downloaded: Optional[bool] = None,
        played: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> List[Episode]:
        with self._session_scope() as session:
            stmt = select(Episode)

            if podcast_id:
                stmt = stmt.where(Episode.podcast_id == podcast_id)
            if downloaded is not None:
                stmt = stmt.where(Episode.is_downloaded.is_(downloaded))
            if played is not None:
                stmt = stmt.where(Episode.is_played.is_(played))

            stmt = stmt.order_by(Episode.publish_date.desc())
            if limit:
                stmt = stmt.limit(limit)

            return list(session.scalars(stmt).all())

    def list_recently_played(self, limit: int = 10) -> List[Episode]:
        with self._session_scope() as session:
            stmt = (
                select(Episode)
                .where(Episode.last_played_date.isnot(None))
                .order_by(Episode.last_played_date.desc())
                .limit(limit)
            )
            return list(session.scalars(stmt).all())

    def list_in_progress(self) -> List[Episode]:
        with self._session_scope() as session:
            stmt = (
                select(Episode)
                .where(Episode.play_progress > 0, Episode.is_played.is_(False))
                .order_by(Episode.last_played_date.desc())
            )
            return list(session.scalars(stmt).all())

    def reset_playback_history(self) -> int:
        with self._session_scope() as session:
            result = session.execute(
                update(Episode).values(
                    is_played=False,
                    play_progress=0.0,
                    last_played_date=None,
                    updated_at=datetime.now(UTC),
                )
            )
            session.commit()
            logger.info(f"Reset playback history for {result.rowcount} episodes")
            return result.rowcount

    def total_download_size(self) -> int:
        with self._session_scope() as session:
            stmt = select(func.coalesce(func.sum(Episode.file_size), 0)).where(
                Episode.is_downloaded.is_(True)
            )
            return int(session.scalar(stmt))

    # --- Connection Management ---

    def close(self) -> None:
        """
        Dispose the SQLAlchemy engine and release database connections and resources.
        """
        self.engine.dispose()
        logger.info("Database connection closed")
