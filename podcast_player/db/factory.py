"""Database factory for creating repository instances."""

import logging
import os
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from ..errors import StorageError
from .repository import PodcastRepositoryInterface, SQLAlchemyPodcastRepository

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./podcast_player.db"


def _prepare_sqlite_path(url) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    database = url.database
    if not database or database == ":memory:":
        return
    parent = os.path.dirname(os.path.abspath(database))
    os.makedirs(parent, exist_ok=True)


def create_repository(
    database_url: Optional[str] = None,
    create_tables: bool = True,
    echo: bool = False,
) -> PodcastRepositoryInterface:
    """
    Open the podcast store.

    If `database_url` is not provided, it is read from the `DATABASE_URL` environment variable; if that is unset, a local SQLite file is used. For SQLite the directory holding the database file is created when missing.

    Parameters:
        database_url (Optional[str]): SQLAlchemy database URL; if None the environment or default is used.
        create_tables (bool): Create missing tables on startup.
        echo (bool): If true, enable SQL statement logging.

    Returns:
        PodcastRepositoryInterface: A repository backed by the resolved URL.

    Raises:
        StorageError: If the URL is invalid or the database cannot be opened.
    """
    if database_url is None:
        database_url = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

    try:
        url = make_url(database_url)
    except ArgumentError as e:
        raise StorageError(f"Invalid database URL: {e}") from e

    if url.get_backend_name() == "sqlite":
        try:
            _prepare_sqlite_path(url)
        except OSError as e:
            raise StorageError(f"Cannot create database directory: {e}") from e

    logger.info(f"Opening {url.get_backend_name()} store: {url.render_as_string(hide_password=True)}")

    return SQLAlchemyPodcastRepository(
        database_url=database_url,
        create_tables=create_tables,
        echo=echo,
    )


def get_database_url_from_config(config) -> str:
    """Database URL from `config`, falling back to the environment and then the default."""
    return getattr(config, "DATABASE_URL", None) or os.getenv(
        "DATABASE_URL", DEFAULT_DATABASE_URL
    )
