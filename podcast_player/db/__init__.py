"""Database module for podcast data persistence.

Provides:
- SQLAlchemy ORM models (Podcast, Episode) and the EpisodeUpdate partial update
- Repository interface and implementation
- Factory function for creating repositories
"""

from .factory import create_repository, get_database_url_from_config
from .models import REMOTE_EPISODE_FIELDS, Base, Episode, EpisodeUpdate, Podcast
from .repository import PodcastRepositoryInterface, SQLAlchemyPodcastRepository

__all__ = [
    "Base",
    "Podcast",
    "Episode",
    "EpisodeUpdate",
    "REMOTE_EPISODE_FIELDS",
    "PodcastRepositoryInterface",
    "SQLAlchemyPodcastRepository",
    "create_repository",
    "get_database_url_from_config",
]
