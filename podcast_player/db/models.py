"""SQLAlchemy ORM models for podcast and episode data."""

from datetime import UTC, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    def as_dict(self) -> Dict[str, Any]:
        """Return the mapped column values keyed by attribute name."""
        return {column.key: getattr(self, column.key) for column in self.__table__.columns}


class Podcast(Base):
    """Podcast model.

    Identity is the external identifier handed out by the search API.
    Unsubscribing is a soft flag; rows are never deleted so listening
    history survives.
    """

    __tablename__ = "podcasts"

    # Stable external identifier (e.g. iTunes collectionId)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Metadata from search result / RSS feed
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    author: Mapped[str] = mapped_column(String(512), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    image_url: Mapped[str] = mapped_column(String(2048), default="")
    feed_url: Mapped[str] = mapped_column(String(2048), default="")

    # Subscription management
    is_subscribed: Mapped[bool] = mapped_column(Boolean, default=False)
    last_checked: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    episodes: Mapped[List["Episode"]] = relationship(
        "Episode", back_populates="podcast"
    )

    __table_args__ = (Index("ix_podcasts_is_subscribed", "is_subscribed"),)

    def __repr__(self) -> str:
        return f"<Podcast(id={self.id}, title={self.title!r})>"


class Episode(Base):
    """Episode model.

    Remote fields come from the feed and are refreshed by reconciliation.
    Download fields (`is_downloaded`, `download_path`) belong to the
    download manager and playback fields (`play_progress`, `is_played`,
    `last_played_date`) to the playback session; both are written only
    through narrow partial updates.
    """

    __tablename__ = "episodes"

    # Feed GUID, or a synthesized fallback when the feed GUID is empty
    id: Mapped[str] = mapped_column(String(2048), primary_key=True)
    podcast_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("podcasts.id"), nullable=False
    )

    # Metadata from RSS feed
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    audio_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    mime_type: Mapped[Optional[str]] = mapped_column(String(64))
    publish_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    duration: Mapped[float] = mapped_column(Float, default=0.0)  # seconds
    file_size: Mapped[int] = mapped_column(Integer, default=0)  # bytes

    # Download state
    is_downloaded: Mapped[bool] = mapped_column(Boolean, default=False)
    download_path: Mapped[Optional[str]] = mapped_column(String(1024))

    # Playback state
    play_progress: Mapped[float] = mapped_column(Float, default=0.0)  # seconds
    is_played: Mapped[bool] = mapped_column(Boolean, default=False)
    last_played_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    podcast: Mapped["Podcast"] = relationship("Podcast", back_populates="episodes")

    __table_args__ = (
        Index("ix_episodes_podcast_id", "podcast_id"),
        Index("ix_episodes_publish_date", "publish_date"),
        Index("ix_episodes_is_downloaded", "is_downloaded"),
    )

    def __repr__(self) -> str:
        return f"<Episode(id={self.id}, title={self.title!r})>"

    @property
    def is_in_progress(self) -> bool:
        """Whether playback has started but the episode is not finished."""
        return (self.play_progress or 0) > 0 and not self.is_played


# Fields the feed owns; reconciliation may overwrite these.
REMOTE_EPISODE_FIELDS = (
    "title",
    "description",
    "audio_url",
    "mime_type",
    "publish_date",
    "duration",
    "file_size",
)


class EpisodeUpdate(BaseModel):
    """Partial update for an episode.

    Only fields that were explicitly set are applied, so an explicit
    `download_path=None` clears the path while omitted fields are left
    untouched.
    """

    model_config = ConfigDict(extra="forbid")

    # Remote fields
    title: Optional[str] = None
    description: Optional[str] = None
    audio_url: Optional[str] = None
    mime_type: Optional[str] = None
    publish_date: Optional[datetime] = None
    duration: Optional[float] = Field(default=None, ge=0)
    file_size: Optional[int] = Field(default=None, ge=0)

    # Download fields
    is_downloaded: Optional[bool] = None
    download_path: Optional[str] = None

    # Playback fields
    play_progress: Optional[float] = Field(default=None, ge=0)
    is_played: Optional[bool] = None
    last_played_date: Optional[datetime] = None

    def changes(self) -> Dict[str, Any]:
        """Return only the explicitly set fields."""
        return self.model_dump(exclude_unset=True)
