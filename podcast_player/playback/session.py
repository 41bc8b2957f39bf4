"""Playback session.

Drives an `AudioTransport` for one episode at a time and writes playback
progress back to the store. Every mutation runs under a single re-entrant
lock, so transport callbacks, audio focus events, remote commands and user
calls may arrive from any thread.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Callable, List, Optional

from ..db.models import Episode, EpisodeUpdate, Podcast
from ..db.repository import PodcastRepositoryInterface
from ..errors import PlaybackError, StorageError, ValidationError
from .audio_focus import AudioFocus, AudioFocusListener
from .now_playing import NowPlayingCenter, NowPlayingInfo, fetch_artwork
from .remote import RemoteCommand
from .transport import AudioTransport, TransportListener

logger = logging.getLogger(__name__)

ALLOWED_PLAYBACK_RATES = (0.5, 0.8, 1.0, 1.2, 1.5, 2.0)


class PlaybackStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PlaybackState:
    """Snapshot of the session handed to listeners and UI code."""

    current_episode: Optional[Episode]
    status: PlaybackStatus
    current_time: float
    duration: float
    playback_rate: float
    last_error: Optional[Exception] = None

    @property
    def is_playing(self) -> bool:
        return self.status == PlaybackStatus.PLAYING

    @property
    def is_loading(self) -> bool:
        return self.status == PlaybackStatus.LOADING


class PlaybackSession(TransportListener, AudioFocusListener):
    """Playback state machine for a single episode at a time.

    Statuses move IDLE -> LOADING -> PLAYING/PAUSED -> COMPLETED -> IDLE;
    FAILED is reached when the source cannot be loaded. Progress is saved
    on pause, seek, stop and whenever playback enters a new save interval.

    Example:
        session = PlaybackSession(repository, transport, now_playing=center)
        session.play(episode)
        ...
        session.pause()
    """

    def __init__(
        self,
        repository: PodcastRepositoryInterface,
        transport: AudioTransport,
        now_playing: Optional[NowPlayingCenter] = None,
        artwork_loader: Optional[Callable[[str], Optional[bytes]]] = None,
        clock: Callable[[], float] = time.monotonic,
        progress_save_interval: int = 5,
        skip_forward_seconds: float = 30,
        skip_backward_seconds: float = 15,
        audio_focus: Optional[AudioFocus] = None,
    ):
        """
        Create a playback session.

        Parameters:
            repository (PodcastRepositoryInterface): Store used to read episodes and write progress.
            transport (AudioTransport): Media player driven by the session.
            now_playing (Optional[NowPlayingCenter]): System media controls to keep in sync.
            artwork_loader (Optional[Callable]): Loads artwork bytes for a URL; defaults to `fetch_artwork`.
            clock (Callable[[], float]): Monotonic clock used to order user actions and ticks.
            progress_save_interval (int): Seconds of media time between progress saves while playing.
            skip_forward_seconds (float): Step of `skip_forward`.
            skip_backward_seconds (float): Step of `skip_backward`.
            audio_focus (Optional[AudioFocus]): Focus dispatcher to subscribe to.
        """
        if progress_save_interval < 1:
            raise ValidationError(
                f"progress_save_interval must be at least 1, got {progress_save_interval}"
            )

        self.repository = repository
        self.transport = transport
        self.now_playing = now_playing
        self.artwork_loader = artwork_loader or fetch_artwork
        self.clock = clock
        self.progress_save_interval = progress_save_interval
        self.skip_forward_seconds = skip_forward_seconds
        self.skip_backward_seconds = skip_backward_seconds

        self._lock = threading.RLock()
        self._listeners: List[Callable[[PlaybackState], None]] = []

        self._episode: Optional[Episode] = None
        self._podcast: Optional[Podcast] = None
        self._status = PlaybackStatus.IDLE
        self._current_time = 0.0
        self._duration = 0.0
        self._rate = 1.0
        self._last_error: Optional[Exception] = None
        self._source_ready = False
        self._saved_bucket: Optional[int] = None
        self._last_user_action = float("-inf")
        self._resume_after_focus = False
        self._pause_when_ready = False
        self._artwork: Optional[bytes] = None
        self._generation = 0

        self.audio_focus = audio_focus
        if audio_focus is not None:
            audio_focus.register(self)

    # --- State ---

    @property
    def state(self) -> PlaybackState:
        with self._lock:
            return self._snapshot()

    @property
    def is_playing(self) -> bool:
        with self._lock:
            return self._status == PlaybackStatus.PLAYING

    def add_listener(self, callback: Callable[[PlaybackState], None]) -> None:
        """
        Register a callback that receives a `PlaybackState` after every change.

        Callbacks run on the thread that caused the change, with the session lock held, and must not block.
        """
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[PlaybackState], None]) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    # --- User controls ---

    def play(self, episode: Episode) -> None:
        """
        Start playing `episode`, resuming from its stored progress.

        The current episode is stopped first and its progress saved. The stored row is re-read so that the latest progress and download state are used; the local file is preferred when the episode is downloaded.

        Raises:
            PlaybackError: If the episode has no playable source; the session is left in FAILED.
        """
        with self._lock:
            self._stop_locked()
            self._mark_user_action()

            current = self._load_stored_episode(episode)
            self._episode = current
            self._podcast = self._load_podcast(current.podcast_id)
            self._duration = float(current.duration or 0.0)
            self._current_time = max(float(current.play_progress or 0.0), 0.0)
            self._last_error = None
            self._artwork = None

            source = self._select_source(current)
            if not source:
                error = PlaybackError(f"Episode {current.id} has no audio source")
                self._status = PlaybackStatus.FAILED
                self._last_error = error
                logger.error(str(error))
                self._notify()
                raise error

            self._status = PlaybackStatus.LOADING
            logger.info(f"Loading episode '{current.title}' from {source}")
            self._notify()
            self._publish_full_info()
            self._start_artwork_load()

            try:
                self.transport.load(source, self)
            except PlaybackError as e:
                self.on_source_failed(e)

    def pause(self) -> bool:
        """
        Pause playback and save progress before returning.

        Returns:
            bool: `True` if playback was paused, `False` if nothing was playing.
        """
        with self._lock:
            if self._status != PlaybackStatus.PLAYING:
                return False

            self._mark_user_action()
            self.transport.pause()
            self._status = PlaybackStatus.PAUSED
            self._persist_progress()
            self._publish_timing()
            logger.debug(f"Paused at {self._current_time:.1f}s")
            self._notify()
            return True

    def resume(self) -> bool:
        """
        Continue playback of the current episode.

        Also replays a completed episode from the start.

        Returns:
            bool: `True` if playback resumed.
        """
        with self._lock:
            if self._episode is None or not self._source_ready:
                return False
            if self._status not in (PlaybackStatus.PAUSED, PlaybackStatus.IDLE):
                return False

            self._mark_user_action()
            self.transport.set_rate(self._rate)
            self.transport.play()
            self._status = PlaybackStatus.PLAYING
            self._publish_timing()
            logger.debug(f"Resumed at {self._current_time:.1f}s")
            self._notify()
            return True

    def toggle_playback(self) -> bool:
        with self._lock:
            if self._status == PlaybackStatus.PLAYING:
                return self.pause()
            return self.resume()

    def stop(self) -> None:
        """Stop playback, save progress and release the transport."""
        with self._lock:
            self._mark_user_action()
            self._stop_locked()
            self._notify()

    def seek(self, position: float) -> bool:
        """
        Move to `position` seconds, clamped to the episode, and save progress.

        Returns:
            bool: `False` if no source is ready.
        """
        with self._lock:
            if self._episode is None or not self._source_ready:
                return False

            self._mark_user_action()
            target = self._clamp(position)
            self.transport.seek(target)
            self._current_time = target
            self._saved_bucket = self._bucket(target)
            self._persist_progress()
            self._publish_timing()
            self._notify()
            return True

    def skip_forward(self) -> bool:
        with self._lock:
            return self.seek(self._current_time + self.skip_forward_seconds)

    def skip_backward(self) -> bool:
        with self._lock:
            return self.seek(self._current_time - self.skip_backward_seconds)

    def set_playback_rate(self, rate: float) -> None:
        """
        Change the playback rate.

        Rates outside the offered set are still applied.

        Raises:
            ValidationError: If `rate` is not positive.
        """
        if rate is None or rate <= 0:
            raise ValidationError(f"Playback rate must be positive, got {rate}")
        if rate not in ALLOWED_PLAYBACK_RATES:
            logger.debug(f"Non-standard playback rate {rate}")

        with self._lock:
            self._rate = float(rate)
            if self._source_ready:
                self.transport.set_rate(self._rate)
            self._publish_timing()
            self._notify()

    # --- Transport events ---

    def on_source_ready(self, duration: Optional[float]) -> None:
        with self._lock:
            if self._status != PlaybackStatus.LOADING or self._episode is None:
                logger.debug("Ignoring source-ready outside of loading")
                return

            if duration and duration > 0:
                self._duration = float(duration)
            self._current_time = self._clamp(self._current_time)
            self._source_ready = True
            self._saved_bucket = self._bucket(self._current_time)

            if self._current_time > 0:
                self.transport.seek(self._current_time)
            self.transport.set_rate(self._rate)

            if self._pause_when_ready:
                # Focus or output was lost while loading
                self._pause_when_ready = False
                self._status = PlaybackStatus.PAUSED
                logger.info(
                    f"Loaded '{self._episode.title}' paused at {self._current_time:.1f}s"
                )
            else:
                self.transport.play()
                self._status = PlaybackStatus.PLAYING
                logger.info(
                    f"Playing '{self._episode.title}' from {self._current_time:.1f}s "
                    f"of {self._duration:.1f}s"
                )
            self._publish_full_info()
            self._notify()

    def on_source_failed(self, error: Exception) -> None:
        with self._lock:
            if self._episode is None or self._status == PlaybackStatus.IDLE:
                return

            if not isinstance(error, PlaybackError):
                error = PlaybackError(str(error))
            logger.error(f"Playback failed for {self._episode.id}: {error}")
            self._status = PlaybackStatus.FAILED
            self._last_error = error
            self._source_ready = False
            self._notify()

    def on_tick(self, media_time: float, observed_at: Optional[float] = None) -> None:
        with self._lock:
            if self._status != PlaybackStatus.PLAYING:
                return

            observed = self.clock() if observed_at is None else observed_at
            if observed < self._last_user_action:
                logger.debug(f"Dropping stale tick at {media_time:.1f}s")
                return

            self._current_time = self._clamp(media_time)
            self._publish_timing()

            bucket = self._bucket(self._current_time)
            if bucket != self._saved_bucket:
                self._saved_bucket = bucket
                self._persist_progress()

            self._notify()

    def on_end_of_media(self) -> None:
        with self._lock:
            if self._episode is None or not self._source_ready:
                return

            self._status = PlaybackStatus.COMPLETED
            self._notify()

            self._write_episode(
                EpisodeUpdate(
                    is_played=True,
                    play_progress=0.0,
                    last_played_date=datetime.now(UTC),
                )
            )
            self._current_time = 0.0
            self._saved_bucket = 0
            self.transport.seek(0.0)
            self._status = PlaybackStatus.IDLE

            logger.info(f"Finished episode '{self._episode.title}'")
            self._publish_timing()
            self._notify()

    # --- Audio focus events ---

    def on_focus_lost(self) -> None:
        with self._lock:
            if self._status == PlaybackStatus.LOADING:
                self._pause_when_ready = True
                self._resume_after_focus = True
                return
            self._resume_after_focus = self._status == PlaybackStatus.PLAYING
            self.pause()

    def on_focus_regained(self, should_resume: bool) -> None:
        with self._lock:
            resume = should_resume and self._resume_after_focus
            self._resume_after_focus = False
            if self._status == PlaybackStatus.LOADING:
                if resume:
                    self._pause_when_ready = False
                return
            if resume:
                self.resume()

    def on_output_route_removed(self) -> None:
        with self._lock:
            self._resume_after_focus = False
            if self._status == PlaybackStatus.LOADING:
                self._pause_when_ready = True
                return
            self.pause()

    # --- Remote commands ---

    def handle_remote_command(
        self, command: RemoteCommand, position: Optional[float] = None
    ) -> bool:
        """
        Apply a remote control command.

        Returns:
            bool: `True` if the command was handled, `False` if it did not apply in the current state.
        """
        with self._lock:
            if command == RemoteCommand.PLAY:
                if self._status == PlaybackStatus.PLAYING:
                    return False
                return self.resume()
            if command == RemoteCommand.PAUSE:
                return self.pause()
            if command == RemoteCommand.TOGGLE:
                return self.toggle_playback()
            if command == RemoteCommand.SKIP_FORWARD:
                return self.skip_forward()
            if command == RemoteCommand.SKIP_BACKWARD:
                return self.skip_backward()
            if command == RemoteCommand.CHANGE_POSITION:
                if position is None:
                    return False
                return self.seek(position)

        logger.warning(f"Unknown remote command: {command}")
        return False

    # --- Internals ---

    def _stop_locked(self) -> None:
        if self._episode is not None:
            if self._source_ready and self._status != PlaybackStatus.FAILED:
                self._persist_progress()
            self.transport.stop()
            logger.debug(f"Stopped episode {self._episode.id}")

        self._generation += 1
        self._episode = None
        self._podcast = None
        self._status = PlaybackStatus.IDLE
        self._current_time = 0.0
        self._duration = 0.0
        self._source_ready = False
        self._saved_bucket = None
        self._resume_after_focus = False
        self._pause_when_ready = False
        self._artwork = None
        if self.now_playing is not None:
            self.now_playing.clear()

    def _load_stored_episode(self, episode: Episode) -> Episode:
        try:
            stored = self.repository.get_episode(episode.id)
        except StorageError as e:
            logger.error(f"Failed to read episode {episode.id}: {e}")
            return episode
        return stored or episode

    def _load_podcast(self, podcast_id: str) -> Optional[Podcast]:
        try:
            return self.repository.get_podcast(podcast_id)
        except StorageError as e:
            logger.error(f"Failed to read podcast {podcast_id}: {e}")
            return None

    def _select_source(self, episode: Episode) -> str:
        if episode.is_downloaded and episode.download_path:
            return episode.download_path
        return (episode.audio_url or "").strip()

    def _persist_progress(self) -> None:
        self._write_episode(
            EpisodeUpdate(
                play_progress=self._current_time,
                last_played_date=datetime.now(UTC),
            )
        )

    def _write_episode(self, changes: EpisodeUpdate) -> None:
        if self._episode is None:
            return
        try:
            updated = self.repository.update_episode_fields(self._episode.id, changes)
        except StorageError as e:
            logger.error(f"Failed to save playback state for {self._episode.id}: {e}")
            return
        if updated is not None:
            self._episode = updated

    def _clamp(self, position: float) -> float:
        position = max(float(position), 0.0)
        if self._duration > 0:
            position = min(position, self._duration)
        return position

    def _bucket(self, position: float) -> int:
        return int(position // self.progress_save_interval)

    def _mark_user_action(self) -> None:
        self._last_user_action = self.clock()

    def _effective_rate(self) -> float:
        return self._rate if self._status == PlaybackStatus.PLAYING else 0.0

    def _publish_full_info(self) -> None:
        if self.now_playing is None or self._episode is None:
            return
        self.now_playing.publish(
            NowPlayingInfo(
                title=self._episode.title,
                artist=self._podcast.author if self._podcast else "",
                album=self._podcast.title if self._podcast else "",
                duration=self._duration,
                elapsed=self._current_time,
                rate=self._effective_rate(),
                artwork=self._artwork,
            )
        )

    def _publish_timing(self) -> None:
        if self.now_playing is None or self._episode is None:
            return
        self.now_playing.update_timing(
            self._current_time, self._effective_rate(), self._duration
        )

    def _start_artwork_load(self) -> None:
        if self.now_playing is None or self._podcast is None or not self._podcast.image_url:
            return

        generation = self._generation
        thread = threading.Thread(
            target=self._load_artwork,
            args=(generation, self._podcast.image_url),
            name="artwork-loader",
            daemon=True,
        )
        thread.start()

    def _load_artwork(self, generation: int, url: str) -> None:
        try:
            artwork = self.artwork_loader(url)
        except Exception as e:
            logger.warning(f"Artwork loader failed for {url}: {e}")
            return

        with self._lock:
            # The episode changed while the artwork was loading
            if generation != self._generation or not artwork:
                return
            self._artwork = artwork
            self._publish_full_info()

    def _snapshot(self) -> PlaybackState:
        return PlaybackState(
            current_episode=self._episode,
            status=self._status,
            current_time=self._current_time,
            duration=self._duration,
            playback_rate=self._rate,
            last_error=self._last_error,
        )

    def _notify(self) -> None:
        state = self._snapshot()
        for callback in list(self._listeners):
            callback(state)


def create_session_from_config(
    repository: PodcastRepositoryInterface,
    transport: AudioTransport,
    config,
    **kwargs,
) -> PlaybackSession:
    """
    Create a PlaybackSession using the playback settings of `config`.

    Extra keyword arguments are passed through to `PlaybackSession`.
    """
    return PlaybackSession(
        repository,
        transport,
        progress_save_interval=config.PROGRESS_SAVE_INTERVAL,
        skip_forward_seconds=config.SKIP_FORWARD_SECONDS,
        skip_backward_seconds=config.SKIP_BACKWARD_SECONDS,
        **kwargs,
    )
