"""Episode download manager.

Materializes local copies of episode audio with:
- Bounded concurrent downloads
- Per-episode progress tracking
- Cooperative cancellation
- Retry logic with exponential backoff
"""

import hashlib
import logging
import os
import threading
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Callable, Dict, Optional
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..db.models import Episode, EpisodeUpdate
from ..db.repository import PodcastRepositoryInterface
from ..errors import NetworkError, PodcastPlayerError
from ..utils.files import remove_file

logger = logging.getLogger(__name__)

DOWNLOADABLE_SCHEMES = ("http", "https", "file")

MIME_TO_EXTENSION = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/mp4": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/aac": ".aac",
    "audio/ogg": ".ogg",
    "audio/opus": ".opus",
    "audio/wav": ".wav",
    "video/mp4": ".mp4",
}


class DownloadState(Enum):
    NONE = "none"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DownloadState.COMPLETE, DownloadState.FAILED, DownloadState.CANCELLED)


@dataclass
class DownloadResult:
    """Result of a download operation."""

    episode_id: str
    state: DownloadState
    local_path: Optional[str] = None
    file_size: Optional[int] = None
    error: Optional[str] = None
    duration_seconds: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.state == DownloadState.COMPLETE


@dataclass
class DownloadTask:
    """In-flight download tracked by the manager."""

    episode_id: str
    audio_url: str
    expected_size: int = 0
    mime_type: Optional[str] = None
    state: DownloadState = DownloadState.QUEUED
    progress: float = 0.0
    cancel_event: threading.Event = field(default_factory=threading.Event)
    # Resolved by the manager; `worker` is the executor's own future
    future: Future = field(default_factory=Future)
    worker: Optional[Future] = None
    token: str = field(default_factory=lambda: uuid.uuid4().hex[:8])


class DownloadTransport(ABC):
    """Moves the bytes of one audio file to a local destination."""

    @abstractmethod
    def fetch(
        self,
        url: str,
        destination: str,
        progress_callback: Callable[[int, int], None],
        cancel_event: threading.Event,
    ) -> int:
        """
        Write the resource at `url` to `destination`.

        Parameters:
            progress_callback: Called with `(bytes_written, total_bytes)`; `total_bytes` is 0 when unknown.
            cancel_event: Checked between chunks; when set the transfer stops early.

        Returns:
            int: Number of bytes written.

        Raises:
            NetworkError: If the transfer fails.
        """
        pass


class HttpDownloadTransport(DownloadTransport):
    """Streaming transport backed by a requests session with retries.

    `file://` URLs are copied from the local filesystem.
    """

    DEFAULT_USER_AGENT = "PodcastPlayer/1.0"
    DEFAULT_CHUNK_SIZE = 8192
    DEFAULT_TIMEOUT = 300  # 5 minutes

    def __init__(
        self,
        retry_attempts: int = 3,
        timeout: int = DEFAULT_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        user_agent: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.retry_attempts = retry_attempts
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.user_agent = user_agent or self.DEFAULT_USER_AGENT
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retry_strategy = Retry(
            total=self.retry_attempts,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "HEAD"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({"User-Agent": self.user_agent})

        return session

    def fetch(
        self,
        url: str,
        destination: str,
        progress_callback: Callable[[int, int], None],
        cancel_event: threading.Event,
    ) -> int:
        parsed = urlparse(url)
        if parsed.scheme == "file":
            return self._copy_local(
                url2pathname(parsed.path), destination, progress_callback, cancel_event
            )

        try:
            response = self._session.get(
                url,
                stream=True,
                timeout=self.timeout,
                allow_redirects=True,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"Failed to download {url}: {e}") from e

        total_size = 0
        if "content-length" in response.headers:
            try:
                total_size = int(response.headers["content-length"])
            except ValueError:
                pass

        downloaded = 0
        try:
            with open(destination, "wb") as f:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if cancel_event.is_set():
                        break
                    if chunk:
                        f.write(chunk)
                        downloaded += len(chunk)
                        progress_callback(downloaded, total_size)
        except requests.RequestException as e:
            raise NetworkError(f"Download interrupted for {url}: {e}") from e
        finally:
            response.close()

        return downloaded

    def _copy_local(
        self,
        source: str,
        destination: str,
        progress_callback: Callable[[int, int], None],
        cancel_event: threading.Event,
    ) -> int:
        try:
            total_size = os.path.getsize(source)
            downloaded = 0
            with open(source, "rb") as src, open(destination, "wb") as dst:
                while not cancel_event.is_set():
                    chunk = src.read(self.chunk_size)
                    if not chunk:
                        break
                    dst.write(chunk)
                    downloaded += len(chunk)
                    progress_callback(downloaded, total_size)
        except OSError as e:
            raise NetworkError(f"Failed to copy {source}: {e}") from e
        return downloaded


class DownloadManager:
    """Downloads episode audio for offline playback.

    Each episode has at most one active download. Completed downloads are
    recorded on the episode through a narrow update; failed and cancelled
    downloads never touch the store.

    Example:
        manager = DownloadManager(repository, "/var/podcasts", max_concurrent=3)
        future = manager.download(episode)
        if future:
            result = future.result()
    """

    def __init__(
        self,
        repository: PodcastRepositoryInterface,
        download_directory: str,
        transport: Optional[DownloadTransport] = None,
        max_concurrent: int = 3,
        on_progress: Optional[Callable[[str, float], None]] = None,
        on_state_change: Optional[Callable[[str, DownloadState], None]] = None,
    ):
        """Initialize the download manager.

        Args:
            repository: Database repository
            download_directory: Directory for downloaded audio files
            transport: Transfer implementation; defaults to HttpDownloadTransport
            max_concurrent: Maximum concurrent downloads
            on_progress: Callback for progress updates (episode_id, fraction)
            on_state_change: Callback for state transitions (episode_id, state)
        """
        self.repository = repository
        self.download_directory = os.path.abspath(download_directory)
        self.transport = transport or HttpDownloadTransport()
        self.max_concurrent = max_concurrent
        self.on_progress = on_progress
        self.on_state_change = on_state_change

        os.makedirs(self.download_directory, exist_ok=True)

        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent, thread_name_prefix="download"
        )
        self._lock = threading.RLock()
        self._tasks: Dict[str, DownloadTask] = {}
        self._states: Dict[str, DownloadState] = {}

    def download(self, episode: Episode) -> Optional["Future[DownloadResult]"]:
        """
        Start downloading an episode.

        Returns:
            The future of the download, the existing future if the episode is already downloading, or `None` if the episode is already downloaded or has no downloadable URL.
        """
        if episode.is_downloaded:
            logger.info(f"Episode already downloaded: {episode.title}")
            return None

        url = (episode.audio_url or "").strip()
        if not url or urlparse(url).scheme not in DOWNLOADABLE_SCHEMES:
            logger.warning(f"Episode {episode.id} has no downloadable URL: {url!r}")
            return None

        with self._lock:
            existing = self._tasks.get(episode.id)
            if existing is not None:
                logger.debug(f"Download already active for {episode.id}")
                return existing.future

            task = DownloadTask(
                episode_id=episode.id,
                audio_url=url,
                expected_size=episode.file_size or 0,
                mime_type=episode.mime_type,
            )
            self._tasks[episode.id] = task
            self._states[episode.id] = DownloadState.QUEUED
            # Reported before the worker can report IN_PROGRESS
            self._notify_state(episode.id, DownloadState.QUEUED)
            task.worker = self._executor.submit(self._execute, task)

        logger.info(f"Queued download: {episode.title}")
        return task.future

    def cancel(self, episode_id: str) -> bool:
        """
        Cancel an active download.

        The download is finished as soon as this returns: its future resolves to a CANCELLED result and the episode can be downloaded again, while the worker discards its partial file in the background.

        Returns:
            bool: `True` if an active download was cancelled, `False` if there was none or it was already cancelled.
        """
        with self._lock:
            task = self._tasks.get(episode_id)
            if task is None or task.cancel_event.is_set():
                return False
            task.cancel_event.set()
            task.state = DownloadState.CANCELLED
            self._tasks.pop(episode_id, None)
            self._states[episode_id] = DownloadState.CANCELLED
            if task.worker is not None:
                # Only succeeds while still queued
                task.worker.cancel()

        logger.info(f"Cancelled download: {episode_id}")
        self._notify_state(episode_id, DownloadState.CANCELLED)
        self._resolve(task, DownloadResult(episode_id=episode_id, state=DownloadState.CANCELLED))
        return True

    def delete_download(self, episode_id: str) -> bool:
        """
        Remove the local file of an episode and clear its download fields.

        Returns:
            bool: `True` if the episode had a download, `False` otherwise.
        """
        episode = self.repository.get_episode(episode_id)
        if episode is None or not (episode.is_downloaded or episode.download_path):
            return False

        remove_file(episode.download_path)
        self.repository.update_episode_fields(
            episode_id, EpisodeUpdate(is_downloaded=False, download_path=None)
        )
        with self._lock:
            self._states.pop(episode_id, None)

        logger.info(f"Deleted download: {episode.title}")
        return True

    def delete_all_downloads(self) -> int:
        """
        Remove every downloaded episode file and clear the download fields.

        Returns:
            int: Number of episodes cleared.
        """
        cleared = 0
        for episode in self.repository.list_episodes(downloaded=True):
            if self.delete_download(episode.id):
                cleared += 1

        logger.info(f"Deleted {cleared} downloads")
        return cleared

    def total_download_size(self) -> int:
        return self.repository.total_download_size()

    def state(self, episode_id: str) -> DownloadState:
        with self._lock:
            task = self._tasks.get(episode_id)
            if task is not None:
                return task.state
            return self._states.get(episode_id, DownloadState.NONE)

    def progress(self, episode_id: str) -> Optional[float]:
        """Progress fraction of an active download, or `None` if not downloading."""
        with self._lock:
            task = self._tasks.get(episode_id)
            return task.progress if task is not None else None

    def active_downloads(self) -> Dict[str, float]:
        """Snapshot of active downloads as episode id to progress fraction."""
        with self._lock:
            return {episode_id: task.progress for episode_id, task in self._tasks.items()}

    def shutdown(self, wait: bool = True) -> None:
        """Cancel active downloads and stop the worker pool."""
        for episode_id in list(self.active_downloads()):
            self.cancel(episode_id)
        self._executor.shutdown(wait=wait)
        logger.debug("Download manager shut down")

    def destination_path(self, episode_id: str, audio_url: str, mime_type: Optional[str] = None) -> str:
        """Final path of the downloaded audio for an episode."""
        digest = hashlib.sha1(episode_id.encode("utf-8")).hexdigest()
        return os.path.join(
            self.download_directory, digest + self._extension(audio_url, mime_type)
        )

    def _execute(self, task: DownloadTask) -> None:
        try:
            self._run(task)
        except Exception as e:
            logger.exception(f"Unexpected error downloading {task.episode_id}: {e}")
            with self._lock:
                if self._tasks.get(task.episode_id) is task:
                    self._tasks.pop(task.episode_id)
                    self._states[task.episode_id] = DownloadState.FAILED
                    task.state = DownloadState.FAILED
                if not task.future.done():
                    task.future.set_exception(e)

    def _run(self, task: DownloadTask) -> DownloadResult:
        start_time = datetime.now(UTC)

        with self._lock:
            cancelled = task.cancel_event.is_set()
            if not cancelled:
                task.state = DownloadState.IN_PROGRESS
                self._states[task.episode_id] = DownloadState.IN_PROGRESS
        if cancelled:
            return self._finish(task, DownloadState.CANCELLED)
        self._notify_state(task.episode_id, DownloadState.IN_PROGRESS)

        destination = self.destination_path(task.episode_id, task.audio_url, task.mime_type)
        # Unique per task so a cancelled worker never touches a newer download's file
        temp_path = f"{destination}.{task.token}.part"

        def report_progress(downloaded: int, total: int) -> None:
            expected = total or task.expected_size
            fraction = min(downloaded / expected, 1.0) if expected else 0.0
            with self._lock:
                task.progress = fraction
            if self.on_progress:
                self.on_progress(task.episode_id, fraction)

        logger.info(f"Downloading: {task.audio_url}")

        try:
            file_size = self.transport.fetch(
                task.audio_url, temp_path, report_progress, task.cancel_event
            )
        except Exception as e:
            logger.error(f"Download failed for {task.episode_id}: {e}")
            remove_file(temp_path)
            return self._finish(task, DownloadState.FAILED, error=str(e))

        # Held so a cancel cannot land between moving the file and recording it
        with self._lock:
            if task.cancel_event.is_set():
                remove_file(temp_path)
                return self._finish(task, DownloadState.CANCELLED)

            try:
                if os.path.exists(destination) and not remove_file(destination):
                    logger.warning(f"Could not remove existing file {destination}, overwriting")
                os.replace(temp_path, destination)
            except OSError as e:
                logger.error(f"Failed to move download into place for {task.episode_id}: {e}")
                remove_file(temp_path)
                return self._finish(task, DownloadState.FAILED, error=str(e))

            try:
                updated = self.repository.update_episode_fields(
                    task.episode_id,
                    EpisodeUpdate(is_downloaded=True, download_path=destination),
                )
            except PodcastPlayerError as e:
                logger.error(f"Failed to record download for {task.episode_id}: {e}")
                remove_file(destination)
                return self._finish(task, DownloadState.FAILED, error=str(e))

            if updated is None:
                logger.error(f"Episode {task.episode_id} disappeared during download")
                remove_file(destination)
                return self._finish(
                    task, DownloadState.FAILED, error=f"Episode not found: {task.episode_id}"
                )

            duration = (datetime.now(UTC) - start_time).total_seconds()
            logger.info(
                f"Downloaded: {updated.title} "
                f"({file_size / 1024 / 1024:.1f} MB in {duration:.1f}s)"
            )

            task.progress = 1.0
            return self._finish(
                task,
                DownloadState.COMPLETE,
                local_path=destination,
                file_size=file_size,
                duration_seconds=duration,
            )

    def _finish(self, task: DownloadTask, state: DownloadState, **kwargs) -> DownloadResult:
        result = DownloadResult(episode_id=task.episode_id, state=state, **kwargs)
        with self._lock:
            if task.state == DownloadState.CANCELLED:
                # Already reported and resolved by cancel()
                return DownloadResult(episode_id=task.episode_id, state=DownloadState.CANCELLED)
            task.state = state
            # A newer download of the same episode may own the slot by now
            if self._tasks.get(task.episode_id) is task:
                self._tasks.pop(task.episode_id)
                self._states[task.episode_id] = state
        self._notify_state(task.episode_id, state)
        self._resolve(task, result)
        return result

    def _resolve(self, task: DownloadTask, result: DownloadResult) -> None:
        with self._lock:
            if task.future.done():
                return
            task.future.set_result(result)

    def _notify_state(self, episode_id: str, state: DownloadState) -> None:
        if self.on_state_change:
            self.on_state_change(episode_id, state)

    def _extension(self, audio_url: str, mime_type: Optional[str]) -> str:
        url_path = urlparse(audio_url).path
        _, ext = os.path.splitext(unquote(os.path.basename(url_path)))
        if ext and len(ext) <= 5:
            return ext.lower()
        return MIME_TO_EXTENSION.get(mime_type or "", ".mp3")
