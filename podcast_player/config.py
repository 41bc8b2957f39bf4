import os

from dotenv import load_dotenv


class Config:
    def __init__(self, env_file=None):
        """
        Initialize configuration by loading environment variables and setting default attributes.

        Loads environment variables from the provided .env file path when `env_file` is given; otherwise loads from the default environment. After loading, sets database, download, feed, search and playback settings using environment values with sensible defaults.

        Parameters:
            env_file (str | None): Optional path to a .env file to load environment variables from.

        Raises:
            ValueError: If a numeric setting cannot be parsed or is out of range.
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        # Database configuration
        self.DATABASE_URL = os.getenv(
            "DATABASE_URL", "sqlite:///./podcast_player.db"
        )
        self.DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"

        # Download configuration
        self.DOWNLOAD_DIRECTORY = os.getenv(
            "PODCAST_DOWNLOAD_DIRECTORY", "./downloads"
        )
        self.MAX_CONCURRENT_DOWNLOADS = int(
            os.getenv("PODCAST_MAX_CONCURRENT_DOWNLOADS", "3")
        )
        if self.MAX_CONCURRENT_DOWNLOADS < 1:
            raise ValueError(
                f"PODCAST_MAX_CONCURRENT_DOWNLOADS must be at least 1, got {self.MAX_CONCURRENT_DOWNLOADS}"
            )
        self.DOWNLOAD_RETRY_ATTEMPTS = int(
            os.getenv("PODCAST_DOWNLOAD_RETRY_ATTEMPTS", "3")
        )
        self.DOWNLOAD_TIMEOUT = int(os.getenv("PODCAST_DOWNLOAD_TIMEOUT", "300"))
        self.CHUNK_SIZE = int(os.getenv("PODCAST_CHUNK_SIZE", "8192"))

        # Feed and search configuration
        self.FEED_TIMEOUT = int(os.getenv("PODCAST_FEED_TIMEOUT", "30"))
        self.SEARCH_URL = os.getenv(
            "PODCAST_SEARCH_URL", "https://itunes.apple.com/search"
        )
        self.SEARCH_LIMIT = int(os.getenv("PODCAST_SEARCH_LIMIT", "20"))
        self.USER_AGENT = os.getenv("PODCAST_USER_AGENT", "PodcastPlayer/1.0")

        # Playback configuration
        self.PROGRESS_SAVE_INTERVAL = int(
            os.getenv("PLAYBACK_PROGRESS_SAVE_INTERVAL", "5")
        )
        if self.PROGRESS_SAVE_INTERVAL < 1:
            raise ValueError(
                f"PLAYBACK_PROGRESS_SAVE_INTERVAL must be at least 1, got {self.PROGRESS_SAVE_INTERVAL}"
            )
        self.SKIP_FORWARD_SECONDS = float(
            os.getenv("PLAYBACK_SKIP_FORWARD_SECONDS", "30")
        )
        self.SKIP_BACKWARD_SECONDS = float(
            os.getenv("PLAYBACK_SKIP_BACKWARD_SECONDS", "15")
        )

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
