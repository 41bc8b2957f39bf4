"""CLI commands for podcast management.

Provides commands for:
- Searching the podcast directory
- Subscribing, refreshing and unsubscribing
- Listing podcasts and episodes
- Downloading and deleting episode audio
- Viewing status and listening history
"""

import argparse
import logging
import sys

from ..config import Config
from ..db.factory import create_repository, get_database_url_from_config
from ..errors import PodcastPlayerError
from ..podcast.downloader import DownloadManager, HttpDownloadTransport
from ..podcast.feed_parser import FeedParser
from ..podcast.search import PodcastSearchClient
from ..podcast.subscriptions import SubscriptionService

logger = logging.getLogger(__name__)


def _open_repository(config: Config):
    return create_repository(
        database_url=get_database_url_from_config(config),
        echo=config.DB_ECHO,
    )


def _feed_parser(config: Config) -> FeedParser:
    return FeedParser(user_agent=config.USER_AGENT, timeout=config.FEED_TIMEOUT)


def _download_manager(repository, config: Config) -> DownloadManager:
    return DownloadManager(
        repository=repository,
        download_directory=config.DOWNLOAD_DIRECTORY,
        transport=HttpDownloadTransport(
            retry_attempts=config.DOWNLOAD_RETRY_ATTEMPTS,
            timeout=config.DOWNLOAD_TIMEOUT,
            chunk_size=config.CHUNK_SIZE,
            user_agent=config.USER_AGENT,
        ),
        max_concurrent=config.MAX_CONCURRENT_DOWNLOADS,
    )


def _format_size(size: int) -> str:
    return f"{size / 1024 / 1024:.1f} MB"


def search_podcasts(args, config: Config):
    """Search the podcast directory and print the matches."""
    client = PodcastSearchClient(
        search_url=config.SEARCH_URL,
        limit=config.SEARCH_LIMIT,
        user_agent=config.USER_AGENT,
    )

    try:
        podcasts = client.search(args.query, limit=args.limit)
    finally:
        client.close()

    if not podcasts:
        print("No podcasts found")
        return

    print(f"\n{'ID':<12}  {'Title':<40}  {'Author':<24}  {'Feed URL'}")
    print("-" * 110)
    for podcast in podcasts:
        print(
            f"{podcast.id:<12}  "
            f"{podcast.title[:40]:<40}  "
            f"{podcast.author[:24]:<24}  "
            f"{podcast.feed_url or '-'}"
        )


def subscribe_podcast(args, config: Config):
    """
    Subscribe to the feed at `args.feed_url`.

    Prints the podcast title, ID and the number of episodes added. Feed or network failures propagate to `main`, which reports them and exits with status 1.
    """
    logger.info(f"Subscribing to: {args.feed_url}")

    repository = _open_repository(config)

    try:
        service = SubscriptionService(repository, feed_parser=_feed_parser(config))
        result = service.subscribe_url(args.feed_url, podcast_id=args.id)

        print(f"\nSubscribed to: {result['title']}")
        print(f"  ID: {result['podcast_id']}")
        print(f"  New episodes: {result['new_episodes']}")
        if result["skipped"]:
            print(f"  Skipped items: {result['skipped']}")
        for warning in result["warnings"]:
            print(f"  Warning: {warning}")

    finally:
        repository.close()


def refresh_feeds(args, config: Config):
    """Refresh subscribed podcast feeds to pick up new episodes."""
    repository = _open_repository(config)

    try:
        service = SubscriptionService(repository, feed_parser=_feed_parser(config))

        if args.podcast_id:
            logger.info(f"Refreshing podcast: {args.podcast_id}")
            result = service.refresh(args.podcast_id)

            if result["error"]:
                print(f"Error: {result['error']}")
                sys.exit(1)

            print(f"\nRefresh complete:")
            print(f"  New episodes: {result['new_episodes']}")
            print(f"  Updated episodes: {result['updated_episodes']}")
        else:
            logger.info("Refreshing all subscribed podcasts")
            result = service.refresh_all()

            print(f"\nRefresh complete:")
            print(f"  Podcasts refreshed: {result['refreshed']}")
            print(f"  Podcasts failed: {result['failed']}")
            print(f"  New episodes: {result['new_episodes']}")

    finally:
        repository.close()


def unsubscribe_podcast(args, config: Config):
    """Unsubscribe from a podcast and remove its downloaded audio."""
    repository = _open_repository(config)

    try:
        podcast = repository.get_podcast(args.podcast_id)
        if not podcast:
            print(f"Podcast not found: {args.podcast_id}")
            sys.exit(1)

        removed = SubscriptionService(repository).unsubscribe(args.podcast_id)
        print(f"\nUnsubscribed from: {podcast.title}")
        print(f"  Files removed: {removed}")

    finally:
        repository.close()


def list_podcasts(args, config: Config):
    """
    Prints a table of podcasts to stdout.

    Displays ID, title (truncated to 40 characters), episode count and subscription status. `args.all` includes unsubscribed podcasts.
    """
    repository = _open_repository(config)

    try:
        podcasts = repository.list_podcasts(subscribed=None if args.all else True)

        if not podcasts:
            print("No podcasts found")
            return

        print(f"\n{'ID':<40}  {'Title':<40}  {'Episodes':<10}  {'Status'}")
        print("-" * 104)

        for podcast in podcasts:
            episodes = repository.list_episodes(podcast_id=podcast.id)
            status = "Subscribed" if podcast.is_subscribed else "Unsubscribed"
            print(
                f"{podcast.id:<40}  "
                f"{podcast.title[:40]:<40}  "
                f"{len(episodes):<10}  "
                f"{status}"
            )

    finally:
        repository.close()


def list_episodes(args, config: Config):
    """Print episodes, newest first, with download and playback markers."""
    repository = _open_repository(config)

    try:
        episodes = repository.list_episodes(
            podcast_id=args.podcast_id,
            downloaded=True if args.downloaded else None,
            played=False if args.unplayed else None,
            limit=args.limit,
        )

        if not episodes:
            print("No episodes found")
            return

        for episode in episodes:
            flags = ""
            flags += "D" if episode.is_downloaded else "-"
            flags += "P" if episode.is_played else ("~" if episode.is_in_progress else "-")
            published = episode.publish_date.strftime("%Y-%m-%d") if episode.publish_date else "----------"
            print(f"[{flags}] {published}  {episode.title[:60]}")
            print(f"      {episode.id}")

    finally:
        repository.close()


def download_episode(args, config: Config):
    """Download a single episode and wait for it to finish."""
    repository = _open_repository(config)
    manager = None

    try:
        episode = repository.get_episode(args.episode_id)
        if not episode:
            print(f"Episode not found: {args.episode_id}")
            sys.exit(1)

        manager = _download_manager(repository, config)
        future = manager.download(episode)
        if future is None:
            print(f"Nothing to download for: {episode.title}")
            return

        result = future.result()
        if not result.success:
            print(f"Download {result.state.value}: {result.error or episode.title}")
            sys.exit(1)

        print(f"\nDownloaded: {episode.title}")
        print(f"  Path: {result.local_path}")
        print(f"  Size: {_format_size(result.file_size or 0)}")

    finally:
        if manager:
            manager.shutdown()
        repository.close()


def delete_downloads(args, config: Config):
    """Delete one downloaded episode, or all of them with `--all`."""
    if not args.all and not args.episode_id:
        print("Specify an episode ID or --all")
        sys.exit(1)

    repository = _open_repository(config)
    manager = None

    try:
        manager = _download_manager(repository, config)
        if args.all:
            cleared = manager.delete_all_downloads()
            print(f"\nDeleted {cleared} downloads")
        elif manager.delete_download(args.episode_id):
            print(f"\nDeleted download: {args.episode_id}")
        else:
            print(f"No download for episode: {args.episode_id}")

    finally:
        if manager:
            manager.shutdown()
        repository.close()


def reset_history(args, config: Config):
    """Clear played flags and progress on every episode."""
    repository = _open_repository(config)

    try:
        count = repository.reset_playback_history()
        print(f"\nReset playback history for {count} episodes")

    finally:
        repository.close()


def show_status(args, config: Config):
    """Display library statistics and listening history to stdout."""
    repository = _open_repository(config)

    try:
        podcasts = repository.list_podcasts()
        subscribed = [podcast for podcast in podcasts if podcast.is_subscribed]
        episodes = repository.list_episodes()
        downloaded = [episode for episode in episodes if episode.is_downloaded]
        in_progress = repository.list_in_progress()
        recent = repository.list_recently_played()

        print(f"\nLibrary:")
        print(f"  Total podcasts: {len(podcasts)}")
        print(f"  Subscribed: {len(subscribed)}")
        print(f"  Total episodes: {len(episodes)}")
        print(f"\n  Downloads:")
        print(f"    Downloaded episodes: {len(downloaded)}")
        print(f"    Total size: {_format_size(repository.total_download_size())}")
        print(f"\n  Listening:")
        print(f"    In progress: {len(in_progress)}")

        if recent:
            print(f"\nRecently played:")
            for episode in recent:
                print(f"  - {episode.title[:60]} ({episode.play_progress:.0f}s)")

    finally:
        repository.close()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        description="Podcast player CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--env-file",
        help="Path to .env file",
        default=None,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # search command
    search_parser = subparsers.add_parser(
        "search",
        help="Search the podcast directory",
    )
    search_parser.add_argument("query", help="Search terms")
    search_parser.add_argument(
        "--limit",
        type=int,
        help="Maximum number of results",
    )

    # subscribe command
    subscribe_parser = subparsers.add_parser(
        "subscribe",
        help="Subscribe to a podcast feed",
    )
    subscribe_parser.add_argument("feed_url", help="RSS feed URL")
    subscribe_parser.add_argument(
        "--id",
        help="Podcast ID to use (e.g. from search results)",
    )

    # refresh command
    refresh_parser = subparsers.add_parser(
        "refresh",
        help="Refresh podcast feeds",
    )
    refresh_parser.add_argument(
        "--podcast-id",
        help="Refresh specific podcast by ID",
    )

    # unsubscribe command
    unsubscribe_parser = subparsers.add_parser(
        "unsubscribe",
        help="Unsubscribe from a podcast",
    )
    unsubscribe_parser.add_argument("podcast_id", help="Podcast ID")

    # list command
    list_parser = subparsers.add_parser(
        "list",
        help="List podcasts",
    )
    list_parser.add_argument(
        "--all",
        action="store_true",
        help="Include unsubscribed podcasts",
    )

    # episodes command
    episodes_parser = subparsers.add_parser(
        "episodes",
        help="List episodes",
    )
    episodes_parser.add_argument(
        "--podcast-id",
        help="Only episodes of this podcast",
    )
    episodes_parser.add_argument(
        "--downloaded",
        action="store_true",
        help="Only downloaded episodes",
    )
    episodes_parser.add_argument(
        "--unplayed",
        action="store_true",
        help="Only episodes not yet played",
    )
    episodes_parser.add_argument(
        "--limit",
        type=int,
        help="Maximum number of episodes to show",
    )

    # download command
    download_parser = subparsers.add_parser(
        "download",
        help="Download an episode",
    )
    download_parser.add_argument("episode_id", help="Episode ID")

    # delete-download command
    delete_parser = subparsers.add_parser(
        "delete-download",
        help="Delete downloaded episode audio",
    )
    delete_parser.add_argument("episode_id", nargs="?", help="Episode ID")
    delete_parser.add_argument(
        "--all",
        action="store_true",
        help="Delete every downloaded episode",
    )

    # reset-history command
    subparsers.add_parser(
        "reset-history",
        help="Clear played flags and progress for all episodes",
    )

    # status command
    subparsers.add_parser(
        "status",
        help="Show library status and listening history",
    )

    return parser


def main():
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Load configuration
    config = Config(env_file=args.env_file)

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Route to appropriate command
    commands = {
        "search": search_podcasts,
        "subscribe": subscribe_podcast,
        "refresh": refresh_feeds,
        "unsubscribe": unsubscribe_podcast,
        "list": list_podcasts,
        "episodes": list_episodes,
        "download": download_episode,
        "delete-download": delete_downloads,
        "reset-history": reset_history,
        "status": show_status,
    }

    command_func = commands.get(args.command)
    if not command_func:
        parser.print_help()
        sys.exit(1)

    try:
        command_func(args, config)
    except PodcastPlayerError as e:
        logger.error(f"Command '{args.command}' failed: {e}")
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
