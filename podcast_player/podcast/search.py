"""Podcast directory search.

Queries an iTunes-compatible search API and maps the results onto
unsubscribed `Podcast` records.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..db.models import Podcast
from ..errors import NetworkError, ParseError

logger = logging.getLogger(__name__)

ITUNES_SEARCH_URL = "https://itunes.apple.com/search"


class PodcastSearchClient:
    """Client for the podcast directory search API.

    Example:
        client = PodcastSearchClient()
        for podcast in client.search("history"):
            print(f"{podcast.title} - {podcast.feed_url}")
    """

    DEFAULT_LIMIT = 20
    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        search_url: str = ITUNES_SEARCH_URL,
        limit: int = DEFAULT_LIMIT,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.search_url = search_url
        self.limit = limit
        self.timeout = timeout
        headers = {"User-Agent": user_agent} if user_agent else None
        self._client = client or httpx.Client(timeout=timeout, headers=headers)

    def search(self, query: str, limit: Optional[int] = None) -> List[Podcast]:
        """
        Search the directory for podcasts matching `query`.

        An empty or whitespace-only query returns an empty list without a network call. Returned podcasts are transient and unsubscribed; nothing is written to the store.

        Raises:
            NetworkError: If the request fails, times out or returns an error status.
            ParseError: If the response body is not the expected JSON document.
        """
        if not query or not query.strip():
            return []

        params = {
            "term": query.strip(),
            "media": "podcast",
            "entity": "podcast",
            "limit": limit or self.limit,
        }

        try:
            response = self._client.get(self.search_url, params=params)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise NetworkError(f"Podcast search timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"Podcast search failed with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Podcast search failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise ParseError(f"Invalid search response: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("results", []), list):
            raise ParseError("Invalid search response: missing results list")

        podcasts = []
        for item in data.get("results", []):
            podcast = self._to_podcast(item)
            if podcast is not None:
                podcasts.append(podcast)

        logger.info(f"Search for '{params['term']}' returned {len(podcasts)} podcasts")
        return podcasts

    def close(self) -> None:
        self._client.close()

    def _to_podcast(self, item: Dict[str, Any]) -> Optional[Podcast]:
        collection_id = item.get("collectionId")
        if collection_id is None:
            logger.debug(f"Skipping search result without collectionId: {item.get('collectionName')}")
            return None

        return Podcast(
            id=str(collection_id),
            title=item.get("collectionName") or item.get("trackName") or "Unknown",
            author=item.get("artistName") or "",
            description=item.get("collectionDescription") or item.get("description") or "",
            image_url=item.get("artworkUrl600") or item.get("artworkUrl100") or "",
            feed_url=item.get("feedUrl") or "",
            is_subscribed=False,
        )
