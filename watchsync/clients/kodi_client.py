import asyncio
import logging
from typing import Any, Dict, Optional
import httpx
from ..config import LibraryEndpoint, settings
from ..models import Episode, MediaItem, Movie, Snapshot

logger = logging.getLogger(__name__)

MOVIE_PROPERTIES = ["year", "resume", "imdbnumber", "playcount"]
EPISODE_PROPERTIES = ["title", "showtitle", "resume", "uniqueid", "playcount"]

# kind -> (update method, id parameter, request id)
UPDATE_METHODS = {
    Movie.kind: ("VideoLibrary.SetMovieDetails", "movieid", "libMovies"),
    Episode.kind: ("VideoLibrary.SetEpisodeDetails", "episodeid", "libEpisodes"),
}

class KodiClient:
    """JSON-RPC client for one Kodi library."""

    def __init__(self, endpoint: LibraryEndpoint, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.endpoint = endpoint
        self.name = endpoint.name
        self.address = endpoint.address
        self.client = httpx.AsyncClient(
            auth=(endpoint.username, endpoint.password),
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            transport=transport
        )

    async def close(self):
        await self.client.aclose()

    async def probe(self) -> bool:
        """Network-level reachability: can we open a TCP connection to the API port?"""
        if not self.address:
            return False
        try:
            port = self.endpoint.port
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.address, port),
                timeout=settings.PROBE_TIMEOUT_SECONDS
            )
            writer.close()
            await writer.wait_closed()
            return True
        except ValueError as e:
            logger.error(f"Invalid API URL for {self.name}: {e}")
            return False
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Probe of {self.address} failed: {e}")
            return False

    async def check_alive(self) -> bool:
        try:
            resp = await self.client.head(self.endpoint.api_url)
            return resp.is_success
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"{self.name} API did not respond: {e}")
            return False

    async def _rpc(self, method: str, params: Dict[str, Any], request_id: str) -> Optional[Any]:
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": request_id}
        try:
            resp = await self.client.post(self.endpoint.api_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.error(f"{method} on {self.name} failed: {e}")
            return None

        if not isinstance(data, dict):
            logger.error(f"{method} on {self.name} returned an unexpected body")
            return None
        if "error" in data:
            logger.error(f"{method} on {self.name} returned error: {data['error']}")
            return None
        return data.get("result")

    async def get_movies(self) -> Optional[Snapshot[Movie]]:
        result = await self._rpc("VideoLibrary.GetMovies", {
            "properties": MOVIE_PROPERTIES,
            "sort": {"order": "ascending", "method": "label", "ignorearticle": True}
        }, "libMovies")
        if not isinstance(result, dict):
            return None
        try:
            # Kodi omits the list entirely when the library is empty
            return Snapshot[Movie](items=result.get("movies") or [], has_data=True)
        except ValueError as e:
            logger.error(f"Could not parse movies from {self.name}: {e}")
            return None

    async def get_episodes(self) -> Optional[Snapshot[Episode]]:
        result = await self._rpc("VideoLibrary.GetEpisodes", {
            "properties": EPISODE_PROPERTIES,
            "sort": {"order": "ascending", "method": "label"}
        }, "libEpisodes")
        if not isinstance(result, dict):
            return None
        try:
            return Snapshot[Episode](items=result.get("episodes") or [], has_data=True)
        except ValueError as e:
            logger.error(f"Could not parse episodes from {self.name}: {e}")
            return None

    async def update_item(self, item: MediaItem) -> bool:
        """Push only the flagged fields of an outdated item."""
        method, id_param, request_id = UPDATE_METHODS[item.kind]
        params: Dict[str, Any] = {id_param: item.library_id}
        if item.is_watched_outdated:
            params["playcount"] = item.play_count
        if item.is_resume_outdated:
            params["resume"] = {"position": item.resume.position}

        if settings.DRY_RUN:
            logger.info(f"[DRY RUN] Would call {method} on {self.name} with {params}")
            return True

        result = await self._rpc(method, params, request_id)
        return result == "OK"
