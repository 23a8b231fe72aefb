import asyncio
import logging
import signal
import sys
import time
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence

import uvicorn

from .config import settings
from .state import StateManager
from .clients.kodi_client import KodiClient
from .engine import SyncEngine
from .models import ChangeLogEntry, LaneReport, LibrarySyncState, MediaItem, RunReport
from . import server

logger = logging.getLogger("main")

class LaneState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"

class Lane:
    """One library's track through a run: probe, fetch or fall back, reconcile, push."""

    def __init__(self, client):
        self.client = client
        self.name = client.name
        self.address = client.address
        self.state = LaneState.OFFLINE
        self.historic = False
        self.media = LibrarySyncState()
        self.report = LaneReport(name=self.name, address=self.address)

    @property
    def online(self) -> bool:
        return self.state is LaneState.ONLINE

def describe_changes(item: MediaItem) -> str:
    changes = []
    if item.is_watched_outdated:
        changes.append("Set to watched")
    if item.is_resume_outdated:
        changes.append(f"Set resume pos to {item.resume.position}")
    return ", ".join(changes)

def log_counts(media: LibrarySyncState):
    logger.info(f"  Found {media.movies.count} movie(s)")
    logger.info(f"    {media.movies.count_watched} watched")
    logger.info(f"    {media.movies.count_resumable} resumable")
    logger.info(f"  Found {media.episodes.count} episode(s)")
    logger.info(f"    {media.episodes.count_watched} watched")
    logger.info(f"    {media.episodes.count_resumable} resumable")

class SyncService:
    def __init__(self, clients: Optional[Sequence] = None, state_manager: Optional[StateManager] = None):
        self.running = True
        self.state_manager = state_manager or StateManager(settings.DATA_DIR)
        if clients is None:
            clients = [KodiClient(endpoint) for endpoint in settings.endpoints()]
        self.clients = list(clients)
        self.engine = SyncEngine()
        self.last_report: Optional[RunReport] = None

        # Link service to server module
        server.service = self

    async def fetch_lane(self, lane: Lane):
        """Probe and fetch; the lane goes online only if both snapshots arrive."""
        client = lane.client
        if not lane.address:
            logger.warning(f"{lane.name} is not configured, skipping fetch")
            return

        reachable = await client.probe()
        logger.info(f"Pinging server {lane.address} {'succeeded' if reachable else 'failed'}")
        if not reachable:
            return

        if not await client.check_alive():
            logger.info(f"{lane.name} API is offline")
            return

        logger.info(f"Reading media on {lane.name} and saving to file")
        movies = await client.get_movies()
        episodes = await client.get_episodes()
        if movies is None or episodes is None:
            logger.info(f"API request to {lane.name} failed")
            return

        lane.media = LibrarySyncState(movies=movies, episodes=episodes)
        lane.state = LaneState.ONLINE
        log_counts(lane.media)
        self.state_manager.save_snapshot(lane.address, lane.media)

    def load_historic(self, lane: Lane):
        logger.info(f"Loading {lane.name}'s previously saved media file")
        lane.media = self.state_manager.load_snapshot(lane.address)
        lane.historic = lane.media.has_results
        if lane.media.has_results:
            log_counts(lane.media)
        else:
            logger.info(f"  No usable saved media for {lane.name}")

    async def prepare_lane(self, client) -> Lane:
        lane = Lane(client)
        try:
            await self.fetch_lane(lane)
        except Exception as e:
            # One library failing must not take the other down with it
            logger.error(f"Error fetching {lane.name}: {e}", exc_info=True)
            lane.state = LaneState.OFFLINE
        if not lane.online and lane.address:
            self.load_historic(lane)
        return lane

    async def push_item(self, lane: Lane, item: MediaItem) -> ChangeLogEntry:
        changes = describe_changes(item)
        if await lane.client.update_item(item):
            message = f"{item.display_name} updated"
            lane.report.updated += 1
        else:
            message = f"Fail to update {item.display_name}, attempted to"
            lane.report.failed += 1
            logger.warning(f"Update of {item.display_name} on {lane.name} was not confirmed")

        logger.info(f"  {message}")
        logger.info(f"    {changes}")
        return ChangeLogEntry(library=lane.name, message=message, detail=changes)

    async def sync_lane(self, lane: Lane, reference: LibrarySyncState) -> List[ChangeLogEntry]:
        if not lane.media.has_results:
            logger.info(f"{lane.name} has no results to sync")
            return []
        if not reference.has_results:
            logger.info(f"{lane.name} has no results to sync with")
            return []

        logger.info(f"Syncing {lane.name} watched media")
        results = self.engine.reconcile_library(lane.media, reference)

        entries = []
        for result in results.values():
            lane.report.out_of_sync += len(result.outdated)
            for item in result.outdated:
                entries.append(await self.push_item(lane, item))
        return entries

    async def run_once(self) -> RunReport:
        report = RunReport()
        lanes = list(await asyncio.gather(*(self.prepare_lane(client) for client in self.clients)))

        # Each lane syncs against the other's data as it was before this run changed anything
        references = [lane.media.model_copy(deep=True) for lane in lanes]

        entries: List[ChangeLogEntry] = []
        for index, lane in enumerate(lanes):
            if not lane.online:
                continue
            for other_index, reference in enumerate(references):
                if other_index != index:
                    entries.extend(await self.sync_lane(lane, reference))

        if entries:
            self.state_manager.append_changes(entries)

        for lane in lanes:
            lane.report.state = lane.state.value
            lane.report.historic = lane.historic
            lane.report.has_results = lane.media.has_results
            lane.report.movies = lane.media.movies.count
            lane.report.movies_watched = lane.media.movies.count_watched
            lane.report.movies_resumable = lane.media.movies.count_resumable
            lane.report.episodes = lane.media.episodes.count
            lane.report.episodes_watched = lane.media.episodes.count_watched
            lane.report.episodes_resumable = lane.media.episodes.count_resumable
            report.lanes.append(lane.report)

        report.changes = len(entries)
        report.finished_at = datetime.now()
        self.last_report = report
        return report

    async def sync_loop(self):
        while self.running:
            start_time = time.time()
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in sync loop: {e}", exc_info=True)

            # Wait for remainder of interval
            elapsed = time.time() - start_time
            sleep_time = max(1, settings.SYNC_INTERVAL_SECONDS - elapsed)
            await asyncio.sleep(sleep_time)

    async def delay_close(self, seconds: int):
        for remaining in range(seconds, 0, -1):
            logger.info(f"Closing in {remaining}s")
            await asyncio.sleep(1)

    async def close(self):
        for client in self.clients:
            await client.close()

    async def start(self):
        try:
            if settings.SYNC_INTERVAL_SECONDS <= 0:
                try:
                    await self.run_once()
                except Exception as e:
                    logger.error(f"Error in sync run: {e}", exc_info=True)
                await self.delay_close(settings.SECONDS_BEFORE_CLOSE)
                return

            tasks = [asyncio.create_task(self.sync_loop())]
            if settings.HTTP_SERVER_ENABLED:
                config = uvicorn.Config(server.app, host="0.0.0.0", port=settings.HTTP_SERVER_PORT, log_level="warning")
                tasks.append(asyncio.create_task(uvicorn.Server(config).serve()))

            try:
                await asyncio.gather(*tasks)
            except asyncio.CancelledError:
                pass
        finally:
            await self.close()

def setup_logging():
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    # Silence noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)

def run():
    setup_logging()
    signal.signal(signal.SIGTERM, handle_sigterm)
    for endpoint in settings.endpoints():
        if not endpoint.configured:
            logger.warning(f"No API URL configured for {endpoint.name}")
    service = SyncService()
    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")

if __name__ == "__main__":
    run()
