import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
import spotipy
from spotipy.exceptions import SpotifyException, SpotifyOauthError
from spotipy.oauth2 import SpotifyOAuth
from urllib3.exceptions import ReadTimeoutError

from albumqueue.crosscutting.config import Settings
from albumqueue.domain.entities import (
    Album, AuthorizationState, QueueEntry, QueueSnapshot, Track,
)
from albumqueue.domain.errors import NotFound, PermanentFailure, RateLimited, TemporaryFailure

logger = logging.getLogger(__name__)

ALBUM_TRACKS_PAGE_SIZE = 50
QUEUE_WINDOW = 20


class SpotifyProvider:
    """Spotify implementation of the authorization, catalog, hydration and playback ports.

    spotipy is synchronous; every network call runs in a worker thread, and the
    synchronous playback methods answer from state those calls leave behind.
    Spotify has no queue-replace call, so ``replace_queue`` buffers the URIs and
    ``play`` submits them with ``start_playback``, which discards the previous
    context, then reads the live queue in the same worker thread. The queue
    endpoint returns the current item plus at most ``QUEUE_WINDOW`` upcoming
    items; a full window marks the snapshot as truncated.
    """

    def __init__(self,
                 settings: Settings,
                 client: Optional[spotipy.Spotify] = None,
                 auth_manager: Optional[SpotifyOAuth] = None):
        """Initialize Spotify provider.

        Args:
            settings: Application settings; the OAuth client must be configured
                unless both ``client`` and ``auth_manager`` are supplied
            client: Prebuilt spotipy client
            auth_manager: Prebuilt OAuth manager
        """
        self._settings = settings
        if auth_manager is None:
            settings.validate_spotify()
            auth_manager = SpotifyOAuth(
                client_id=settings.spotify_client_id,
                client_secret=settings.spotify_client_secret,
                redirect_uri=settings.spotify_redirect_uri,
                scope=settings.spotify_scope_string,
                cache_path=settings.token_cache_path,
            )
        self._auth_manager = auth_manager
        self._client = client or spotipy.Spotify(
            auth_manager=auth_manager,
            requests_timeout=settings.requests_timeout,
        )
        self._market = settings.market
        self._preferred_device_id = settings.device_id
        self._device_id: Optional[str] = None
        self._prepared = False
        self._pending_uris: List[str] = []
        self._snapshot = QueueSnapshot()
        self._stop_future: Optional[asyncio.Future] = None

    # AuthorizationService

    async def request_authorization(self) -> AuthorizationState:
        return await asyncio.to_thread(self._authorize)

    def _authorize(self) -> AuthorizationState:
        try:
            # Opens the consent page when no cached token exists
            token = self._auth_manager.get_access_token(as_dict=False)
        except SpotifyOauthError as e:
            error = getattr(e, 'error', None) or ''
            if error == 'access_denied' or 'access_denied' in str(e):
                logger.warning("Spotify authorization was denied by the user")
                return AuthorizationState.DENIED
            logger.error(f"Spotify authorization failed: {e}")
            return AuthorizationState.UNKNOWN
        except (SpotifyException, requests.RequestException) as e:
            logger.error(f"Spotify authorization failed: {e}")
            return AuthorizationState.UNKNOWN

        if not token:
            return AuthorizationState.NOT_DETERMINED

        try:
            user = self._client.current_user()
        except SpotifyException as e:
            if e.http_status == 403:
                return AuthorizationState.RESTRICTED
            logger.error(f"Failed to read Spotify account: {e}")
            return AuthorizationState.UNKNOWN
        except (ReadTimeoutError, requests.RequestException) as e:
            logger.error(f"Failed to read Spotify account: {e}")
            return AuthorizationState.UNKNOWN

        product = (user or {}).get('product')
        if product and product != 'premium':
            # Playback control endpoints require Premium
            logger.warning(f"Spotify account product is '{product}'; playback control unavailable")
            return AuthorizationState.RESTRICTED
        return AuthorizationState.AUTHORIZED

    # CatalogSearchService

    async def search_albums(self, term: str, limit: int = 20,
                            include_top_results: bool = False) -> List[Album]:
        """Search albums; Spotify has no top-results grouping so that flag is a no-op."""
        if not term.strip():
            return []
        return await asyncio.to_thread(self._search_albums, term, limit)

    def _search_albums(self, term: str, limit: int) -> List[Album]:
        logger.debug(f"Searching albums: {term} (market={self._market}, limit={limit})")
        results = self._call('album search', self._client.search,
                             q=term, limit=limit, type='album', market=self._market)
        items = ((results or {}).get('albums') or {}).get('items') or []
        albums = []
        for item in items:
            album = self._spotify_album_to_domain(item)
            if album:
                albums.append(album)
        return albums[:limit]

    # TrackHydrationService

    async def fetch_tracks(self, album: Album) -> Album:
        return await asyncio.to_thread(self._fetch_tracks, album)

    def _fetch_tracks(self, album: Album) -> Album:
        tracks: List[Track] = []
        offset = 0
        while True:
            page = self._call('album tracks', self._client.album_tracks, album.id,
                              limit=ALBUM_TRACKS_PAGE_SIZE, offset=offset, market=self._market)
            items = (page or {}).get('items') or []
            for item in items:
                track = self._spotify_track_to_domain(item)
                if track:
                    tracks.append(track)
            if not (page or {}).get('next') or len(items) < ALBUM_TRACKS_PAGE_SIZE:
                break
            offset += ALBUM_TRACKS_PAGE_SIZE
        logger.debug(f"Album {album.id} hydrated with {len(tracks)} tracks")
        return album.with_tracks(tracks)

    # PlaybackQueueService

    def replace_queue(self, entries: Sequence[QueueEntry]) -> None:
        self._pending_uris = [e.uri or f"spotify:track:{e.track_id}" for e in entries]

    def is_prepared(self) -> bool:
        return self._prepared

    async def prepare(self) -> None:
        await asyncio.to_thread(self._prepare)

    def _prepare(self) -> None:
        devices = self._list_devices()

        active = next((d for d in devices if d.get('is_active') and (
            not self._preferred_device_id or d.get('id') == self._preferred_device_id
        )), None)
        if active is not None:
            logger.debug(f"Using active device '{active.get('name')}'")
            self._device_id = active['id']
            self._prepared = True
            return

        device = None
        if self._preferred_device_id:
            device = next((d for d in devices if d.get('id') == self._preferred_device_id), None)
        elif devices:
            device = next((d for d in devices if not d.get('is_restricted')), None)
        if device is None:
            raise PermanentFailure("No Spotify playback device is available; open Spotify on a device first")
        logger.info(f"Transferring playback to device '{device.get('name')}'")
        self._call('transfer playback', self._client.transfer_playback,
                   device['id'], force_play=False)
        self._device_id = device['id']
        self._prepared = True

    async def play(self) -> None:
        await asyncio.to_thread(self._play)

    def _play(self) -> None:
        if not self._pending_uris:
            raise PermanentFailure("Nothing queued to play")
        try:
            self._call('start playback', self._client.start_playback,
                       device_id=self._device_id, uris=list(self._pending_uris))
        except (NotFound, PermanentFailure):
            # Device went away or was never usable; prepare again next time
            self._prepared = False
            raise
        self._snapshot = self._read_queue()

    def stop(self) -> None:
        self._snapshot = QueueSnapshot(entries=self._snapshot.entries,
                                       truncated=self._snapshot.truncated)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._stop()
            return
        self._stop_future = loop.run_in_executor(None, self._stop)
        self._stop_future.add_done_callback(self._log_stop_failure)

    def _stop(self) -> None:
        self._call('pause playback', self._client.pause_playback, device_id=self._device_id)

    def _log_stop_failure(self, future: asyncio.Future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Failed to pause Spotify playback: {future.exception()}")

    def current_queue_snapshot(self) -> QueueSnapshot:
        return self._snapshot

    async def refresh_queue_snapshot(self) -> None:
        self._snapshot = await asyncio.to_thread(self._read_queue)

    def _read_queue(self) -> QueueSnapshot:
        data = self._call('read queue', self._client.queue) or {}
        current = self._spotify_queue_item_to_entry(data.get('currently_playing'))
        entries = [current] if current else []
        upcoming = data.get('queue') or []
        for item in upcoming:
            entry = self._spotify_queue_item_to_entry(item)
            if entry:
                entries.append(entry)
        return QueueSnapshot(entries=tuple(entries), current_entry=current,
                             truncated=len(upcoming) >= QUEUE_WINDOW)

    # Helpers

    def _list_devices(self) -> List[Dict[str, Any]]:
        result = self._call('list devices', self._client.devices) or {}
        return result.get('devices') or []

    def _call(self, operation: str, func: Callable, *args, **kwargs) -> Any:
        """Invoke a spotipy call and translate its failures into domain errors."""
        try:
            return func(*args, **kwargs)
        except SpotifyException as e:
            raise self._translate_error(e, operation) from e
        except (ReadTimeoutError, requests.Timeout) as e:
            logger.warning(f"Read timeout during {operation}")
            raise TemporaryFailure(f"Timed out during {operation}") from e
        except requests.RequestException as e:
            raise TemporaryFailure(f"Network error during {operation}: {e}") from e

    def _translate_error(self, error: SpotifyException, operation: str) -> Exception:
        status = error.http_status
        message = f"Spotify {operation} failed: {error.msg or error}"
        if status == 429:
            headers = error.headers or {}
            try:
                retry_after_ms = int(headers.get('Retry-After', 1)) * 1000
            except (TypeError, ValueError):
                retry_after_ms = 1000
            return RateLimited(retry_after_ms=retry_after_ms, message=message)
        if status == 404:
            return NotFound(message)
        if status in (400, 401, 403):
            return PermanentFailure(message)
        return TemporaryFailure(message)

    def _spotify_album_to_domain(self, item: Dict[str, Any]) -> Optional[Album]:
        """Convert a Spotify simplified album object to a domain Album."""
        album_id = (item or {}).get('id')
        if not album_id:
            return None
        artists = item.get('artists') or []
        artist_name = ', '.join(a.get('name', '') for a in artists if a.get('name'))
        return Album(
            id=album_id,
            title=item.get('name', ''),
            artist_name=artist_name,
            uri=item.get('uri') or f"spotify:album:{album_id}",
        )

    def _spotify_track_to_domain(self, item: Dict[str, Any]) -> Optional[Track]:
        """Convert a Spotify simplified track object to a domain Track."""
        track_id = (item or {}).get('id')
        if not track_id:
            return None
        return Track(
            id=track_id,
            title=item.get('name', ''),
            track_number=item.get('track_number'),
            duration_ms=item.get('duration_ms'),
            uri=item.get('uri') or f"spotify:track:{track_id}",
            is_playable=item.get('is_playable', True) is not False,
        )

    def _spotify_queue_item_to_entry(self, item: Optional[Dict[str, Any]]) -> Optional[QueueEntry]:
        if not item or not item.get('id'):
            return None
        return QueueEntry(
            track_id=item['id'],
            title=item.get('name', ''),
            track_number=item.get('track_number'),
            uri=item.get('uri'),
        )
