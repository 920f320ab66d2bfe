import asyncio
import time
from unittest.mock import Mock

import pytest
import requests
from spotipy.exceptions import SpotifyException, SpotifyOauthError

from albumqueue.application.access import AccessGate
from albumqueue.application.playback import PlaybackReconciliationWorkflow
from albumqueue.application.state import CoordinatorState
from albumqueue.crosscutting.config import ConfigError, Settings
from albumqueue.domain.entities import Album, AuthorizationState, QueueEntry
from albumqueue.domain.errors import NotFound, PermanentFailure, RateLimited, TemporaryFailure
from albumqueue.infrastructure.providers.spotify import QUEUE_WINDOW, SpotifyProvider
from albumqueue.tests.fakes import StubAuthorization, make_album


def spotify_track(track_id, number, name=None, playable=True):
    return {
        'id': track_id,
        'name': name or f"Song {number}",
        'track_number': number,
        'duration_ms': 200000,
        'uri': f"spotify:track:{track_id}",
        'is_playable': playable,
    }


class TestSpotifyProvider:
    """Contract tests for the Spotify provider adapter."""

    def setup_method(self):
        """Set up test fixtures."""
        self.mock_spotify = Mock()
        self.mock_auth = Mock()
        self.mock_auth.get_access_token.return_value = "test_access_token"
        self.mock_spotify.current_user.return_value = {'id': 'user', 'product': 'premium'}
        self.provider = SpotifyProvider(
            Settings(market='SE'), client=self.mock_spotify, auth_manager=self.mock_auth
        )

    def test_missing_client_configuration_raises_config_error(self):
        """Test that building the OAuth manager requires client credentials."""
        with pytest.raises(ConfigError, match="SPOTIFY_CLIENT_ID"):
            SpotifyProvider(Settings(), client=self.mock_spotify)

    @pytest.mark.asyncio
    async def test_authorized_for_premium_account(self):
        """Test that a token plus a premium account authorizes."""
        assert await self.provider.request_authorization() == AuthorizationState.AUTHORIZED
        self.mock_auth.get_access_token.assert_called_once_with(as_dict=False)

    @pytest.mark.asyncio
    async def test_free_account_is_restricted(self):
        """Test that playback control is restricted without Premium."""
        self.mock_spotify.current_user.return_value = {'id': 'user', 'product': 'free'}
        assert await self.provider.request_authorization() == AuthorizationState.RESTRICTED

    @pytest.mark.asyncio
    async def test_forbidden_account_is_restricted(self):
        """Test that a 403 on the account endpoint maps to restricted."""
        self.mock_spotify.current_user.side_effect = SpotifyException(403, -1, "Forbidden")
        assert await self.provider.request_authorization() == AuthorizationState.RESTRICTED

    @pytest.mark.asyncio
    async def test_network_failure_reading_account_is_unknown(self):
        """Test that a connection error on the account endpoint maps to unknown."""
        self.mock_spotify.current_user.side_effect = requests.ConnectionError("connection reset")
        assert await self.provider.request_authorization() == AuthorizationState.UNKNOWN

    @pytest.mark.asyncio
    async def test_access_denied_maps_to_denied(self):
        """Test that a refused consent maps to denied."""
        self.mock_auth.get_access_token.side_effect = SpotifyOauthError(
            "error: access_denied", error='access_denied'
        )
        assert await self.provider.request_authorization() == AuthorizationState.DENIED

    @pytest.mark.asyncio
    async def test_other_oauth_failure_maps_to_unknown(self):
        """Test that unexpected OAuth failures map to unknown."""
        self.mock_auth.get_access_token.side_effect = SpotifyOauthError(
            "invalid_client", error='invalid_client'
        )
        assert await self.provider.request_authorization() == AuthorizationState.UNKNOWN

    @pytest.mark.asyncio
    async def test_missing_token_is_not_determined(self):
        """Test that no token leaves the status undetermined."""
        self.mock_auth.get_access_token.return_value = None
        assert await self.provider.request_authorization() == AuthorizationState.NOT_DETERMINED
        self.mock_spotify.current_user.assert_not_called()

    @pytest.mark.asyncio
    async def test_search_albums_maps_results(self):
        """Test that album search results become unhydrated albums."""
        self.mock_spotify.search.return_value = {
            'albums': {
                'items': [
                    {
                        'id': 'alb1',
                        'name': 'First',
                        'uri': 'spotify:album:alb1',
                        'artists': [{'name': 'Artist A'}, {'name': 'Artist B'}],
                    },
                    {'id': None, 'name': 'Broken'},
                    {'id': 'alb2', 'name': 'Second', 'artists': []},
                ]
            }
        }

        albums = await self.provider.search_albums("query", limit=5)

        self.mock_spotify.search.assert_called_once_with(
            q="query", limit=5, type='album', market='SE'
        )
        assert [a.id for a in albums] == ['alb1', 'alb2']
        assert albums[0].artist_name == 'Artist A, Artist B'
        assert albums[0].is_hydrated is False
        assert albums[1].uri == 'spotify:album:alb2'
        assert albums[1].display_name == 'Second'

    @pytest.mark.asyncio
    async def test_blank_search_skips_request(self):
        """Test that a blank term returns no albums without calling Spotify."""
        assert await self.provider.search_albums("   ") == []
        self.mock_spotify.search.assert_not_called()

    @pytest.mark.asyncio
    async def test_fetch_tracks_paginates(self):
        """Test that album tracks are fetched across pages."""
        first_page = {
            'items': [spotify_track(f"t{i}", i) for i in range(1, 51)],
            'next': 'https://api.spotify.com/next',
        }
        second_page = {
            'items': [spotify_track("t51", 51), spotify_track("t52", 52, playable=False)],
            'next': None,
        }
        self.mock_spotify.album_tracks.side_effect = [first_page, second_page]

        album = await self.provider.fetch_tracks(Album(id='alb1', title='Long'))

        assert self.mock_spotify.album_tracks.call_count == 2
        second_call = self.mock_spotify.album_tracks.call_args_list[1]
        assert second_call.kwargs == {'limit': 50, 'offset': 50, 'market': 'SE'}
        assert len(album.tracks) == 52
        assert len(album.playable_tracks) == 51
        assert album.tracks[0].uri == 'spotify:track:t1'

    @pytest.mark.asyncio
    async def test_fetch_tracks_not_found(self):
        """Test that a 404 while hydrating becomes NotFound."""
        self.mock_spotify.album_tracks.side_effect = SpotifyException(404, -1, "Not found")
        with pytest.raises(NotFound):
            await self.provider.fetch_tracks(Album(id='missing', title='Missing'))

    def queue_response(self, track_ids, playing=True):
        items = [spotify_track(t, n) for n, t in enumerate(track_ids, start=1)]
        if playing and items:
            return {'currently_playing': items[0], 'queue': items[1:]}
        return {'currently_playing': None, 'queue': items}

    def test_not_prepared_before_prepare(self):
        """Test that a new provider needs preparing and asks nothing of the network."""
        assert self.provider.is_prepared() is False
        self.mock_spotify.devices.assert_not_called()

    @pytest.mark.asyncio
    async def test_prepare_uses_active_device_without_transfer(self):
        """Test that an already active device is used as is."""
        self.mock_spotify.devices.return_value = {
            'devices': [{'id': 'd1', 'is_active': False}, {'id': 'd2', 'is_active': True}]
        }

        await self.provider.prepare()

        assert self.provider.is_prepared() is True
        self.mock_spotify.transfer_playback.assert_not_called()

    @pytest.mark.asyncio
    async def test_prepare_transfers_to_first_unrestricted_device(self):
        """Test that prepare transfers playback without starting it."""
        self.mock_spotify.devices.return_value = {
            'devices': [
                {'id': 'd1', 'name': 'TV', 'is_restricted': True},
                {'id': 'd2', 'name': 'Laptop', 'is_restricted': False},
            ]
        }

        await self.provider.prepare()

        self.mock_spotify.transfer_playback.assert_called_once_with('d2', force_play=False)
        assert self.provider.is_prepared() is True

    @pytest.mark.asyncio
    async def test_prepare_without_devices_fails(self):
        """Test that prepare fails when no device is available."""
        self.mock_spotify.devices.return_value = {'devices': []}
        with pytest.raises(PermanentFailure):
            await self.provider.prepare()
        assert self.provider.is_prepared() is False

    @pytest.mark.asyncio
    async def test_play_submits_buffered_queue(self):
        """Test that play starts playback with every queued URI."""
        self.mock_spotify.devices.return_value = {
            'devices': [{'id': 'd1', 'name': 'Laptop', 'is_active': True}]
        }
        self.mock_spotify.queue.return_value = self.queue_response(['t1', 't2'])
        self.provider.replace_queue([
            QueueEntry(track_id='t1', title='One', track_number=1, uri='spotify:track:t1'),
            QueueEntry(track_id='t2', title='Two', track_number=2, uri=None),
        ])
        await self.provider.prepare()

        await self.provider.play()

        self.mock_spotify.start_playback.assert_called_once_with(
            device_id='d1', uris=['spotify:track:t1', 'spotify:track:t2']
        )

    @pytest.mark.asyncio
    async def test_play_with_empty_queue_fails(self):
        """Test that play refuses an empty queue."""
        with pytest.raises(PermanentFailure):
            await self.provider.play()

    @pytest.mark.asyncio
    async def test_play_on_missing_device_needs_prepare_again(self):
        """Test that a vanished device clears the prepared flag."""
        self.mock_spotify.devices.return_value = {'devices': [{'id': 'd1', 'is_active': True}]}
        self.mock_spotify.start_playback.side_effect = SpotifyException(404, -1, "Device not found")
        self.provider.replace_queue([QueueEntry(track_id='t1')])
        await self.provider.prepare()

        with pytest.raises(NotFound):
            await self.provider.play()

        assert self.provider.is_prepared() is False

    @pytest.mark.asyncio
    async def test_play_records_queue_snapshot(self):
        """Test that the queue read after play includes the current item."""
        self.mock_spotify.queue.return_value = self.queue_response(['t1', 't2', 't3'])
        self.provider.replace_queue([QueueEntry(track_id=t) for t in ('t1', 't2', 't3')])

        await self.provider.play()
        self.mock_spotify.reset_mock()
        snapshot = self.provider.current_queue_snapshot()

        assert [e.track_id for e in snapshot.entries] == ['t1', 't2', 't3']
        assert snapshot.current_entry.track_id == 't1'
        assert snapshot.current_entry.track_number == 1
        assert snapshot.truncated is False
        assert self.mock_spotify.method_calls == []

    def test_current_queue_snapshot_when_idle(self):
        """Test that an idle player reports an empty queue without a request."""
        snapshot = self.provider.current_queue_snapshot()

        assert snapshot.entries == ()
        assert snapshot.current_entry is None
        self.mock_spotify.queue.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_queue_snapshot_reads_live_queue(self):
        """Test that a refresh replaces the recorded snapshot."""
        self.mock_spotify.queue.return_value = self.queue_response(['t1', 't2'], playing=False)

        await self.provider.refresh_queue_snapshot()
        snapshot = self.provider.current_queue_snapshot()

        assert [e.track_id for e in snapshot.entries] == ['t1', 't2']
        assert snapshot.current_entry is None

    @pytest.mark.asyncio
    async def test_full_queue_window_marks_snapshot_truncated(self):
        """Test that a queue read capped at the window is marked truncated."""
        track_ids = [f"t{i}" for i in range(1, 26)]
        self.mock_spotify.queue.return_value = self.queue_response(track_ids[:1 + QUEUE_WINDOW])
        self.provider.replace_queue([QueueEntry(track_id=t) for t in track_ids])

        await self.provider.play()
        snapshot = self.provider.current_queue_snapshot()

        assert len(snapshot.entries) == 21
        assert snapshot.truncated is True

    @pytest.mark.asyncio
    async def test_long_album_through_capped_queue_is_not_a_mismatch(self):
        """Test that tracks beyond the queue window are not reported as dropped."""
        album = make_album("a1", 25)
        ids = [t.id for t in album.tracks]
        self.mock_spotify.devices.return_value = {'devices': [{'id': 'd1', 'is_active': True}]}
        self.mock_spotify.queue.return_value = self.queue_response(ids[:21])
        state = CoordinatorState()
        workflow = PlaybackReconciliationWorkflow(
            self.provider, self.provider, AccessGate(StubAuthorization()), state
        )

        submission = await workflow.play(album)

        assert submission.is_match
        assert submission.hidden_track_ids == ids[21:]
        assert state.snapshot.status == "25 songs added; 21+ songs actually in queue - correct behavior"

    @pytest.mark.asyncio
    async def test_long_album_with_dropped_track_in_window_is_a_mismatch(self):
        """Test that a track missing inside the visible window is still detected."""
        album = make_album("a1", 25)
        ids = [t.id for t in album.tracks]
        self.mock_spotify.devices.return_value = {'devices': [{'id': 'd1', 'is_active': True}]}
        self.mock_spotify.queue.return_value = self.queue_response(ids[:5] + ids[6:22])
        state = CoordinatorState()
        workflow = PlaybackReconciliationWorkflow(
            self.provider, self.provider, AccessGate(StubAuthorization()), state
        )

        submission = await workflow.play(album)

        assert submission.missing_track_ids == ["a1-6"]
        assert state.snapshot.status == "25 songs added; 21+ songs actually in queue - MISMATCH DETECTED"

    @pytest.mark.asyncio
    async def test_slow_network_does_not_stall_event_loop(self):
        """Test that playback keeps the event loop responsive while Spotify is slow."""
        album = make_album("a1", 3)

        def slow(result=None):
            def call(*args, **kwargs):
                time.sleep(0.3)
                return result
            return call

        self.mock_spotify.devices.side_effect = slow({'devices': [{'id': 'd1', 'is_active': True}]})
        self.mock_spotify.start_playback.side_effect = slow()
        self.mock_spotify.queue.side_effect = slow(self.queue_response([t.id for t in album.tracks]))
        self.mock_spotify.pause_playback.side_effect = slow()
        workflow = PlaybackReconciliationWorkflow(
            self.provider, self.provider, AccessGate(StubAuthorization()), CoordinatorState()
        )

        done = asyncio.Event()
        gaps = []

        async def ticker():
            loop = asyncio.get_running_loop()
            last = loop.time()
            while not done.is_set():
                await asyncio.sleep(0.01)
                now = loop.time()
                gaps.append(now - last)
                last = now

        ticks = asyncio.create_task(ticker())
        submission = await workflow.play(album)
        workflow.now_playing_lines()
        workflow.stop()
        await self.provider._stop_future
        done.set()
        await ticks

        assert submission.is_match
        assert self.mock_spotify.devices.call_count == 1
        self.mock_spotify.pause_playback.assert_called_once_with(device_id='d1')
        assert max(gaps) < 0.2

    @pytest.mark.asyncio
    async def test_stop_inside_event_loop_runs_in_background(self):
        """Test that stop returns at once and pauses in a worker thread."""
        self.mock_spotify.pause_playback.side_effect = lambda **kwargs: time.sleep(0.3)

        started = time.monotonic()
        self.provider.stop()
        elapsed = time.monotonic() - started
        await self.provider._stop_future

        assert elapsed < 0.1
        self.mock_spotify.pause_playback.assert_called_once_with(device_id=None)
        assert self.provider.current_queue_snapshot().current_entry is None

    def test_stop_pauses_playback(self):
        """Test that stop pauses playback."""
        self.provider.stop()
        self.mock_spotify.pause_playback.assert_called_once_with(device_id=None)

    @pytest.mark.asyncio
    async def test_rate_limit_translation(self):
        """Test that a 429 becomes RateLimited with the Retry-After delay."""
        self.mock_spotify.search.side_effect = SpotifyException(
            429, -1, "Too many requests", headers={'Retry-After': '3'}
        )

        with pytest.raises(RateLimited) as exc_info:
            await self.provider.search_albums("query")

        assert exc_info.value.retry_after_ms == 3000

    @pytest.mark.asyncio
    async def test_server_error_translation(self):
        """Test that a 5xx becomes TemporaryFailure."""
        self.mock_spotify.search.side_effect = SpotifyException(503, -1, "Unavailable")
        with pytest.raises(TemporaryFailure):
            await self.provider.search_albums("query")

    @pytest.mark.asyncio
    async def test_bad_request_translation(self):
        """Test that a 400 becomes PermanentFailure."""
        self.mock_spotify.search.side_effect = SpotifyException(400, -1, "Bad request")
        with pytest.raises(PermanentFailure):
            await self.provider.search_albums("query")

    @pytest.mark.asyncio
    async def test_timeout_translation(self):
        """Test that request timeouts become TemporaryFailure."""
        self.mock_spotify.search.side_effect = requests.Timeout("read timed out")
        with pytest.raises(TemporaryFailure, match="Timed out during album search"):
            await self.provider.search_albums("query")

    @pytest.mark.asyncio
    async def test_connection_error_translation(self):
        """Test that network errors become TemporaryFailure."""
        self.mock_spotify.search.side_effect = requests.ConnectionError("refused")
        with pytest.raises(TemporaryFailure, match="Network error"):
            await self.provider.search_albums("query")
