import asyncio
import logging
import os
import threading
from datetime import datetime
from typing import Any, Awaitable, Dict, Optional

from flask import Flask, jsonify, request

from albumqueue.application.coordinator import AlbumQueueCoordinator
from albumqueue.domain.entities import Album, QueueSubmission

VERSION = "0.1.0"


class EventLoopRunner:
    """Runs one asyncio loop on a background thread and executes coroutines on it.

    Flask handles requests on its own threads; routing every coordinator call
    through this loop keeps all state mutation in one coordination context.
    """

    def __init__(self):
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever,
                                        name='albumqueue-loop', daemon=True)
        self._thread.start()

    def run(self, coro: Awaitable, timeout: Optional[float] = None) -> Any:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout)

    def close(self) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)
        self._loop.close()


def _album_to_json(album: Optional[Album]) -> Optional[Dict[str, Any]]:
    if album is None:
        return None
    data = {
        'id': album.id,
        'title': album.title,
        'artistName': album.artist_name,
        'displayName': album.display_name,
    }
    if album.tracks is not None:
        data['tracks'] = [
            {'id': t.id, 'title': t.title, 'trackNumber': t.track_number, 'durationMs': t.duration_ms}
            for t in album.tracks
        ]
    return data


def _submission_to_json(submission: QueueSubmission) -> Dict[str, Any]:
    return {
        'submitted': submission.submitted_count,
        'observed': submission.observed_count,
        'verdict': submission.verdict,
        'status': submission.status,
        'missingTrackIds': submission.missing_track_ids,
        'hiddenTrackIds': submission.hidden_track_ids,
        'truncated': submission.truncated,
        'observationDelay': submission.observation_delay,
    }


def _error_to_json(error: Optional[BaseException]) -> Optional[Dict[str, str]]:
    if error is None:
        return None
    return {
        'type': type(error).__name__,
        'description': getattr(error, 'description', None) or str(error),
    }


def create_app(coordinator: AlbumQueueCoordinator,
               runner: Optional[EventLoopRunner] = None) -> Flask:
    """Create the Flask JSON API around a coordinator."""
    app = Flask(__name__)
    logger = logging.getLogger(__name__)
    runner = runner or EventLoopRunner()
    app.config['ALBUMQUEUE_RUNNER'] = runner
    app.config['ALBUMQUEUE_COORDINATOR'] = coordinator

    async def _state() -> Dict[str, Any]:
        snapshot = coordinator.snapshot
        return {
            'authorization': coordinator.gate.current_status().value,
            'albums': [_album_to_json(a) for a in snapshot.albums],
            'status': snapshot.status,
            'searchText': snapshot.search_text,
            'playingAlbum': _album_to_json(snapshot.playing_album),
            'reloadAllowed': coordinator.activity.reload_allowed,
            'activityCount': coordinator.activity.count,
            'displayedError': _error_to_json(coordinator.displayed_error()),
            'modalError': _error_to_json(snapshot.modal_error),
        }

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        return jsonify({
            'status': 'healthy',
            'version': VERSION,
            'commit': os.getenv('GIT_COMMIT', 'unknown'),
            'timestamp': datetime.now().isoformat()
        }), 200

    @app.route('/state', methods=['GET'])
    def get_state():
        return jsonify(runner.run(_state())), 200

    @app.route('/search', methods=['POST'])
    def search():
        payload = request.get_json(silent=True) or {}
        term = payload.get('term')
        if not isinstance(term, str):
            return jsonify({'error': 'Missing search term'}), 400
        runner.run(coordinator.search(term))
        return jsonify(runner.run(_state())), 200

    @app.route('/reload', methods=['POST'])
    def reload():
        runner.run(coordinator.reload())
        return jsonify(runner.run(_state())), 200

    @app.route('/albums/<album_id>/play', methods=['POST'])
    def play(album_id: str):
        album = coordinator.find_album(album_id)
        if album is None:
            return jsonify({'error': f'Album {album_id} is not in the current results'}), 404
        submission = runner.run(coordinator.play(album))
        body = {'state': runner.run(_state()), 'submission': None}
        if submission is not None:
            body['submission'] = _submission_to_json(submission)
        else:
            logger.info(f"Playback of album {album_id} did not produce a submission")
        return jsonify(body), 200

    @app.route('/errors/modal', methods=['DELETE'])
    def acknowledge_modal_error():
        async def _acknowledge():
            coordinator.acknowledge_modal_error()
        runner.run(_acknowledge())
        return jsonify(runner.run(_state())), 200

    @app.route('/stop', methods=['POST'])
    def stop():
        async def _stop():
            coordinator.stop()
        runner.run(_stop())
        return jsonify({'status': 'stopped'}), 200

    return app


class HTTPServer:
    """HTTP server exposing the coordinator as a JSON API."""

    def __init__(self, coordinator: AlbumQueueCoordinator,
                 host: str = 'localhost', port: int = 3000, debug: bool = False):
        """Initialize HTTP server."""
        self.host = host
        self.port = port
        self.debug = debug
        self.coordinator = coordinator
        self.logger = logging.getLogger(__name__)
        self.runner = EventLoopRunner()
        self.app = create_app(coordinator, self.runner)

    def run(self) -> None:
        """Start the coordinator and serve until interrupted."""
        self.runner.run(self.coordinator.start())
        self.logger.info(f"Starting HTTP server on {self.host}:{self.port}")
        try:
            self.app.run(host=self.host, port=self.port, debug=self.debug, use_reloader=False)
        finally:
            self.runner.run(self.coordinator.shutdown())
            self.runner.close()
