import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import dotenv_values


class ConfigError(Exception):
    """Configuration error."""
    pass


DEFAULT_CONFIG_DIR = Path.home() / '.albumqueue'


@dataclass(frozen=True)
class Settings:
    """Application settings resolved from the environment and an optional .env file."""

    spotify_client_id: Optional[str] = None
    spotify_client_secret: Optional[str] = None
    spotify_redirect_uri: Optional[str] = None
    app_name: str = 'albumqueue'
    market: str = 'US'
    search_limit: int = 20
    device_id: Optional[str] = None
    token_cache_path: str = str(DEFAULT_CONFIG_DIR / '.spotify_cache')
    suppress_inline_errors: bool = False
    observation_delay: float = 0.0
    requests_timeout: float = 15.0
    log_level: str = 'INFO'
    spotify_scopes: List[str] = field(default_factory=lambda: [
        'user-read-playback-state',      # Read devices and the live queue
        'user-modify-playback-state',    # Transfer, start and pause playback
        'user-read-private',             # Account product level and market
    ])

    @property
    def spotify_scope_string(self) -> str:
        """Get Spotify scopes as space-separated string."""
        return ' '.join(self.spotify_scopes)

    def validate_spotify(self) -> None:
        """Raise ConfigError unless the Spotify OAuth client is fully configured."""
        if not self.spotify_client_id:
            raise ConfigError("SPOTIFY_CLIENT_ID not found in environment")
        if not self.spotify_client_secret:
            raise ConfigError("SPOTIFY_CLIENT_SECRET not found in environment")
        if not self.spotify_redirect_uri:
            raise ConfigError("SPOTIFY_REDIRECT_URI not found in environment")

    def summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        return {
            'app_name': self.app_name,
            'market': self.market,
            'search_limit': self.search_limit,
            'device_id': self.device_id,
            'token_cache_path': self.token_cache_path,
            'suppress_inline_errors': self.suppress_inline_errors,
            'observation_delay': self.observation_delay,
            'requests_timeout': self.requests_timeout,
            'log_level': self.log_level,
            'has_spotify_client': bool(self.spotify_client_id and self.spotify_client_secret),
            'spotify_scopes': list(self.spotify_scopes),
        }


def _parse_bool(value: Optional[str]) -> bool:
    return str(value or '').strip().lower() in ('1', 'true', 'yes', 'on')


def _parse_int(name: str, value: Optional[str], default: int, minimum: int = 1) -> int:
    if value is None or not str(value).strip():
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if parsed < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {parsed}")
    return parsed


def _parse_float(name: str, value: Optional[str], default: float) -> float:
    if value is None or not str(value).strip():
        return default
    try:
        parsed = float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if parsed < 0:
        raise ConfigError(f"{name} must not be negative, got {parsed}")
    return parsed


def load_settings(env_file: Optional[str] = None,
                  environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Load settings, letting the process environment override the .env file."""
    values: Dict[str, Optional[str]] = {}
    path = Path(env_file) if env_file else Path('.env')
    if path.exists():
        values.update(dotenv_values(path))
    values.update(os.environ if environ is None else environ)

    def get(key: str) -> Optional[str]:
        value = values.get(key)
        if value is None or not str(value).strip():
            return None
        return str(value).strip()

    return Settings(
        spotify_client_id=get('SPOTIFY_CLIENT_ID'),
        spotify_client_secret=get('SPOTIFY_CLIENT_SECRET'),
        spotify_redirect_uri=get('SPOTIFY_REDIRECT_URI'),
        app_name=get('ALBUMQUEUE_APP_NAME') or 'albumqueue',
        market=get('ALBUMQUEUE_MARKET') or 'US',
        search_limit=_parse_int('ALBUMQUEUE_SEARCH_LIMIT', get('ALBUMQUEUE_SEARCH_LIMIT'), 20),
        device_id=get('ALBUMQUEUE_DEVICE_ID'),
        token_cache_path=get('ALBUMQUEUE_TOKEN_CACHE') or str(DEFAULT_CONFIG_DIR / '.spotify_cache'),
        suppress_inline_errors=_parse_bool(get('ALBUMQUEUE_SUPPRESS_INLINE_ERRORS')),
        observation_delay=_parse_float('ALBUMQUEUE_OBSERVATION_DELAY',
                                       get('ALBUMQUEUE_OBSERVATION_DELAY'), 0.0),
        requests_timeout=_parse_float('ALBUMQUEUE_REQUESTS_TIMEOUT',
                                      get('ALBUMQUEUE_REQUESTS_TIMEOUT'), 15.0),
        log_level=(get('ALBUMQUEUE_LOG_LEVEL') or 'INFO').upper(),
    )
