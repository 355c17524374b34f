"""
Cookie-backed session state.

The browser cookie jar is the only persistence layer: the OAuth callback
writes the user's name, top tracks, refresh token and selected options, and
every later request reads them back. User-visible values are percent-encoded
with the same alphabet as JavaScript's encodeURIComponent so the page can
decode them with decodeURIComponent.
"""

import json
import logging
from dataclasses import dataclass, field
from urllib.parse import quote, unquote

from werkzeug.http import dump_cookie, parse_cookie

log = logging.getLogger(__name__)

NAME_COOKIE = 'spotify_name'
TRACKS_COOKIE = 'spotify_tracks'
REFRESH_TOKEN_COOKIE = 'spotify_refresh_token'
TIME_RANGE_COOKIE = 'spotify_timeRange'
TRACK_LIMIT_COOKIE = 'spotify_trackLimit'

ALL_COOKIES = (NAME_COOKIE, TRACKS_COOKIE, REFRESH_TOKEN_COOKIE,
               TIME_RANGE_COOKIE, TRACK_LIMIT_COOKIE)

COOKIE_MAX_AGE = 3600

TIME_RANGES = ('short_term', 'medium_term', 'long_term')
DEFAULT_TIME_RANGE = 'short_term'
DEFAULT_TRACK_LIMIT = 10
MAX_TRACK_LIMIT = 30

# Browsers drop any cookie whose name, value and attributes exceed 4096 bytes
MAX_COOKIE_SIZE = 4093

# Characters encodeURIComponent leaves alone on top of quote()'s own set
_URI_COMPONENT_SAFE = "!~*'()"
# JSON punctuation that is legal in a cookie value and that
# decodeURIComponent passes through untouched
_TRACKS_SAFE = _URI_COMPONENT_SAFE + '[]{}:'


@dataclass(frozen=True)
class Track:
    name: str
    artist: str

    def to_dict(self):
        return {'name': self.name, 'artist': self.artist}


@dataclass(frozen=True)
class SessionOptions:
    time_range: str = DEFAULT_TIME_RANGE
    track_limit: int = DEFAULT_TRACK_LIMIT

    @classmethod
    def from_values(cls, time_range=None, track_limit=None):
        """Validate user-supplied options. Missing values take the defaults.

        Raises ValueError for an unknown time range or a limit outside
        1..MAX_TRACK_LIMIT.
        """
        if time_range in (None, ''):
            time_range = DEFAULT_TIME_RANGE
        if time_range not in TIME_RANGES:
            raise ValueError(f'Invalid time range: {time_range!r}')
        if track_limit in (None, ''):
            track_limit = DEFAULT_TRACK_LIMIT
        if isinstance(track_limit, bool):
            raise ValueError(f'Invalid track limit: {track_limit!r}')
        try:
            limit = int(track_limit)
        except (TypeError, ValueError):
            raise ValueError(f'Invalid track limit: {track_limit!r}') from None
        if not 1 <= limit <= MAX_TRACK_LIMIT:
            raise ValueError(
                f'Track limit must be between 1 and {MAX_TRACK_LIMIT}')
        return cls(time_range=time_range, track_limit=limit)

    @classmethod
    def coerce(cls, time_range=None, track_limit=None):
        """Like from_values, but fall back to defaults field by field."""
        try:
            tr = cls.from_values(time_range=time_range).time_range
        except ValueError:
            tr = DEFAULT_TIME_RANGE
        try:
            limit = cls.from_values(track_limit=track_limit).track_limit
        except ValueError:
            limit = DEFAULT_TRACK_LIMIT
        return cls(time_range=tr, track_limit=limit)

    def to_dict(self):
        return {'timeRange': self.time_range, 'trackLimit': self.track_limit}


@dataclass(frozen=True)
class SessionState:
    name: str | None = None
    tracks: list[Track] = field(default_factory=list)
    options: SessionOptions = field(default_factory=SessionOptions)
    has_refresh_token: bool = False

    @property
    def connected(self):
        return bool(self.name)

    def to_dict(self):
        return {
            'connected': self.connected,
            'name': self.name,
            'tracks': [t.to_dict() for t in self.tracks],
            'canRefresh': self.has_refresh_token,
            **self.options.to_dict(),
        }


# ─── Value codecs ────────────────────────────────────────────────────────

def encode_component(value):
    return quote(str(value), safe=_URI_COMPONENT_SAFE)


def decode_component(value):
    return unquote(value, errors='replace')


def encode_tracks(tracks):
    """Serialize tracks to the spotify_tracks cookie value."""
    payload = json.dumps([t.to_dict() for t in tracks],
                         ensure_ascii=False, separators=(',', ':'))
    return quote(payload, safe=_TRACKS_SAFE)


def _cookie_size(name, value):
    return len(dump_cookie(name, value, max_age=COOKIE_MAX_AGE, path='/',
                           secure=True, samesite='Lax', max_size=0))


def fit_tracks(tracks):
    """Drop tracks from the end until the tracks cookie fits in a browser.

    Returns (tracks, cookie_value). Lists that fit are kept whole.
    """
    tracks = list(tracks)
    value = encode_tracks(tracks)
    if _cookie_size(TRACKS_COOKIE, value) <= MAX_COOKIE_SIZE:
        return tracks, value
    total = len(tracks)
    while tracks and _cookie_size(TRACKS_COOKIE, value) > MAX_COOKIE_SIZE:
        tracks.pop()
        value = encode_tracks(tracks)
    log.warning(f'Tracks cookie too large, keeping {len(tracks)} of {total} tracks')
    return tracks, value


def decode_tracks(value):
    """Parse a spotify_tracks cookie value.

    Returns None when the value is not a JSON array of {name, artist}
    string objects.
    """
    if not value:
        return None
    try:
        data = json.loads(decode_component(value))
    except (TypeError, ValueError):
        return None
    if not isinstance(data, list):
        return None
    tracks = []
    for item in data:
        if not isinstance(item, dict):
            return None
        name, artist = item.get('name'), item.get('artist')
        if not isinstance(name, str) or not isinstance(artist, str):
            return None
        tracks.append(Track(name=name, artist=artist))
    return tracks


def encode_state(options):
    """OAuth state parameter carrying the selected options."""
    return json.dumps(options.to_dict(), separators=(',', ':'))


def decode_state(raw):
    """Inverse of encode_state. Anything unusable gives the default options."""
    if not raw:
        return SessionOptions()
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        log.warning(f'Ignoring unparsable OAuth state: {e}')
        return SessionOptions()
    if not isinstance(data, dict):
        log.warning('Ignoring OAuth state that is not a JSON object')
        return SessionOptions()
    return SessionOptions.coerce(data.get('timeRange'), data.get('trackLimit'))


# ─── Reading ─────────────────────────────────────────────────────────────

def read_session(cookies):
    """Decode the session from a cookie mapping. Never raises."""
    name = cookies.get(NAME_COOKIE)
    name = decode_component(name) if name else None

    tracks = []
    raw_tracks = cookies.get(TRACKS_COOKIE)
    if raw_tracks:
        decoded = decode_tracks(raw_tracks)
        if decoded is None:
            log.warning(f'Dropping malformed {TRACKS_COOKIE} cookie')
        else:
            tracks = decoded

    time_range = cookies.get(TIME_RANGE_COOKIE)
    track_limit = cookies.get(TRACK_LIMIT_COOKIE)
    options = SessionOptions.coerce(
        decode_component(time_range) if time_range else None,
        decode_component(track_limit) if track_limit else None,
    )

    return SessionState(
        name=name or None,
        tracks=tracks,
        options=options,
        has_refresh_token=bool(cookies.get(REFRESH_TOKEN_COOKIE)),
    )


def parse_cookie_header(header):
    """Decode the session straight from a raw Cookie header."""
    return read_session(parse_cookie(header or ''))


# ─── Writing ─────────────────────────────────────────────────────────────

def set_session_cookies(response, name, tracks, options, refresh_token=None,
                        secure=False):
    """Attach the session cookies to a Flask response.

    The refresh token is http-only; everything else stays readable from
    JavaScript. Tracks that would push the cookie past the browser limit
    are dropped from the end.
    """
    common = {
        'max_age': COOKIE_MAX_AGE,
        'path': '/',
        'samesite': 'Lax',
        'secure': secure,
    }
    response.set_cookie(NAME_COOKIE, encode_component(name),
                        httponly=False, **common)
    tracks, tracks_value = fit_tracks(tracks)
    response.set_cookie(TRACKS_COOKIE, tracks_value,
                        httponly=False, **common)
    response.set_cookie(TIME_RANGE_COOKIE, options.time_range,
                        httponly=False, **common)
    response.set_cookie(TRACK_LIMIT_COOKIE, str(options.track_limit),
                        httponly=False, **common)
    if refresh_token:
        response.set_cookie(REFRESH_TOKEN_COOKIE, refresh_token,
                            httponly=True, **common)
    return response


def clear_session_cookies(response):
    for name in ALL_COOKIES:
        response.delete_cookie(name, path='/')
    return response
