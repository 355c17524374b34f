"""
Spotify API client wrapper.
Handles the authorization-code flow, token refresh, and the profile/top-tracks
reads the music profile is built from.
"""

import logging
from urllib.parse import urlencode

import requests
import spotipy
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import (SpotifyClientCredentials, SpotifyOAuth,
                            SpotifyOauthError)

from .session_cookies import SessionOptions, Track, encode_state

log = logging.getLogger(__name__)

AUTHORIZE_URL = 'https://accounts.spotify.com/authorize'

SCOPES = [
    'user-read-currently-playing',
    'user-top-read',
    'user-read-recently-played',
    'user-library-read',
]

REQUESTS_TIMEOUT = 15


class SpotifyAuthError(Exception):
    """A token exchange or Web API call failed."""


class UnregisteredUserError(SpotifyAuthError):
    """The account is not added to the app's Spotify developer dashboard."""


def _preview(token):
    return f'{token[:10]}...' if token else None


class SpotifyClient:
    def __init__(self, settings):
        self.settings = settings
        self.scope = ' '.join(SCOPES)

    def _oauth(self):
        """A fresh OAuth manager per call so no token outlives its request."""
        self.settings.require('spotify_client_id', 'spotify_client_secret',
                              'spotify_redirect_uri')
        return SpotifyOAuth(
            client_id=self.settings.spotify_client_id,
            client_secret=self.settings.spotify_client_secret,
            redirect_uri=self.settings.spotify_redirect_uri,
            scope=self.scope,
            cache_handler=MemoryCacheHandler(),
            requests_timeout=REQUESTS_TIMEOUT,
            open_browser=False,
        )

    def _api(self, access_token):
        # No automatic retries: a failed call fails the whole request.
        return spotipy.Spotify(auth=access_token,
                               requests_timeout=REQUESTS_TIMEOUT,
                               retries=0, status_retries=0)

    # ─── OAuth ───────────────────────────────────────────────────────────

    def get_auth_url(self, options=None):
        """Build the Spotify authorization URL.

        The selected options ride along in the ``state`` parameter so they
        survive the round trip through the identity provider.
        """
        self.settings.require('spotify_client_id', 'spotify_redirect_uri')
        params = {
            'response_type': 'code',
            'client_id': self.settings.spotify_client_id,
            'scope': self.scope,
            'redirect_uri': self.settings.spotify_redirect_uri,
        }
        if options is not None:
            params['state'] = encode_state(options)
        params['show_dialog'] = 'true'
        return f'{AUTHORIZE_URL}?{urlencode(params)}'

    def exchange_code(self, code):
        """Exchange an authorization code for access and refresh tokens."""
        oauth = self._oauth()
        log.info(f'Exchanging authorization code {_preview(code)}')
        try:
            token_info = oauth.get_access_token(code, as_dict=True,
                                                check_cache=False)
        except (SpotifyOauthError, requests.RequestException) as e:
            log.error(f'Token exchange failed: {e}')
            raise SpotifyAuthError(f'Failed to get access token: {e}') from e

        if not token_info or not token_info.get('access_token'):
            raise SpotifyAuthError('No access token received from Spotify')
        if not token_info.get('refresh_token'):
            raise SpotifyAuthError('No refresh token received from Spotify')
        log.info(f'Token exchange successful: '
                 f'access={_preview(token_info["access_token"])}, '
                 f'expires_in={token_info.get("expires_in")}')
        return token_info

    def refresh_access_token(self, refresh_token):
        """Trade a refresh token for a new access token."""
        oauth = self._oauth()
        try:
            token_info = oauth.refresh_access_token(refresh_token)
        except (SpotifyOauthError, requests.RequestException) as e:
            log.error(f'Token refresh failed: {e}')
            raise SpotifyAuthError(f'Failed to refresh access token: {e}') from e
        if not token_info or not token_info.get('access_token'):
            raise SpotifyAuthError('No access token received from Spotify')
        # Spotify only sometimes rotates the refresh token
        token_info.setdefault('refresh_token', refresh_token)
        return token_info

    def verify(self):
        """Check the client credentials against the token endpoint."""
        self.settings.require('spotify_client_id', 'spotify_client_secret')
        creds = SpotifyClientCredentials(
            client_id=self.settings.spotify_client_id,
            client_secret=self.settings.spotify_client_secret,
            cache_handler=MemoryCacheHandler(),
            requests_timeout=REQUESTS_TIMEOUT,
        )
        creds.get_access_token(as_dict=False, check_cache=False)
        return True

    # ─── Web API ─────────────────────────────────────────────────────────

    def get_display_name(self, access_token):
        """Get the current user's display name (falls back to the user id)."""
        try:
            user = self._api(access_token).current_user()
        except SpotifyException as e:
            if e.http_status == 403 and 'not be registered' in str(e.msg):
                log.warning('User needs to be registered in the Spotify '
                            'Developer Dashboard')
                raise UnregisteredUserError(
                    'This Spotify account needs to be registered in the '
                    'Developer Dashboard. Please contact the application '
                    'administrator to add your account.') from e
            log.error(f'Profile request failed: {e}')
            raise SpotifyAuthError(f'Failed to get user profile: {e.msg}') from e
        except requests.RequestException as e:
            raise SpotifyAuthError(f'Failed to get user profile: {e}') from e

        user = user or {}
        name = user.get('display_name') or user.get('id')
        if not name:
            raise SpotifyAuthError('Invalid user profile data received')
        log.info(f'Got user profile: id={user.get("id")}')
        return name

    def get_top_tracks(self, access_token, options=None):
        """Get the user's top tracks for the selected time range and limit."""
        options = options or SessionOptions()
        try:
            results = self._api(access_token).current_user_top_tracks(
                limit=options.track_limit, time_range=options.time_range)
        except SpotifyException as e:
            log.error(f'Top tracks request failed: {e}')
            raise SpotifyAuthError(f'Failed to fetch top tracks: {e.msg}') from e
        except requests.RequestException as e:
            raise SpotifyAuthError(f'Failed to fetch top tracks: {e}') from e

        tracks = []
        for t in (results or {}).get('items', []):
            if not t:
                continue
            artists = t.get('artists') or []
            tracks.append(Track(
                name=t.get('name', 'Unknown'),
                artist=artists[0].get('name', 'Unknown') if artists else 'Unknown',
            ))
        log.info(f'Got {len(tracks)} top tracks '
                 f'(time_range={options.time_range}, limit={options.track_limit})')
        return tracks

    def load_session(self, access_token, options=None):
        """Fetch everything the session cookies hold: (name, tracks)."""
        name = self.get_display_name(access_token)
        tracks = self.get_top_tracks(access_token, options)
        return name, tracks
