"""
Music Nerd Profile: Flask backend
Serves the client page and the REST endpoints behind it.

Flow:
- /api/auth/login builds the Spotify authorization URL; the selected time
  range and track count travel in the OAuth ``state`` parameter.
- /callback exchanges the code, reads the profile and top tracks, and stores
  them in cookies (the only persistence layer).
- /api/session hands the cookie state to the page in one request.
- /api/analyze, /api/generate-image and /api/analyze/stream turn the tracks
  into a text profile and an illustration.
"""

import json
import logging

from flask import (Blueprint, Flask, Response, current_app, jsonify, redirect,
                   request, stream_with_context)

from .ai_client import AIClient, error_details
from .config_manager import ConfigError, load_settings
from .session_cookies import (REFRESH_TOKEN_COOKIE, SessionOptions,
                              clear_session_cookies, decode_state,
                              fit_tracks, read_session,
                              set_session_cookies)
from .spotify_client import SpotifyAuthError, SpotifyClient, UnregisteredUserError

logging.basicConfig(level=logging.INFO)
log = logging.getLogger(__name__)

EXTENSION_KEY = 'mnprofile'

bp = Blueprint('mnprofile', __name__)


def _ext():
    return current_app.extensions[EXTENSION_KEY]


def _settings():
    return _ext()['settings']


def _spotify() -> SpotifyClient:
    return _ext()['spotify']


def _ai() -> AIClient:
    return _ext()['ai']


def _auth_redirect(error=None):
    """Redirect home, clearing stale cookies when the flow failed."""
    resp = redirect(f'/?error={error}' if error else '/')
    if error:
        clear_session_cookies(resp)
    return resp


def _tracks_or_400():
    """Tracks from the cookie, or a 400 response when there are none."""
    session = read_session(request.cookies)
    if not session.tracks:
        log.warning('No tracks found in cookies')
        return session, (jsonify({'error': 'No tracks found'}), 400)
    return session, None


def _display_name(session):
    data = request.get_json(silent=True) or {}
    name = data.get('displayName') if isinstance(data, dict) else None
    return name or session.name


@bp.route('/')
def index():
    return current_app.send_static_file('index.html')


@bp.route('/api/status')
def api_status():
    """Report which providers are configured."""
    settings = _settings()
    return jsonify({
        'spotify_configured': settings.spotify_configured,
        'ai_configured': settings.ai_configured,
        'text_model': settings.text_model,
        'image_model': settings.image_model,
    })


@bp.route('/api/verify-keys')
def api_verify_keys():
    """Verify which API keys are valid and connected."""
    result = _ai().verify_keys()
    result['spotify'] = {'configured': _settings().spotify_configured,
                         'verified': False, 'error': None}
    if _settings().spotify_configured:
        try:
            result['spotify']['verified'] = _spotify().verify()
        except Exception as e:
            result['spotify']['error'] = str(e)[:120]
    return jsonify(result)


# ─── Auth ────────────────────────────────────────────────────────────────

@bp.route('/api/auth/login')
def api_login():
    """Get the Spotify authorization URL for the selected options."""
    try:
        options = SessionOptions.from_values(
            request.args.get('timeRange'), request.args.get('trackLimit'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    try:
        url = _spotify().get_auth_url(options)
    except ConfigError as e:
        log.error(f'Cannot build auth URL: {e}')
        return jsonify({'error': str(e)}), 500
    return jsonify({'auth_url': url})


@bp.route('/callback')
def callback():
    """Handle the Spotify OAuth callback."""
    code = request.args.get('code')
    error = request.args.get('error')
    log.info(f'Auth callback: has_code={bool(code)}, '
             f'has_state={"state" in request.args}, error={error}')

    if not code:
        log.error('No code received in callback')
        return _auth_redirect('auth_failed')

    options = decode_state(request.args.get('state'))
    spotify = _spotify()
    try:
        tokens = spotify.exchange_code(code)
        name, tracks = spotify.load_session(tokens['access_token'], options)
    except UnregisteredUserError:
        return _auth_redirect('unregistered_user')
    except (SpotifyAuthError, ConfigError) as e:
        log.error(f'OAuth callback error: {e}')
        return _auth_redirect('auth_failed')
    except Exception:
        log.exception('Unexpected error in OAuth callback')
        return _auth_redirect('auth_failed')

    resp = _auth_redirect()
    set_session_cookies(resp, name, tracks, options,
                        refresh_token=tokens['refresh_token'],
                        secure=_settings().cookie_secure)
    log.info(f'Auth callback completed: {len(tracks)} tracks, '
             f'time_range={options.time_range}, limit={options.track_limit}')
    return resp


@bp.route('/api/session')
def api_session():
    """Current cookie state, so the page never has to poll the cookie jar."""
    return jsonify(read_session(request.cookies).to_dict())


@bp.route('/api/refresh', methods=['POST'])
def api_refresh():
    """Re-fetch top tracks with new options using the stored refresh token."""
    refresh_token = request.cookies.get(REFRESH_TOKEN_COOKIE)
    if not refresh_token:
        return jsonify({'error': 'No refresh token found'}), 401

    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        data = {}
    current = read_session(request.cookies).options
    try:
        options = SessionOptions.from_values(
            data.get('timeRange', current.time_range),
            data.get('trackLimit', current.track_limit))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    spotify = _spotify()
    try:
        tokens = spotify.refresh_access_token(refresh_token)
        name, tracks = spotify.load_session(tokens['access_token'], options)
    except (SpotifyAuthError, ConfigError) as e:
        log.error(f'Error refreshing data: {e}')
        return jsonify({'error': 'Failed to refresh data'}), 500

    tracks, _ = fit_tracks(tracks)
    resp = jsonify({
        'success': True,
        'connected': True,
        'name': name,
        'tracks': [t.to_dict() for t in tracks],
        'canRefresh': True,
        **options.to_dict(),
    })
    set_session_cookies(resp, name, tracks, options,
                        refresh_token=tokens['refresh_token'],
                        secure=_settings().cookie_secure)
    return resp


@bp.route('/api/auth/logout', methods=['POST'])
def api_logout():
    """Disconnect: drop every session cookie."""
    resp = jsonify({'success': True})
    clear_session_cookies(resp)
    return resp


# ─── AI ──────────────────────────────────────────────────────────────────

@bp.route('/api/analyze', methods=['POST'])
def api_analyze():
    """Write the music nerd profile for the tracks in the cookie."""
    session, error = _tracks_or_400()
    if error:
        return error
    try:
        result = _ai().analyze(session.tracks, _display_name(session))
    except ConfigError as e:
        log.error(f'Analyze not configured: {e}')
        return jsonify({'error': str(e)}), 500
    except Exception as e:
        log.exception('Error in analyze route')
        return jsonify({'error': 'Failed to analyze tracks',
                        'details': error_details(e)}), 500
    return jsonify(result)


@bp.route('/api/generate-image', methods=['POST'])
def api_generate_image():
    """Generate the illustration for the tracks in the cookie."""
    session, error = _tracks_or_400()
    if error:
        return error
    try:
        result = _ai().generate_image(session.tracks)
    except ConfigError as e:
        log.error(f'Image generation not configured: {e}')
        return jsonify({'error': str(e)}), 500
    except Exception as e:
        log.exception('Error in image generation route')
        return jsonify({'error': 'Failed to generate image',
                        'details': error_details(e)}), 500
    return jsonify(result)


@bp.route('/api/analyze/stream', methods=['POST'])
def api_analyze_stream():
    """Newline-delimited JSON: the analysis event, then the image event."""
    session, error = _tracks_or_400()
    if error:
        return error
    try:
        _ai().check_configured()
    except ConfigError as e:
        log.error(f'Stream not configured: {e}')
        return jsonify({'error': str(e)}), 500

    tracks = session.tracks
    display_name = _display_name(session)

    def generate():
        for event in _ai().stream_profile(tracks, display_name):
            yield json.dumps(event) + '\n'

    return Response(stream_with_context(generate()),
                    mimetype='application/x-ndjson',
                    headers={'Cache-Control': 'no-cache'})


def create_app(settings=None, spotify=None, ai=None):
    """Application factory.

    Settings are built once here (or passed in) and handed to the clients;
    handlers read them from ``app.extensions``.
    """
    settings = settings or load_settings()
    app = Flask(__name__, static_folder='static', static_url_path='')
    app.extensions[EXTENSION_KEY] = {
        'settings': settings,
        'spotify': spotify or SpotifyClient(settings),
        'ai': ai or AIClient(settings),
    }
    app.register_blueprint(bp)
    return app
