import json
from urllib.parse import quote

import pytest
from werkzeug.wrappers import Response

from mnprofile.session_cookies import (ALL_COOKIES, MAX_COOKIE_SIZE,
                                       MAX_TRACK_LIMIT, NAME_COOKIE,
                                       REFRESH_TOKEN_COOKIE, TRACKS_COOKIE,
                                       SessionOptions, SessionState, Track,
                                       clear_session_cookies, decode_state,
                                       decode_tracks, encode_state,
                                       encode_tracks, fit_tracks,
                                       parse_cookie_header, read_session,
                                       set_session_cookies)
from tests.helpers import cookie_value, set_cookie_headers

TRACKS = [Track(name='A', artist='X'), Track(name='B', artist='Y')]


def test_tracks_round_trip_preserves_order():
    assert decode_tracks(encode_tracks(TRACKS)) == TRACKS


def test_tracks_are_uri_encoded_json():
    assert encode_tracks([Track('A', 'X')]) == \
        '[{%22name%22:%22A%22%2C%22artist%22:%22X%22}]'


def test_tracks_round_trip_with_unicode_and_punctuation():
    tracks = [Track("Don't Stop (Remix); pt. 2", 'Sigur Rós'),
              Track('東京', 'Beyoncé & Jay-Z')]
    assert decode_tracks(encode_tracks(tracks)) == tracks


def test_decode_accepts_browser_encoded_value():
    raw = json.dumps([{'name': "It's", 'artist': 'X', 'extra': 1}])
    assert decode_tracks(quote(raw, safe="!~*'()")) == [Track("It's", 'X')]


@pytest.mark.parametrize('value', [
    'not json',
    '%7B%7D',
    quote('[1, 2]'),
    quote('[{"name": "A"}]'),
    quote('[{"name": "A", "artist": 3}]'),
    '%E0%A4%A',
])
def test_decode_tracks_rejects_malformed_values(value):
    assert decode_tracks(value) is None


def test_empty_track_list_round_trips():
    assert decode_tracks(encode_tracks([])) == []


def test_parse_cookie_header_reads_every_field():
    header = '; '.join([
        f'{NAME_COOKIE}=Ada%20Lovelace',
        f'{TRACKS_COOKIE}={encode_tracks(TRACKS)}',
        f'{REFRESH_TOKEN_COOKIE}=refresh',
        'spotify_timeRange=long_term',
        'spotify_trackLimit=25',
    ])
    state = parse_cookie_header(header)
    assert state == SessionState(
        name='Ada Lovelace', tracks=TRACKS,
        options=SessionOptions('long_term', 25), has_refresh_token=True)


def test_parse_cookie_header_is_idempotent():
    header = f'{NAME_COOKIE}=Ada; {TRACKS_COOKIE}={encode_tracks(TRACKS)}'
    assert parse_cookie_header(header) == parse_cookie_header(header)


def test_malformed_cookies_are_dropped_not_raised():
    header = (f'{NAME_COOKIE}=Ada; {TRACKS_COOKIE}=%5Bbroken; '
              'spotify_timeRange=forever; spotify_trackLimit=lots')
    state = parse_cookie_header(header)
    assert state.name == 'Ada'
    assert state.tracks == []
    assert state.options == SessionOptions()


def test_empty_header_gives_disconnected_state():
    state = parse_cookie_header('')
    assert state == SessionState()
    assert state.to_dict() == {
        'connected': False, 'name': None, 'tracks': [], 'canRefresh': False,
        'timeRange': 'short_term', 'trackLimit': 10,
    }


def test_read_session_from_mapping():
    state = read_session({TRACKS_COOKIE: encode_tracks(TRACKS)})
    assert state.tracks == TRACKS
    assert not state.connected


def test_state_round_trip():
    options = SessionOptions('medium_term', 30)
    assert json.loads(encode_state(options)) == {
        'timeRange': 'medium_term', 'trackLimit': 30}
    assert decode_state(encode_state(options)) == options


@pytest.mark.parametrize('raw', [
    None, '', 'not json', '[1]', '{"timeRange": "forever", "trackLimit": 999}',
])
def test_bad_state_falls_back_to_defaults(raw):
    assert decode_state(raw) == SessionOptions()


def test_state_accepts_string_limits():
    assert decode_state('{"timeRange": "long_term", "trackLimit": "25"}') == \
        SessionOptions('long_term', 25)


@pytest.mark.parametrize('time_range,limit', [
    ('forever', 10), ('short_term', 0), ('short_term', 31),
    ('short_term', 'ten'), ('short_term', True),
])
def test_options_validation(time_range, limit):
    with pytest.raises(ValueError):
        SessionOptions.from_values(time_range, limit)


def test_options_defaults():
    assert SessionOptions.from_values() == SessionOptions('short_term', 10)


def test_set_session_cookies_attributes():
    resp = Response()
    set_session_cookies(resp, 'Ada Lovelace', TRACKS,
                        SessionOptions('long_term', 2), refresh_token='rt')
    headers = set_cookie_headers(resp)
    assert set(headers) == set(ALL_COOKIES)
    for name, header in headers.items():
        assert 'Max-Age=3600' in header
        assert 'SameSite=Lax' in header
        assert 'Path=/' in header
        assert 'Secure' not in header
        assert ('HttpOnly' in header) == (name == REFRESH_TOKEN_COOKIE)
    assert cookie_value(headers[NAME_COOKIE]) == 'Ada%20Lovelace'
    assert cookie_value(headers[TRACKS_COOKIE]) == encode_tracks(TRACKS)
    assert cookie_value(headers['spotify_trackLimit']) == '2'


def test_set_session_cookies_without_refresh_token():
    resp = Response()
    set_session_cookies(resp, 'Ada', TRACKS, SessionOptions(), secure=True)
    headers = set_cookie_headers(resp)
    assert REFRESH_TOKEN_COOKIE not in headers
    assert all('Secure' in h for h in headers.values())


def test_clear_session_cookies_expires_everything():
    resp = clear_session_cookies(Response())
    headers = set_cookie_headers(resp)
    assert set(headers) == set(ALL_COOKIES)
    assert all('Max-Age=0' in h for h in headers.values())


def test_name_whitespace_survives_round_trip():
    resp = Response()
    set_session_cookies(resp, '  Ada  ', TRACKS, SessionOptions())
    header = set_cookie_headers(resp)[NAME_COOKIE]
    state = read_session({NAME_COOKIE: cookie_value(header)})
    assert state.name == '  Ada  '


def test_max_track_limit_fits_in_one_cookie():
    tracks = [Track(f'Song Title Number {i} (Remastered)', f'Artist Name {i}')
              for i in range(1, MAX_TRACK_LIMIT + 1)]
    resp = Response()
    set_session_cookies(resp, 'Ada', tracks,
                        SessionOptions('long_term', MAX_TRACK_LIMIT), secure=True)
    header = set_cookie_headers(resp)[TRACKS_COOKIE]
    assert len(header) <= MAX_COOKIE_SIZE
    assert decode_tracks(cookie_value(header)) == tracks


def test_oversized_track_list_is_trimmed_from_the_end():
    tracks = [Track(f'{i} ' + 'Très longue chanson ' * 10, 'Sigur Rós')
              for i in range(MAX_TRACK_LIMIT)]
    kept, value = fit_tracks(tracks)
    assert 0 < len(kept) < len(tracks)
    assert kept == tracks[:len(kept)]
    assert decode_tracks(value) == kept

    resp = Response()
    set_session_cookies(resp, 'Ada', tracks, SessionOptions(), secure=True)
    header = set_cookie_headers(resp)[TRACKS_COOKIE]
    assert len(header) <= MAX_COOKIE_SIZE
    assert decode_tracks(cookie_value(header)) == kept


def test_fit_tracks_keeps_small_lists_whole():
    assert fit_tracks(TRACKS) == (TRACKS, encode_tracks(TRACKS))
