from unittest.mock import MagicMock

import pytest

from mnprofile.ai_client import AIClient
from mnprofile.app import create_app
from mnprofile.config_manager import Settings
from mnprofile.spotify_client import SpotifyClient


@pytest.fixture
def settings():
    return Settings(
        spotify_client_id='client-id',
        spotify_client_secret='client-secret',
        spotify_redirect_uri='http://127.0.0.1:5000/callback',
        openai_api_key='sk-test',
        text_model='gpt-5-mini',
        image_model='dall-e-3',
    )


@pytest.fixture
def spotify():
    return MagicMock(spec=SpotifyClient)


@pytest.fixture
def ai():
    return MagicMock(spec=AIClient)


@pytest.fixture
def app(settings, spotify, ai):
    app = create_app(settings, spotify=spotify, ai=ai)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
