"""
Configuration manager for the Music Nerd Profile app.
Builds a single Settings object from the environment, a local .env file and
an optional config.json fallback.
"""

import os
import json
from dataclasses import dataclass

from dotenv import load_dotenv

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


# Prefer environment variables for secrets. config.json is only consulted for
# keys that are not set in the environment.
ENV_MAP = {
    'spotify_client_id': 'SPOTIFY_CLIENT_ID',
    'spotify_client_secret': 'SPOTIFY_CLIENT_SECRET',
    'spotify_redirect_uri': 'SPOTIFY_REDIRECT_URI',
    'openai_api_key': 'OPENAI_API_KEY',
    'gemini_api_key': 'GEMINI_API_KEY',
    'text_model': 'OPENAI_MODEL',
    'image_model': 'IMAGE_MODEL',
    'app_env': 'APP_ENV',
}

DEFAULTS = {
    'text_model': 'gpt-5-mini',
    'image_model': 'dall-e-3',
    'app_env': 'development',
}

CONFIG_FILE = os.path.join(_PROJECT_ROOT, 'config.json')


class ConfigError(Exception):
    """Raised when a required configuration value is missing."""

    def __init__(self, missing):
        self.missing = list(missing)
        names = ', '.join(ENV_MAP.get(k, k) for k in self.missing)
        super().__init__(f'Missing configuration: {names}')


def load_config(path=None):
    """Load configuration from config.json."""
    path = path or CONFIG_FILE
    if os.path.exists(path):
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError):
            return {}
        return data if isinstance(data, dict) else {}
    return {}


def get_config_value(key, default=None, file_config=None):
    """Get a single config value (environment first, then config.json)."""
    env_key = ENV_MAP.get(key)
    if env_key and os.environ.get(env_key):
        return os.environ.get(env_key)
    if file_config is None:
        file_config = load_config()
    value = file_config.get(key)
    return value if value else default


@dataclass(frozen=True)
class Settings:
    spotify_client_id: str = ''
    spotify_client_secret: str = ''
    spotify_redirect_uri: str = ''
    openai_api_key: str = ''
    gemini_api_key: str = ''
    text_model: str = DEFAULTS['text_model']
    image_model: str = DEFAULTS['image_model']
    app_env: str = DEFAULTS['app_env']

    @property
    def cookie_secure(self):
        return self.app_env == 'production'

    @property
    def spotify_configured(self):
        return bool(self.spotify_client_id and self.spotify_client_secret
                    and self.spotify_redirect_uri)

    @property
    def ai_configured(self):
        return bool(self.openai_api_key or self.gemini_api_key)

    def require(self, *fields):
        """Raise ConfigError if any of the named fields is empty."""
        missing = [f for f in fields if not getattr(self, f)]
        if missing:
            raise ConfigError(missing)


def load_settings(env_file=None, config_path=None):
    """Build Settings once at process start.

    Values are read from the process environment (after loading .env) and
    fall back to config.json. Nothing is validated here; handlers call
    Settings.require() for the values they need.
    """
    load_dotenv(env_file or os.path.join(_PROJECT_ROOT, '.env'))
    file_config = load_config(config_path)
    values = {
        key: str(get_config_value(key, DEFAULTS.get(key, ''), file_config)).strip()
        for key in ENV_MAP
    }
    return Settings(**values)
