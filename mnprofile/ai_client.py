"""
AI Client: multi-provider AI for the music nerd profile.

OpenAI  → Responses API for the written profile, Images API for the picture
Gemini  → google-genai SDK (generate_content / generate_images)

The provider is chosen from the configured model id, so switching from
OpenAI to Gemini is a matter of setting OPENAI_MODEL / IMAGE_MODEL.
"""

import base64
import logging

from openai import OpenAI
from google import genai
from google.genai import types

from .config_manager import ConfigError

log = logging.getLogger(__name__)

IMAGE_SIZE = '1024x1024'

# ─── Prompts ─────────────────────────────────────────────────────────────────

PROMPT_PROFILE = """\
You are the apex music nerd. You are fun, engaging, and you know your stuff. \
You can also be teasing, but in a playful way. \
Write a music nerd profile of {display_name} given their top tracks:

{track_list}"""

PROMPT_IMAGE = """\
Generate an image of college me in my dorm bedroom. I'm wearing fan clothing \
and accessories, and I'm listening intently to music. The room is cluttered yet \
tastefully filled with CDs, records, posters, books, and other memorabilia and \
merch that reflect my obsession with the music style, national origin, and \
aesthetic of the musicians who made these tracks: {track_list}"""


def build_profile_prompt(display_name, tracks):
    """Fixed-persona prompt with a numbered list of the user's tracks."""
    track_list = '\n'.join(
        f'{i}. {t.name} by {t.artist}' for i, t in enumerate(tracks, 1))
    return PROMPT_PROFILE.format(
        display_name=display_name or 'this listener', track_list=track_list)


def build_image_prompt(tracks):
    track_list = ', '.join(f'{t.name} by {t.artist}' for t in tracks)
    return PROMPT_IMAGE.format(track_list=track_list)


def error_details(exc):
    """Pull the upstream error message out of a provider exception."""
    body = getattr(exc, 'body', None)
    if isinstance(body, dict) and body.get('message'):
        return body
    message = getattr(exc, 'message', None) or str(exc) or type(exc).__name__
    return {'message': message}


class AIClient:
    """Multi-provider AI client for the profile text and image.

    OpenAI  → Responses API + Images API
    Gemini  → google-genai SDK
    """

    def __init__(self, settings):
        self.settings = settings
        self.text_model = settings.text_model
        self.image_model = settings.image_model
        self.openai_client = None
        self.gemini_client = None

        # max_retries=0: upstream failures surface immediately
        if settings.openai_api_key:
            self.openai_client = OpenAI(api_key=settings.openai_api_key,
                                        max_retries=0)
        if settings.gemini_api_key:
            self.gemini_client = genai.Client(api_key=settings.gemini_api_key)

    # ─── Provider detection ──────────────────────────────────────────────

    def _get_provider(self, model):
        """Determine provider from model ID."""
        if model.startswith('gemini') or model.startswith('imagen'):
            return 'gemini'
        return 'openai'

    def _require_provider(self, model):
        provider = self._get_provider(model)
        if provider == 'gemini':
            self.settings.require('gemini_api_key')
        else:
            self.settings.require('openai_api_key')
        return provider

    def check_configured(self):
        """Raise ConfigError unless both the text and image providers have keys."""
        self._require_provider(self.text_model)
        self._require_provider(self.image_model)

    def verify_keys(self):
        """Test each configured API key and return status."""
        status = {
            'openai': {'configured': bool(self.openai_client), 'verified': False, 'error': None},
            'gemini': {'configured': bool(self.gemini_client), 'verified': False, 'error': None},
        }
        if self.openai_client:
            try:
                self.openai_client.models.list()
                status['openai']['verified'] = True
            except Exception as e:
                status['openai']['error'] = str(e)[:120]
        if self.gemini_client:
            try:
                self.gemini_client.models.list(config={'page_size': 1})
                status['gemini']['verified'] = True
            except Exception as e:
                status['gemini']['error'] = str(e)[:120]
        return status

    # ─── Text ────────────────────────────────────────────────────────────

    def analyze(self, tracks, display_name=None):
        """Write the music nerd profile.

        Returns {'analysis': str, 'model': str}; ``model`` is the name the
        upstream API reports, falling back to the configured id.
        """
        model = self.text_model
        provider = self._require_provider(model)
        prompt = build_profile_prompt(display_name, tracks)
        log.info(f'Starting {provider} text completion: model={model}, '
                 f'prompt_length={len(prompt)}, tracks={len(tracks)}')

        if provider == 'gemini':
            response = self.gemini_client.models.generate_content(
                model=model, contents=prompt)
            analysis = response.text
            used_model = getattr(response, 'model_version', None) or model
        else:
            response = self.openai_client.responses.create(
                model=model, input=prompt)
            analysis = response.output_text
            used_model = getattr(response, 'model', None) or model
            usage = getattr(response, 'usage', None)
            if usage:
                log.info(f'Token usage: in={getattr(usage, "input_tokens", 0)}, '
                         f'out={getattr(usage, "output_tokens", 0)}')

        log.info(f'Text completion successful: model={used_model}, '
                 f'length={len(analysis or "")}')
        return {'analysis': analysis or '', 'model': used_model}

    # ─── Images ──────────────────────────────────────────────────────────

    def generate_image(self, tracks):
        """Generate the dorm-room illustration.

        Returns {'imageUrl': str}: a hosted URL when the provider gives one,
        otherwise a base64 data URL.
        """
        model = self.image_model
        provider = self._require_provider(model)
        prompt = build_image_prompt(tracks)
        log.info(f'Starting {provider} image generation: model={model}, '
                 f'prompt_length={len(prompt)}')

        if provider == 'gemini':
            response = self.gemini_client.models.generate_images(
                model=model, prompt=prompt,
                config=types.GenerateImagesConfig(number_of_images=1),
            )
            if not response.generated_images:
                raise RuntimeError('Image generation returned no images')
            image = response.generated_images[0].image
            mime = getattr(image, 'mime_type', None) or 'image/png'
            b64 = base64.b64encode(image.image_bytes).decode()
            return {'imageUrl': f'data:{mime};base64,{b64}'}

        kwargs = {
            'model': model,
            'prompt': prompt,
            'n': 1,
            'size': IMAGE_SIZE,
        }
        if model == 'dall-e-3':
            kwargs['quality'] = 'standard'
            kwargs['style'] = 'vivid'
        response = self.openai_client.images.generate(**kwargs)
        if not response.data:
            raise RuntimeError('Image generation returned no images')
        item = response.data[0]
        if getattr(item, 'revised_prompt', None):
            log.info(f'Revised image prompt: {item.revised_prompt[:120]}')
        if item.url:
            return {'imageUrl': item.url}
        if item.b64_json:
            return {'imageUrl': f'data:image/png;base64,{item.b64_json}'}
        raise RuntimeError('Image generation returned neither url nor data')

    # ─── Streaming ───────────────────────────────────────────────────────

    def stream_profile(self, tracks, display_name=None):
        """Yield the analysis event, then the image event.

        A failing step yields an error event and the stream moves on, so the
        page can show the text even when the picture fails.
        """
        steps = (
            ('analysis', lambda: self.analyze(tracks, display_name)),
            ('image', lambda: self.generate_image(tracks)),
        )
        for step, run in steps:
            try:
                yield {'type': step, **run()}
            except ConfigError as e:
                log.error(f'{step} step not configured: {e}')
                yield {'type': 'error', 'step': step, 'error': str(e)}
            except Exception as e:
                log.exception(f'{step} step failed')
                yield {'type': 'error', 'step': step,
                       'error': f'Failed to generate {step}',
                       'details': error_details(e)}
