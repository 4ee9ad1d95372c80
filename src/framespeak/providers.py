# src/framespeak/providers.py
"""Description providers: one request contract over Ollama and OpenAI-style APIs."""

import json
import base64
import asyncio
import logging
from typing import Any, Awaitable, Callable

import aiohttp

from framespeak.models import Description, ProviderConfig, ProviderKind
from framespeak.parser import parse_description

logger = logging.getLogger(__name__)

DEFAULT_ANALYSIS_PROMPT = """You are an expert at creating precise image generation prompts. Analyze this image and create a detailed description that can be used for AI image generation models (like Stable Diffusion, Midjourney, DALL-E).

Your description MUST include all of the following elements in detail:

1. **Main Subject(s)**: Describe every person, object, or character with specific details (age, gender, appearance, clothing, pose, expression, facial features, hair style, accessories, etc.)

2. **Action & Pose**: Exact actions, gestures, body language, hand positions, eye direction, and precise positioning

3. **Composition & Framing**: Camera angle (eye-level, low-angle, high-angle, bird's eye, worm's eye, etc.), shot type (extreme close-up, close-up, medium shot, full shot, wide shot, etc.), rule of thirds, symmetry

4. **Background & Setting**: Detailed environment description, specific location type, indoor/outdoor, architectural elements, props, objects in background, depth layers

5. **Lighting**: Type of lighting (natural sunlight, golden hour, blue hour, studio lighting, rim lighting, etc.), direction (front, side, back, top), quality (soft/hard), shadows, highlights, light color temperature

6. **Color Palette**: Dominant colors, secondary colors, color harmony, saturation level, contrast level, color temperature (warm/cool tones)

7. **Atmosphere & Mood**: Overall feeling, ambiance, emotional tone, weather conditions, time of day

8. **Art Style & Quality**: Photography style (portrait, documentary, fashion, etc.), art style (realistic, cinematic, artistic, etc.), rendering quality tags (photorealistic, highly detailed, 8k, sharp focus, etc.)

9. **Technical Details**: Depth of field (shallow/deep), bokeh, focus point, texture details (skin texture, fabric texture, etc.), material properties (glossy, matte, metallic, etc.)

CRITICAL RULES:
- Be EXTREMELY SPECIFIC and PRECISE - avoid vague or abstract terms
- Use professional photography and cinematography terminology
- NEVER mention: watermarks, subtitles, UI elements, logos, text overlays, time stamps, player controls
- Focus ONLY on visual elements that should be recreated in a generated image
- Write in a comma-separated style typical of image generation prompts
- Include quality modifiers like "highly detailed", "professional", "sharp focus"
- Specify exact quantities (e.g., "three people" not "some people")

Provide the description in both English and Chinese. The English version should be suitable as a direct prompt for image generation AI.

Format your response EXACTLY as follows:
EN: [Detailed, precise English description suitable for image generation, written in a prompt-style format]
ZH: [对应的详细中文描述]"""


class ProviderError(Exception):
    """Base class for description provider failures."""
    message = "Provider request failed"

    def __init__(self, detail: str | None = None):
        self.detail = detail
        super().__init__(f"{self.message}: {detail}" if detail else self.message)


class ProviderConnectionError(ProviderError):
    message = "Could not connect to the provider. Make sure the service is running"


class ProviderTimeoutError(ProviderError):
    message = "Request timed out. Check the network or try again later"


class AuthInvalidError(ProviderError):
    message = "API key is invalid or missing. Check the configuration"


class AccessDeniedError(ProviderError):
    message = "Access denied. Check API permissions and quota"


class EndpointNotFoundError(ProviderError):
    message = "API endpoint does not exist. Check the URL"


class RateLimitedError(ProviderError):
    message = "Too many requests or quota exhausted"


class ServerError(ProviderError):
    message = "Provider server error. Try again later"


class MalformedResponseError(ProviderError):
    message = "Provider returned an unexpected response"


class UnknownProviderKindError(ProviderError):
    message = "Unsupported provider type"


STATUS_ERRORS: dict[int, type[ProviderError]] = {
    401: AuthInvalidError,
    403: AccessDeniedError,
    404: EndpointNotFoundError,
    429: RateLimitedError,
}


def error_detail(body: str) -> str | None:
    """Best-effort error message from an Ollama or OpenAI error body."""
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip()[:200] or None

    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("message")
    return error


def error_for_status(status: int, body: str = "") -> ProviderError:
    """Map a non-success HTTP status onto the provider error taxonomy."""
    detail = error_detail(body)
    if status in STATUS_ERRORS:
        return STATUS_ERRORS[status](detail)
    if status >= 500:
        return ServerError(f"HTTP {status}" + (f" - {detail}" if detail else ""))
    return MalformedResponseError(f"HTTP {status}" + (f" - {detail}" if detail else ""))


Handler = Callable[[str, ProviderConfig], Awaitable[str]]


class DescriptionProvider:
    """Send a frame to the configured backend and parse the bilingual answer."""

    analysis_timeout: float = 60
    ollama_test_timeout: float = 10
    test_timeout: float = 15

    def __init__(self):
        self._handlers: dict[str, Handler] = {
            ProviderKind.OLLAMA.value: self._analyze_with_ollama,
            ProviderKind.OPENAI.value: self._analyze_with_openai,
            # LM Studio and custom endpoints speak the OpenAI chat format
            ProviderKind.LMSTUDIO.value: self._analyze_with_openai,
            ProviderKind.CUSTOM.value: self._analyze_with_openai,
        }

    def _handler_for(self, provider: str) -> Handler:
        try:
            return self._handlers[provider]
        except KeyError:
            raise UnknownProviderKindError(provider)

    async def analyze(self, image: bytes, config: ProviderConfig) -> Description:
        """
        Describe one JPEG image.

        Raises:
            ProviderError: A subclass naming the transport or protocol failure.
        """
        handler = self._handler_for(config.provider)
        encoded = base64.b64encode(image).decode("ascii")
        content = await handler(encoded, config)
        return parse_description(content)

    def _prompt(self, config: ProviderConfig) -> str:
        return config.custom_prompt or DEFAULT_ANALYSIS_PROMPT

    def _headers(self, config: ProviderConfig) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        timeout: float,
        payload: dict | None = None,
        headers: dict | None = None
    ) -> tuple[int, str]:
        """Perform one HTTP call and return (status, body)."""
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
                async with session.request(method, url, json=payload, headers=headers) as response:
                    status, raw = response.status, await response.read()
        except asyncio.TimeoutError:
            raise ProviderTimeoutError(f"no response within {timeout:g} seconds")
        except aiohttp.InvalidURL as e:
            raise EndpointNotFoundError(f"invalid URL {e}")
        except aiohttp.ClientError as e:
            raise ProviderConnectionError(str(e) or type(e).__name__)

        try:
            return status, raw.decode("utf-8")
        except UnicodeDecodeError:
            raise MalformedResponseError("response body is not valid UTF-8")

    async def _post_for_json(self, url: str, payload: dict, config: ProviderConfig) -> Any:
        status, body = await self._request(
            "POST", url, self.analysis_timeout, payload, self._headers(config)
        )
        if status != 200:
            raise error_for_status(status, body)
        try:
            return json.loads(body)
        except ValueError:
            raise MalformedResponseError("response body is not JSON")

    async def _analyze_with_ollama(self, base64_image: str, config: ProviderConfig) -> str:
        payload = {
            "model": config.model,
            "messages": [
                {
                    "role": "user",
                    "content": self._prompt(config),
                    "images": [base64_image],
                }
            ],
            "stream": False,
            "options": {
                "temperature": config.temperature,
                "num_predict": config.max_tokens,
            },
        }
        data = await self._post_for_json(config.endpoint, payload, config)
        try:
            content = data["message"]["content"]
        except (KeyError, TypeError):
            raise MalformedResponseError("missing message.content")
        return self._require_text(content)

    async def _analyze_with_openai(self, base64_image: str, config: ProviderConfig) -> str:
        payload = {
            "model": config.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": self._prompt(config)},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{base64_image}"},
                        },
                    ],
                }
            ],
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
        }
        data = await self._post_for_json(config.endpoint, payload, config)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise MalformedResponseError("missing choices[0].message.content")
        return self._require_text(content)

    def _require_text(self, content: Any) -> str:
        if not isinstance(content, str) or not content.strip():
            raise MalformedResponseError("empty description")
        return content

    async def test_connection(self, config: ProviderConfig) -> bool:
        """
        Check that the configured endpoint is reachable without spending quota.

        Ollama is probed through its model listing; other kinds get a
        one-token chat request.

        Raises:
            ProviderError: With a diagnostic when the endpoint is not usable.
        """
        self._handler_for(config.provider)

        if config.provider == ProviderKind.OLLAMA.value:
            base_url = config.endpoint.replace("/api/chat", "").rstrip("/")
            status, body = await self._request("GET", f"{base_url}/api/tags", self.ollama_test_timeout)
            if status == 200:
                return True
            raise error_for_status(status, body)

        payload = {
            "model": config.model,
            "messages": [{"role": "user", "content": "hi"}],
            "max_tokens": 1,
        }
        status, body = await self._request(
            "POST", config.endpoint, self.test_timeout, payload, self._headers(config)
        )
        if status in STATUS_ERRORS or status >= 500:
            raise error_for_status(status, body)
        if status not in (200, 201):
            # Reachable; the probe request itself was rejected
            logger.warning(f"Connection test got HTTP {status} from {config.endpoint}")
        return True
