"""Client for the Anthropic Messages API used to read coffee bag photos.

The client is intentionally thin so tests can replace ``requests.post`` or
hand the analysis code a stub with the same ``describe_image`` method.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

from .config import Settings
from .errors import ParseError, UpstreamError

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MEDIA_TYPE = "image/jpeg"


class VisionClient:
    """Send one image plus an instruction prompt and return the text reply."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        api_url: str = "https://api.anthropic.com/v1/messages",
        max_tokens: int = 1024,
        timeout: float = 60.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.max_tokens = max_tokens
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "VisionClient":
        return cls(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            api_url=settings.anthropic_api_url,
            max_tokens=settings.anthropic_max_tokens,
            timeout=settings.vision_timeout,
        )

    def describe_image(
        self, image_data: str, media_type: Optional[str], prompt: str
    ) -> str:
        """Return the first text block of the model's answer.

        Raises :class:`UpstreamError` when the request cannot be completed and
        :class:`ParseError` when the reply has no usable text.
        """
        if not self.api_key:
            raise UpstreamError("ANTHROPIC_API_KEY is not configured")

        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": media_type or DEFAULT_MEDIA_TYPE,
                                "data": image_data,
                            },
                        },
                        {"type": "text", "text": prompt},
                    ],
                }
            ],
        }
        headers = {
            "content-type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
            "x-api-key": self.api_key,
        }

        try:
            response = requests.post(
                self.api_url, json=payload, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise UpstreamError(f"vision request failed: {exc}") from exc

        if not response.ok:
            raise UpstreamError(
                f"vision API returned {response.status_code}: {response.text[:500]}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ParseError("vision API returned a non-JSON body") from exc

        if not isinstance(body, dict):
            raise ParseError("vision API reply is not a JSON object")
        content = body.get("content")
        for block in content if isinstance(content, list) else []:
            if not isinstance(block, dict):
                continue
            text = block.get("text")
            if block.get("type") == "text" and isinstance(text, str) and text:
                return text
        raise ParseError("vision API reply has no text block")
