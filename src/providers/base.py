"""Shared provider capability."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog

from core.config import AuthScheme, ProviderConfig
from core.errors import (
    ProviderHttpError,
    ProviderResponseMalformed,
    ProviderTimeout,
)
from providers.parsing import parse_structured


logger = structlog.get_logger()


@dataclass
class GenerationOptions:
    """Per-request knobs. Unset values fall back to the provider config."""
    preferred_provider: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "GenerationOptions":
        data = dict(data or {})
        return cls(
            preferred_provider=data.pop("preferred_provider", None) or data.pop("preferredProvider", None),
            model=data.pop("model", None),
            temperature=data.pop("temperature", None),
            max_tokens=data.pop("max_tokens", None) or data.pop("maxTokens", None),
            extra=data,
        )

    def fingerprint_fields(self) -> dict[str, Any]:
        """Fields that change the generated content (preferred provider does not)."""
        return {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            **self.extra,
        }


class Provider(ABC):
    """
    One text-generation backend.

    Subclasses describe the wire format; this class owns HTTP, status
    mapping and turning the generated text into structured content.
    """

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient):
        self.config = config
        self.client = client

    @property
    def id(self) -> str:
        return self.config.id

    @abstractmethod
    def build_payload(self, prompt: str, options: GenerationOptions) -> dict[str, Any]:
        """Request body for this provider's wire format."""

    @abstractmethod
    def extract_text(self, body: Any) -> str:
        """Pull the generated text out of a decoded response body."""

    def build_headers(self, api_key: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json", **self.config.extra_headers}
        if self.config.auth_scheme == AuthScheme.BEARER:
            headers[self.config.auth_header] = f"Bearer {api_key}"
        else:
            headers[self.config.auth_header] = api_key
        return headers

    def parse_content(self, text: str) -> dict[str, Any]:
        parsed = parse_structured(text)
        if parsed is None:
            raise ProviderResponseMalformed(
                f"{self.id} returned no usable content",
                provider=self.id,
            )
        return parsed

    async def generate(
        self,
        prompt: str,
        api_key: str,
        options: Optional[GenerationOptions] = None,
    ) -> dict[str, Any]:
        """POST the prompt and return structured content."""
        options = options or GenerationOptions()
        url = self.config.url_for(options.model)

        try:
            response = await self.client.post(
                url,
                headers=self.build_headers(api_key),
                json=self.build_payload(prompt, options),
                # The retry policy owns the attempt deadline
                timeout=None,
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"{self.id} request timed out: {e}", provider=self.id)
        except httpx.TransportError as e:
            raise ProviderHttpError(
                f"{self.id} transport error: {e}",
                status=None,
                provider=self.id,
            )

        self.raise_for_status(response)

        try:
            body = response.json()
        except ValueError:
            raise ProviderResponseMalformed(f"{self.id} returned non-JSON body", provider=self.id)

        try:
            text = self.extract_text(body)
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderResponseMalformed(
                f"{self.id} response missing generated text: {e}",
                provider=self.id,
            )

        return self.parse_content(text)

    def raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return

        if status == 429:
            message = f"Rate limit exceeded for {self.id}"
        elif status in (401, 403):
            message = f"Authentication failed for {self.id}"
        elif status >= 500:
            message = f"Server error from {self.id}: {status}"
        else:
            message = f"API error from {self.id}: {status} - {response.text[:500]}"

        logger.warning("provider_http_error", provider=self.id, status=status)
        raise ProviderHttpError(message, status=status, provider=self.id)
