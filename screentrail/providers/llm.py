"""
Language and vision providers backed by hosted or local LLMs.

Each provider implements both ``generate`` (time parsing, answering) and
``describe`` (screenshot analysis). Errors and timeouts propagate so the
caller can fall back or report a generic failure.
"""

import base64
import os

from .base import get_registry


class AnthropicProvider:
    """
    Generation and vision via Anthropic's Claude API.

    Authentication (checked in priority order):
    1. api_key parameter (if provided)
    2. ANTHROPIC_API_KEY (API key from console.anthropic.com)
    3. CLAUDE_CODE_OAUTH_TOKEN (OAuth token from 'claude setup-token')

    Default model is claude-haiku-4.5. Configure via screentrail.toml, e.g.
    a larger model for [vision] and the default for [time_parser].
    """

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        api_key: str | None = None,
        max_tokens: int = 1000,
        timeout: float = 30.0,
    ):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise RuntimeError("AnthropicProvider requires 'anthropic' library")

        self.model = model
        self.max_tokens = max_tokens

        key = (
            api_key or
            os.environ.get("ANTHROPIC_API_KEY") or
            os.environ.get("CLAUDE_CODE_OAUTH_TOKEN")
        )
        if not key:
            raise ValueError(
                "Anthropic authentication required. Set one of:\n"
                "  ANTHROPIC_API_KEY (API key from console.anthropic.com)\n"
                "  CLAUDE_CODE_OAUTH_TOKEN (OAuth token from 'claude setup-token')"
            )

        # The SDK retries rate limits itself; timeout bounds each attempt
        self.client = Anthropic(api_key=key, timeout=timeout)

    def generate(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int = 1024,
    ) -> str | None:
        """Send a raw prompt to Anthropic and return generated text."""
        response = self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
        if response.content:
            return response.content[0].text
        return None

    def describe(self, image: bytes, content_type: str, prompt: str) -> str | None:
        """Analyze an image with Claude's vision input."""
        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": content_type,
                                "data": base64.b64encode(image).decode("ascii"),
                            },
                        },
                    ],
                }
            ],
        )
        if response.content:
            return response.content[0].text
        return None


class OpenAIProvider:
    """
    Generation and vision via OpenAI's chat API.

    Requires: SCREENTRAIL_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    Default model is gpt-4.1-mini, which accepts image input.
    """

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        api_key: str | None = None,
        max_tokens: int = 1000,
        timeout: float = 30.0,
    ):
        try:
            from openai import OpenAI
        except ImportError:
            raise RuntimeError("OpenAIProvider requires 'openai' library")

        self.model = model
        self.max_tokens = max_tokens

        key = api_key or os.environ.get("SCREENTRAIL_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError(
                "OpenAI API key required. Set SCREENTRAIL_OPENAI_API_KEY or OPENAI_API_KEY"
            )

        self._client = OpenAI(api_key=key, timeout=timeout)

        # GPT-5+ and reasoning models use max_completion_tokens and reject temperature
        self._new_api = self.model.startswith(("gpt-5", "o3", "o4"))

    def _completion_kwargs(self, max_tokens: int) -> dict:
        """Return model-appropriate kwargs for token limit and temperature."""
        if self._new_api:
            return {"max_completion_tokens": max_tokens}
        return {"max_tokens": max_tokens, "temperature": 0.2}

    def generate(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int = 1024,
    ) -> str | None:
        """Send a raw prompt to OpenAI and return generated text."""
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            **self._completion_kwargs(max_tokens),
        )
        if response.choices:
            return response.choices[0].message.content
        return None

    def describe(self, image: bytes, content_type: str, prompt: str) -> str | None:
        """Analyze an image passed as a data URL."""
        data_url = f"data:{content_type};base64,{base64.b64encode(image).decode('ascii')}"
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                }
            ],
            **self._completion_kwargs(self.max_tokens),
        )
        if response.choices:
            return response.choices[0].message.content
        return None


class OllamaProvider:
    """
    Generation and vision via a local Ollama server.

    Vision needs a multimodal model (llava, llama3.2-vision, ...).
    Respects OLLAMA_HOST env var (default: http://localhost:11434).
    """

    def __init__(
        self,
        model: str = "llama3.2-vision",
        base_url: str | None = None,
        timeout: float = 120.0,
    ):
        self.model = model
        self.timeout = timeout
        from .ollama_utils import ollama_base_url, ollama_ensure_model
        self.base_url = ollama_base_url(base_url)
        ollama_ensure_model(self.base_url, self.model)

    def _chat(self, messages: list[dict], max_tokens: int | None = None) -> str | None:
        import requests

        payload = {"model": self.model, "messages": messages, "stream": False}
        if max_tokens is not None:
            payload["options"] = {"num_predict": max_tokens}
        response = requests.post(
            f"{self.base_url}/api/chat",
            json=payload,
            timeout=(10, self.timeout),  # (connect, read)
        )
        if not response.ok:
            detail = response.text[:200] if response.text else ""
            raise RuntimeError(
                f"Ollama request failed (model={self.model}): "
                f"HTTP {response.status_code} from {self.base_url}. {detail}"
            )
        text = response.json()["message"]["content"].strip()
        return text or None

    def generate(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int = 1024,
    ) -> str | None:
        """Send a raw prompt to Ollama and return generated text."""
        return self._chat([
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ], max_tokens=max_tokens)

    def describe(self, image: bytes, content_type: str, prompt: str) -> str | None:
        """Analyze an image with an Ollama vision model."""
        if not content_type.startswith("image/"):
            return None
        return self._chat([
            {
                "role": "user",
                "content": prompt,
                "images": [base64.b64encode(image).decode("ascii")],
            },
        ])


# Register providers
_registry = get_registry()
_registry.register_generation("anthropic", AnthropicProvider)
_registry.register_generation("openai", OpenAIProvider)
_registry.register_generation("ollama", OllamaProvider)
_registry.register_vision("anthropic", AnthropicProvider)
_registry.register_vision("openai", OpenAIProvider)
_registry.register_vision("ollama", OllamaProvider)
