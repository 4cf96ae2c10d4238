"""
Model provider integrations for genplan.

WHAT THIS FILE DOES:
-------------------
genplan does not care how the feature text is produced; it only needs raw
text back. Providers wrap the HTTP APIs behind one method:

    response = await provider.complete(messages, system=BUILD_SYSTEM_PROMPT)
    # response = {"content": "...", "input_tokens": 812,
    #             "output_tokens": 2390, "model": "claude-sonnet-4-20250514"}

Whatever comes back is untrusted; the content parser and the safety boundary
decide what, if anything, it may touch.

SUPPORTED PROVIDERS:
-------------------
1. anthropic - Messages API
2. openai    - Chat Completions API, or any compatible server via base_url

Every HTTP or payload problem surfaces as ProviderError.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from errors import ProviderError

logger = logging.getLogger(__name__)


# Tells the model how to lay out files so the content parser can find them
BUILD_SYSTEM_PROMPT = """You are a careful software engineer working inside an existing project.
When you write or change a file, output the COMPLETE file in a fenced code block.
The first line inside the block must be a comment naming the file path relative
to the project root, for example:

```python
# src/auth/login.py
def login(user):
    ...
```

Never write outside the project. Do not abbreviate file contents."""

REQUEST_TIMEOUT = 120.0

# Maximum number of project files listed in the prompt
MAX_CONTEXT_FILES = 200

PROVIDER_DEFAULTS = {
    "anthropic": ("claude-sonnet-4-20250514", "ANTHROPIC_API_KEY"),
    "openai": ("gpt-4o", "OPENAI_API_KEY"),
}


def build_messages(feature: str, project_files: Optional[list[str]] = None) -> list[dict]:
    """User message asking for a feature, with the project's file list as context."""
    content = f"Implement this feature: {feature}"
    if project_files:
        listing = "\n".join(f"- {path}" for path in project_files[:MAX_CONTEXT_FILES])
        content += f"\n\nExisting project files:\n{listing}"
    return [{"role": "user", "content": content}]


# =============================================================================
# BASE PROVIDER CLASS
# =============================================================================

class ModelProvider(ABC):
    """
    One HTTP completion endpoint.

    Subclasses describe the request (_endpoint, _headers, _payload) and how to
    read the reply (_parse); complete() does the rest.
    """

    model: str
    api_key: str
    base_url: str

    @abstractmethod
    def _endpoint(self) -> str:
        pass

    @abstractmethod
    def _headers(self) -> dict:
        pass

    @abstractmethod
    def _payload(
        self,
        messages: list[dict],
        system: Optional[str],
        max_tokens: int,
        temperature: float
    ) -> dict:
        pass

    @abstractmethod
    def _parse(self, data: dict) -> tuple[str, int, int]:
        """Returns (text, input tokens, output tokens)."""
        pass

    async def complete(
        self,
        messages: list[dict],
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7
    ) -> dict:
        """
        Generate a text completion.

        Returns:
            dict with keys:
            - content: str (the response text)
            - input_tokens: int
            - output_tokens: int
            - model: str

        Raises:
            ProviderError: If the request fails or the reply is malformed
        """
        data = await self._post(self._payload(messages, system, max_tokens, temperature))

        try:
            text, input_tokens, output_tokens = self._parse(data)
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Unexpected response from {self.model}: {e!r}") from e

        return {
            "content": text,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "model": self.model
        }

    async def _post(self, payload: dict) -> dict:
        logger.debug(f"POST {self._endpoint()} ({self.model})")
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self._endpoint(),
                    headers=self._headers(),
                    json=payload,
                    timeout=REQUEST_TIMEOUT
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"{self.model} returned HTTP {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Request to {self.model} failed: {e}") from e
        except ValueError as e:
            raise ProviderError(f"{self.model} returned invalid JSON") from e

    def count_tokens(self, text: str) -> int:
        """Estimate token count (rough approximation: 1 token ≈ 4 chars)."""
        return len(text) // 4


def _require_key(api_key: Optional[str], env_var: str) -> str:
    key = api_key or os.environ.get(env_var)
    if not key:
        raise ProviderError(f"{env_var} not set")
    return key


# =============================================================================
# ANTHROPIC PROVIDER (Claude)
# =============================================================================

class AnthropicProvider(ModelProvider):
    """Anthropic Messages API."""

    def __init__(self, model: str = "claude-sonnet-4-20250514", api_key: Optional[str] = None):
        self.model = model
        self.api_key = _require_key(api_key, "ANTHROPIC_API_KEY")
        self.base_url = "https://api.anthropic.com/v1"

    def _endpoint(self) -> str:
        return f"{self.base_url}/messages"

    def _headers(self) -> dict:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json"
        }

    def _payload(self, messages, system, max_tokens, temperature) -> dict:
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages
        }
        if system:
            payload["system"] = system
        return payload

    def _parse(self, data: dict) -> tuple[str, int, int]:
        # Only text blocks carry the answer
        text = "".join(
            block.get("text", "")
            for block in data["content"]
            if block.get("type") == "text"
        )
        usage = data["usage"]
        return text, usage["input_tokens"], usage["output_tokens"]


# =============================================================================
# OPENAI PROVIDER (and compatible servers)
# =============================================================================

class OpenAIProvider(ModelProvider):
    """OpenAI Chat Completions. base_url may point at any compatible server."""

    def __init__(
        self,
        model: str = "gpt-4o",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None
    ):
        self.model = model
        self.api_key = _require_key(api_key, "OPENAI_API_KEY")
        self.base_url = (base_url or "https://api.openai.com/v1").rstrip("/")

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

    def _payload(self, messages, system, max_tokens, temperature) -> dict:
        chat = [{"role": "system", "content": system}] if system else []
        chat.extend(messages)

        # Reasoning models take max_completion_tokens instead of max_tokens
        limit_key = "max_completion_tokens" if self.model.startswith(("gpt-5", "o1", "o3", "o4")) else "max_tokens"

        return {
            "model": self.model,
            "messages": chat,
            "temperature": temperature,
            limit_key: max_tokens
        }

    def _parse(self, data: dict) -> tuple[str, int, int]:
        usage = data["usage"]
        text = data["choices"][0]["message"]["content"] or ""
        return text, usage["prompt_tokens"], usage["completion_tokens"]


# =============================================================================
# PROVIDER FACTORY
# =============================================================================

def get_provider(config: dict, name: str) -> ModelProvider:
    """
    Build the provider for a configured model name.

    Example config:
        models:
          claude:
            provider: "anthropic"
            model: "claude-sonnet-4-20250514"

    Raises:
        ProviderError: If the model is unknown, its provider type is invalid,
                       or its API key is not set
    """
    models = config.get("models", {})
    entry = models.get(name)

    if not entry:
        known = ", ".join(models) or "none"
        raise ProviderError(f"Model '{name}' not found in config. Available models: {known}")

    kind = entry.get("provider", "")
    if kind not in PROVIDER_DEFAULTS:
        raise ProviderError(
            f"Model '{name}' has invalid provider type: '{kind}'. "
            f"Must be one of: {', '.join(PROVIDER_DEFAULTS)}"
        )

    default_model, default_env = PROVIDER_DEFAULTS[kind]
    env_var = entry.get("api_key_env") or default_env
    api_key = os.environ.get(env_var)
    if not api_key:
        raise ProviderError(f"Model '{name}' requires {env_var} but it's not set")

    model = entry.get("model", default_model)
    if kind == "anthropic":
        return AnthropicProvider(model=model, api_key=api_key)
    return OpenAIProvider(model=model, api_key=api_key, base_url=entry.get("base_url"))
