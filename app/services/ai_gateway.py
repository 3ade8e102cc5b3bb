"""AI Gateway Service - Connection to an OpenAI-compatible chat completion API.

Used by the segment rule translator to turn plain-English audience
descriptions into rule trees. Any server speaking the
`/v1/chat/completions` protocol works (OpenAI, Ollama, vLLM, LiteLLM).
"""

import httpx
import logging
import time as _time
from typing import Optional, List, Dict, Any, Protocol
from pydantic import BaseModel

from app.config import settings

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    """Anything that can complete a prompt into text."""

    async def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        ...


class AIGatewayConfig(BaseModel):
    """Configuration for AI gateway connection."""

    base_url: str = "https://api.openai.com"
    api_key: Optional[str] = None
    timeout: float = 20.0
    default_model: str = "gpt-4o-mini"
    max_tokens: int = 1024
    temperature: float = 0.0


class ChatMessage(BaseModel):
    """Chat message format."""

    role: str  # system, user, assistant
    content: str


class AIGateway:
    """Gateway to the configured chat completion server."""

    def __init__(self, config: Optional[AIGatewayConfig] = None):
        self.config = config or AIGatewayConfig(
            base_url=settings.AI_BASE_URL,
            api_key=settings.AI_API_KEY,
            timeout=settings.AI_TIMEOUT_SECONDS,
            default_model=settings.AI_MODEL,
        )
        self._client: Optional[httpx.AsyncClient] = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with auth headers."""
        if self._client is None or self._client.is_closed:
            headers = {}
            if self.config.api_key:
                headers["Authorization"] = f"Bearer {self.config.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                headers=headers,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        system_prompt: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Generate a chat completion.

        Raises:
            httpx.HTTPError: on transport failures and non-2xx responses
            ValueError: the response body is not a chat completion object
        """
        if system_prompt:
            messages = [{"role": "system", "content": system_prompt}] + messages

        payload = {
            "model": self.config.default_model,
            "messages": [ChatMessage(**m).model_dump() for m in messages],
            "max_tokens": max_tokens or self.config.max_tokens,
            "temperature": self.config.temperature if temperature is None else temperature,
            "stream": False,
        }

        client = await self.get_client()
        start = _time.time()
        response = await client.post("/v1/chat/completions", json=payload)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError("Completion response is not a JSON object")

        content = ""
        choices = data.get("choices") or []
        if choices:
            choice = choices[0] if isinstance(choices, list) else None
            if not isinstance(choice, dict):
                raise ValueError("Completion response has malformed choices")
            message = choice.get("message")
            if isinstance(message, dict):
                content = message.get("content") or ""
            elif "text" in choice:
                content = choice["text"]
        if not isinstance(content, str):
            raise ValueError("Completion content is not text")

        duration_ms = int((_time.time() - start) * 1000)
        logger.info(
            f"AI completion: model={data.get('model', self.config.default_model)}, {duration_ms}ms"
        )
        return {
            "content": content,
            "usage": data.get("usage", {}),
            "model": data.get("model", self.config.default_model),
        }

    async def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Complete a single user prompt and return the text."""
        result = await self.chat_completion(
            [{"role": "user", "content": prompt}],
            system_prompt=system_prompt,
        )
        return result["content"]


# Singleton instance
ai_gateway = AIGateway()


async def get_ai_gateway() -> AIGateway:
    """Dependency injection for AI gateway."""
    return ai_gateway
