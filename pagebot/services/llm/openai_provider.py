from typing import List, Optional

import httpx

from pagebot.logging_config import get_logger
from pagebot.services.llm.base import LLMError, LLMProvider, LLMResponse

logger = get_logger("llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = "https://api.openai.com/v1/chat/completions"
        self.http_client = http_client
        self.timeout_seconds = timeout_seconds

    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Generate response from OpenAI."""

        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            if self.http_client is not None:
                response = await self.http_client.post(
                    self.base_url, headers=headers, json=payload, timeout=self.timeout_seconds
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(self.base_url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise LLMError(f"OpenAI request failed: {e}") from e

        logger.debug(f"OpenAI response status: {response.status_code}")

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.text}")
            raise LLMError(
                f"OpenAI API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        data = response.json()

        content = ""
        if data.get("choices"):
            message = data["choices"][0].get("message", {})
            content = message.get("content") or ""
        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
        )
