import asyncio
import logging
import time
from typing import Optional, Protocol

from pydantic import BaseModel
from google import genai
from google.genai import types
from openai import AsyncOpenAI

from ..errors import UpstreamProviderError
from ..settings import settings
from .prompts import AIContext, contextual_prompt, system_prompt

logger = logging.getLogger("cookmate.ai")


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class AIResponse(BaseModel):
    text: str
    provider: str
    usage: TokenUsage = TokenUsage()


class AIProvider(Protocol):
    name: str

    async def generate(self, system: str, prompt: str) -> AIResponse: ...


class GeminiProvider:
    name = "gemini"

    def __init__(self, api_key: str, model: Optional[str] = None):
        self.model = model or settings.gemini_text_model
        self._client = genai.Client(api_key=api_key)

    async def generate(self, system: str, prompt: str) -> AIResponse:
        response = await self._client.aio.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system,
                temperature=settings.ai_temperature,
                max_output_tokens=settings.ai_max_tokens,
            ),
        )
        if not response.text:
            raise ValueError("Gemini returned empty response")

        meta = response.usage_metadata
        return AIResponse(
            text=response.text,
            provider=self.name,
            usage=TokenUsage(
                prompt_tokens=getattr(meta, "prompt_token_count", None) or 0,
                completion_tokens=getattr(meta, "candidates_token_count", None) or 0,
                total_tokens=getattr(meta, "total_token_count", None) or 0,
            ),
        )


class GroqProvider:
    """Groq through its OpenAI-compatible chat completions endpoint."""
    name = "groq"

    def __init__(self, api_key: str, model: Optional[str] = None, base_url: Optional[str] = None):
        self.model = model or settings.groq_model
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or settings.groq_base_url)

    async def generate(self, system: str, prompt: str) -> AIResponse:
        completion = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=settings.ai_temperature,
            max_tokens=settings.ai_max_tokens,
        )
        text = completion.choices[0].message.content
        if not text:
            raise ValueError("Groq returned empty response")

        usage = completion.usage
        return AIResponse(
            text=text,
            provider=self.name,
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            ),
        )


class MockProvider:
    """Deterministic offline provider for local development (AI_MODE=mock)."""
    name = "mock"

    async def generate(self, system: str, prompt: str) -> AIResponse:
        first_line = next((line for line in prompt.splitlines() if line.startswith("User Input:")), "")
        text = f"Coach says: {first_line.removeprefix('User Input:').strip()[:200]}"
        words = len(prompt.split())
        return AIResponse(
            text=text,
            provider=self.name,
            usage=TokenUsage(prompt_tokens=words, completion_tokens=len(text.split()), total_tokens=words + len(text.split())),
        )


class AIGateway:
    """Tries each provider in order until one answers.

    Each attempt is bounded by ``timeout_sec``; a timeout counts as a
    failure and moves on to the next provider. When every provider fails
    the last error is raised as UpstreamProviderError.
    """

    def __init__(self, providers: list[AIProvider], timeout_sec: Optional[float] = None):
        self.providers = list(providers)
        self.timeout_sec = timeout_sec or settings.ai_timeout_sec

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self.providers]

    def is_available(self) -> bool:
        return bool(self.providers)

    async def generate(self, instruction: str, ctx: AIContext) -> AIResponse:
        if not self.providers:
            raise UpstreamProviderError("No AI provider configured. Set GEMINI_API_KEY or GROQ_API_KEY")

        system = system_prompt(ctx)
        prompt = contextual_prompt(instruction, ctx)

        last_exc: Optional[Exception] = None
        last_name: Optional[str] = None
        for provider in self.providers:
            started = time.monotonic()
            try:
                return await asyncio.wait_for(provider.generate(system, prompt), timeout=self.timeout_sec)
            except Exception as e:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                if isinstance(e, asyncio.TimeoutError):
                    reason = f"timed out after {self.timeout_sec}s"
                else:
                    reason = f"{e.__class__.__name__}: {e}"
                logger.warning(f"AI provider {provider.name} failed after {elapsed_ms}ms ({reason})")
                last_exc, last_name = e, provider.name

        raise UpstreamProviderError(str(last_exc) or last_exc.__class__.__name__, provider=last_name) from last_exc


def build_providers() -> list[AIProvider]:
    if settings.ai_mode == "mock":
        return [MockProvider()]

    providers: list[AIProvider] = []
    for name in settings.ai_provider_order:
        if name == "gemini" and settings.gemini_api_key:
            providers.append(GeminiProvider(settings.gemini_api_key))
        elif name == "groq" and settings.groq_api_key:
            providers.append(GroqProvider(settings.groq_api_key))
        else:
            logger.info(f"AI provider {name} skipped (unknown or no API key)")
    return providers


_gateway: Optional[AIGateway] = None


def get_ai_gateway() -> AIGateway:
    global _gateway
    if _gateway is None:
        _gateway = AIGateway(build_providers())
    return _gateway
