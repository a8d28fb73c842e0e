"""OpenAI-backed analysis model."""

from __future__ import annotations

import openai
from openai import AsyncOpenAI

from .base import Completion, LanguageModel
from ..core.config import settings
from ..core.errors import ModelServiceError

# Completions shorter than this are treated as an empty reply
MIN_COMPLETION_CHARS = 10


class OpenAIModel(LanguageModel):
    def __init__(self, client: AsyncOpenAI | None = None):
        api_key = settings.OPENAI_API_KEY
        if client is None and not api_key:
            raise RuntimeError("OPENAI_API_KEY missing from settings")
        # Retries are owned by ModelClient, not the SDK
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            timeout=settings.OPENAI_TIMEOUT_SECONDS,
            max_retries=0,
        )
        self.model = settings.OPENAI_MODEL

    async def complete(self, system: str, user: str) -> Completion:
        """Call OpenAI's chat completion API once.

        Parameters
        ----------
        system: str
            System instruction (analyst persona and output rules).
        user: str
            User message carrying the JSON data bundle and target schema.

        Returns
        -------
        Completion
            Raw text and the output-token count reported by the API.
        """
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=settings.OPENAI_TEMPERATURE,
                max_tokens=settings.OPENAI_MAX_TOKENS,
            )
        except openai.RateLimitError as exc:
            raise ModelServiceError("rate limited", status=429, retryable=True) from exc
        except openai.APITimeoutError as exc:
            raise ModelServiceError("request timed out", retryable=True) from exc
        except openai.APIConnectionError as exc:
            raise ModelServiceError("connection error", retryable=True) from exc
        except openai.APIStatusError as exc:
            status = exc.status_code
            raise ModelServiceError(
                f"API error {status}", status=status, retryable=status >= 500
            ) from exc

        content = completion.choices[0].message.content if completion.choices else None
        if not content or len(content.strip()) < MIN_COMPLETION_CHARS:
            raise ModelServiceError("empty or too short completion", retryable=False)

        usage = completion.usage
        return Completion(text=content, output_tokens=usage.completion_tokens if usage else 0)
