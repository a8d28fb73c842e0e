from dataclasses import dataclass
from typing import Protocol

@dataclass(frozen=True)
class Completion:
    text: str
    output_tokens: int = 0

class LanguageModel(Protocol):
    async def complete(self, system: str, user: str) -> Completion:
        """
        Returns the raw completion text. Raises ModelServiceError with
        `retryable` set for transient failures (rate limit, 5xx, timeouts).
        """
        ...
