import logging
import random
import time
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Raised when the completion service cannot produce an answer."""


class CompletionTimeoutError(CompletionError):
    """Raised when the completion service does not answer in time."""


class LLMClient(ABC):

    def __init__(self, max_retries: int = 2, retry_delay: float = 1.0):
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

    # ── Public entry point ──

    def generate_response(self, prompt: str) -> str:
        """Generate a response with automatic retry and exponential backoff.

        A timeout is not retried: the caller already waited the full budget,
        so :class:`CompletionTimeoutError` is raised straight away.  Any other
        failure is retried and raises :class:`CompletionError` once all
        attempts are exhausted.
        """
        last_error: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                result = self._generate(prompt)
                if result and result.strip():
                    return result
                logger.warning("Empty completion on attempt %d/%d",
                               attempt, self.max_retries)
                last_error = CompletionError("empty response")
            except CompletionTimeoutError:
                raise
            except CompletionError as exc:
                last_error = exc
                logger.warning("Completion error on attempt %d/%d: %s",
                               attempt, self.max_retries, exc)

            if attempt < self.max_retries:
                # Jittered exponential backoff
                wait = self.retry_delay * (2 ** (attempt - 1))
                if "429" in str(last_error):
                    wait *= 2
                    logger.info("Rate limited (429), backing off for %.1fs", wait)
                time.sleep(wait + wait * 0.1 * random.random())

        raise CompletionError(
            f"completion failed after {self.max_retries} attempt(s): {last_error}")

    # ── Subclass hooks ──

    @abstractmethod
    def _generate(self, prompt: str) -> str:
        """Single synchronous generation attempt.

        Implementations raise :class:`CompletionTimeoutError` on timeout and
        :class:`CompletionError` for any other transport or protocol failure.
        """
