"""
Completion client — calls a Messages-API compatible service (the local
proxy by default) to turn retrieved knowledge into a prose answer.
"""

import logging

import requests

from .base import CompletionError, CompletionTimeoutError, LLMClient

logger = logging.getLogger(__name__)


def build_prompt(question: str, knowledge: str = "", web_context: str = "") -> str:
    """Compose the prompt sent to the completion service.

    *knowledge* is the formatted text of local results and *web_context*
    the formatted web fallback; either may be empty.
    """
    parts = ["You are a Rust programming assistant backed by a local knowledge store.\n"]
    if knowledge:
        parts.append("From your knowledge base:\n" + knowledge.strip() + "\n")
    if web_context:
        parts.append("Additional information from the web:\n" + web_context.strip() + "\n")
    parts.append(f"User question: {question}\n")
    parts.append(
        "Provide a helpful, accurate answer with code examples if relevant. "
        "Prefer the knowledge base when it covers the question."
    )
    return "\n".join(parts)


class CompletionClient(LLMClient):

    ANTHROPIC_VERSION = "2023-06-01"

    def __init__(self, base_url: str, model: str, api_key: str = "",
                 timeout: float = 60.0, max_tokens: int = 2048, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.max_tokens = max_tokens

    def _headers(self) -> dict:
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": self.ANTHROPIC_VERSION,
        }
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _generate(self, prompt: str) -> str:
        logger.debug("Sending ~%d est. tokens to %s", int(len(prompt.split()) * 1.3),
                     self.base_url)

        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": "user", "content": prompt},
            ],
        }
        url = f"{self.base_url}/messages"
        try:
            response = requests.post(url, headers=self._headers(), json=payload,
                                     timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as exc:
            raise CompletionTimeoutError(
                f"no answer from {self.base_url} within {self.timeout:g}s") from exc
        except ValueError as exc:
            raise CompletionError(f"malformed response from {self.base_url}") from exc
        except requests.RequestException as exc:
            raise CompletionError(f"{self.base_url} unreachable: {exc}") from exc

        usage = data.get("usage", {})
        logger.debug("Usage: prompt=%s completion=%s",
                     usage.get("input_tokens"), usage.get("output_tokens"))

        # Extract text from content blocks
        content_blocks = data.get("content", [])
        return "".join(
            block.get("text", "") for block in content_blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )

    def answer(self, question: str, knowledge: str = "", web_context: str = "") -> str:
        """Ask the service to answer *question* grounded on the given context."""
        return self.generate_response(build_prompt(question, knowledge, web_context))
