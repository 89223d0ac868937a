"""Blocking HTTP transports for language model APIs."""

import json
import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests

from mutant_testgen.exceptions import LLMClientError

logger = logging.getLogger(__name__)


class LLMTransport(ABC):
    """Sends one system/user prompt pair to a model and returns the reply text."""

    model: str = "unknown"

    @abstractmethod
    def complete(self, system_prompt: str, user_content: str) -> str:
        """Return the model's text reply."""

    def ping(self) -> bool:
        """Check that the endpoint accepts requests."""
        self.complete("Reply with OK.", "ping")
        return True


class ClaudeTransport(LLMTransport):
    """Client for the Anthropic messages API."""

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-20250514",
                 temperature: float = 0.2, max_tokens: int = 4000, timeout: int = 120,
                 cost_manager=None):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.api_url = "https://api.anthropic.com/v1/messages"
        self.cost_manager = cost_manager

    def complete(self, system_prompt: str, user_content: str) -> str:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json"
        }
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": system_prompt,
            "messages": [
                {
                    "role": "user",
                    "content": user_content
                }
            ]
        }

        logger.info(f"Sending request to Claude API using model: {self.model}")
        logger.debug(f"Request payload size: {len(json.dumps(payload)):,} characters")

        try:
            response = requests.post(self.api_url, headers=headers, json=payload, timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.HTTPError as e:
            raise self._http_error(e) from e
        except requests.exceptions.Timeout as e:
            raise LLMClientError(
                f"Request timed out after {self.timeout} seconds",
                suggestion="Try again, or raise llm.timeout for large source files."
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise LLMClientError(
                "Failed to connect to Claude API",
                suggestion="Check your internet connection and try again."
            ) from e
        except ValueError as e:
            raise LLMClientError(f"Claude API returned a non-JSON response: {e}") from e

        if result.get('stop_reason') == 'max_tokens':
            logger.warning(f"Response truncated at {self.max_tokens:,} tokens")

        usage = result.get('usage') or {}
        if usage:
            input_tokens = usage.get('input_tokens', 0)
            output_tokens = usage.get('output_tokens', 0)
            logger.info(f"Token usage - Input: {input_tokens}, Output: {output_tokens}")
            if self.cost_manager:
                self.cost_manager.log_token_usage(self.model, input_tokens, output_tokens)

        try:
            content = result['content'][0]['text']
        except (KeyError, IndexError, TypeError) as e:
            raise LLMClientError(
                "Unexpected response shape from Claude API",
                suggestion="The API may have changed; check the response with --verbose."
            ) from e

        if not content or not content.strip():
            raise LLMClientError(
                "Empty response from Claude API",
                suggestion="The model returned no text. Try again or reduce the source size."
            )

        logger.debug(f"Response content length: {len(content):,} characters")
        return content

    @staticmethod
    def _http_error(error: requests.exceptions.HTTPError) -> LLMClientError:
        status_code: Optional[int] = error.response.status_code if error.response is not None else None

        if status_code == 401:
            return LLMClientError(
                "Invalid API key or authentication failed",
                status_code=status_code,
                suggestion="Check your Claude API key (llm.api_key or CLAUDE_API_KEY)."
            )
        if status_code == 429:
            return LLMClientError(
                "API rate limit exceeded",
                status_code=status_code,
                suggestion="Wait a moment and try again, or lower batch.concurrency."
            )
        if status_code == 400:
            details = error.response.text
            try:
                message = json.loads(details).get('error', {}).get('message', 'Bad request')
            except ValueError:
                message = details[:200] + "..." if len(details) > 200 else details
            return LLMClientError(
                f"API request error: {message}",
                status_code=status_code,
                suggestion="Check the model name and request size."
            )
        return LLMClientError(
            f"HTTP error {status_code}: {error}",
            status_code=status_code,
            suggestion="Check your network connection and try again."
        )
