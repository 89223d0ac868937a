"""Factory for creating language-model providers."""

import os
from typing import Optional

from mutant_testgen.config import Config
from mutant_testgen.exceptions import ConfigurationError
from mutant_testgen.generation.llm_clients import ClaudeTransport
from mutant_testgen.generation.llm_provider import LLMProvider, TransportLLMProvider
from mutant_testgen.utils.cost_manager import CostManager

SUPPORTED_PROVIDERS = ('claude',)


class LLMProviderFactory:
    """Factory for creating the configured language-model provider."""

    @staticmethod
    def create_provider(config: Config, cost_manager: Optional[CostManager] = None,
                        api_key: Optional[str] = None) -> LLMProvider:
        """Create a provider from the ``llm`` config section.

        The API key is taken from ``api_key``, then ``llm.api_key``, then the
        ``CLAUDE_API_KEY`` environment variable.
        """
        provider = config.get('llm.provider', 'claude')
        if provider not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(
                f"Unsupported LLM provider: {provider!r}",
                suggestion=f"Set llm.provider to one of: {', '.join(SUPPORTED_PROVIDERS)}."
            )

        api_key = api_key or config.get('llm.api_key') or os.environ.get('CLAUDE_API_KEY')
        if not api_key:
            raise ConfigurationError(
                "No Claude API key provided",
                suggestion="Set the CLAUDE_API_KEY environment variable or llm.api_key in the config file."
            )

        transport = ClaudeTransport(
            api_key=api_key,
            model=config.get('llm.model', 'claude-sonnet-4-20250514'),
            temperature=config.get('llm.temperature', 0.2),
            max_tokens=config.get('llm.max_tokens', 4000),
            timeout=config.get('llm.timeout', 120),
            cost_manager=cost_manager,
        )
        return TransportLLMProvider(
            transport,
            cost_manager=cost_manager,
            framework=config.get('test_generation.framework', 'jest'),
        )
