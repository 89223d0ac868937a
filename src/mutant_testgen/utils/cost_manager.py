"""Token and cost estimation for language model requests."""

import json
import logging
import math
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


class CostManager:
    """Estimates and records language model usage costs."""

    def __init__(self, config, usage_log_file: Optional[str] = '.mutant-testgen-usage.json'):
        self.config = config
        self.model = config.get('llm.model', 'claude-sonnet-4-20250514')
        self.max_output_tokens = config.get('llm.max_tokens', 4000)
        self.usage_log_file = Path(usage_log_file) if usage_log_file else None
        self.token_usage_log: List[Dict[str, Any]] = []

        # USD per 1K tokens
        self.model_costs = {
            'claude-3-haiku-20240307': {'input': 0.00025, 'output': 0.00125},
            'claude-3-5-haiku-20241022': {'input': 0.00025, 'output': 0.00125},
            'claude-3-5-sonnet-20241022': {'input': 0.003, 'output': 0.015},
            'claude-3-7-sonnet-20250219': {'input': 0.003, 'output': 0.015},
            'claude-sonnet-4-20250514': {'input': 0.003, 'output': 0.015},
            'claude-opus-4-20250514': {'input': 0.015, 'output': 0.075}
        }

    @staticmethod
    def estimate_tokens(text: str) -> int:
        return math.ceil(len(text) / CHARS_PER_TOKEN) if text else 0

    def estimate_cost(self, input_text: str, model: Optional[str] = None,
                      expected_output_tokens: Optional[int] = None) -> Dict[str, Any]:
        """Estimate tokens and cost of sending ``input_text`` to the model.

        The output size defaults to the configured ``llm.max_tokens``, so the
        figure is an upper bound rather than a forecast.
        """
        model = model or self.model
        input_tokens = self.estimate_tokens(input_text)
        output_tokens = self.max_output_tokens if expected_output_tokens is None else expected_output_tokens

        return {
            'model': model,
            'input_tokens': input_tokens,
            'output_tokens': output_tokens,
            'tokens': input_tokens + output_tokens,
            'cost': round(self._calculate_cost(model, input_tokens, output_tokens), 6),
        }

    def log_token_usage(self, model: str, input_tokens: int, output_tokens: int):
        cost_data = {
            'timestamp': datetime.now().isoformat(),
            'model': model,
            'input_tokens': input_tokens,
            'output_tokens': output_tokens,
            'estimated_cost': self._calculate_cost(model, input_tokens, output_tokens)
        }

        self.token_usage_log.append(cost_data)
        self._save_usage_log()

    def get_usage_summary(self, days: int = 7) -> Dict[str, Any]:
        """Cost usage summary for the last ``days`` days."""
        empty = {'total_cost': 0, 'requests': 0, 'total_tokens': 0}
        if self.usage_log_file is None or not self.usage_log_file.exists():
            return empty

        try:
            with open(self.usage_log_file, 'r', encoding='utf-8') as f:
                usage_log = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read usage log: {e}")
            return empty

        cutoff_date = datetime.now() - timedelta(days=days)
        recent_usage = [
            entry for entry in usage_log
            if datetime.fromisoformat(entry['timestamp']) > cutoff_date
        ]

        total_cost = sum(entry.get('estimated_cost', 0) for entry in recent_usage)
        total_requests = len(recent_usage)
        total_tokens = sum(
            entry.get('input_tokens', 0) + entry.get('output_tokens', 0)
            for entry in recent_usage
        )

        return {
            'total_cost': round(total_cost, 4),
            'requests': total_requests,
            'total_tokens': total_tokens,
            'average_cost_per_request': round(total_cost / max(total_requests, 1), 4)
        }

    def _calculate_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        if model not in self.model_costs:
            return 0.0

        costs = self.model_costs[model]
        input_cost = (input_tokens / 1000) * costs['input']
        output_cost = (output_tokens / 1000) * costs['output']

        return input_cost + output_cost

    def _save_usage_log(self):
        if self.usage_log_file is None:
            self.token_usage_log.clear()
            return

        try:
            existing_log = []
            if self.usage_log_file.exists():
                with open(self.usage_log_file, 'r', encoding='utf-8') as f:
                    existing_log = json.load(f)

            existing_log.extend(self.token_usage_log)
            existing_log = existing_log[-100:]

            with open(self.usage_log_file, 'w', encoding='utf-8') as f:
                json.dump(existing_log, f, indent=2)

            self.token_usage_log.clear()

        except (OSError, ValueError) as e:
            logger.warning(f"Failed to save usage log: {e}")
