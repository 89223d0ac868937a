"""Configuration management for mutation-guided test generation."""

import copy
import os
import yaml
import logging
from typing import Dict, Any

logger = logging.getLogger(__name__)


class Config:
    """Configuration management for mutation-guided test generation."""

    DEFAULT_CONFIG = {
        'llm': {
            'provider': 'claude',
            'model': 'claude-sonnet-4-20250514',
            'api_key': None,            # Falls back to CLAUDE_API_KEY
            'temperature': 0.2,
            'max_tokens': 4000,
            'timeout': 120,
        },
        'mutation': {
            'engine': 'stryker',
            'command': ['npx', 'stryker', 'run'],
            'timeout': 600,             # Seconds per mutation run
            'report_file': 'reports/mutation/mutation.json',
            'reports_dir': 'reports',
            'generate_report': True,
        },
        'feedback_loop': {
            'target_mutation_score': 80.0,
            'max_iterations': 5,
            'merge_strategy': 'auto',   # 'auto' | 'splice' | 'append'
            'improve_no_coverage': False,
        },
        'test_generation': {
            'framework': 'jest',        # 'jest' | 'mocha' | 'pytest'
            'output_dir': 'tests',
        },
        'batch': {
            'concurrency': 3,
            'mode': 'generate',         # 'generate' | 'improve'
            'use_feedback_loop': True,
        },
        'storage': {
            'base_path': '.',
            'encoding': 'utf-8',
            'ignore': ['node_modules', '.git', 'dist', 'build', '__pycache__'],
        },
        'logging': {
            'level': 'WARNING',
            'file': None,
        },
    }

    def __init__(self, config_file: str = ".mutant-testgen.yml"):
        self.config_file = config_file
        self.config = self.load_config()

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file or use defaults."""
        if not self.config_file:
            return copy.deepcopy(self.DEFAULT_CONFIG)
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    user_config = yaml.safe_load(f)
                    # yaml.safe_load returns None for an empty file
                    if not user_config:
                        return copy.deepcopy(self.DEFAULT_CONFIG)
                    return self._deep_merge(self.DEFAULT_CONFIG, user_config)
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config from {self.config_file}: {e}")
        return copy.deepcopy(self.DEFAULT_CONFIG)

    def create_sample_config(self, filepath: str = ".mutant-testgen.yml") -> None:
        """Write a commented configuration file with every option."""
        config_content = """# mutant-testgen configuration
# Uncomment and modify the sections you want to customize.

llm:
  provider: 'claude'
  model: 'claude-sonnet-4-20250514'
  # api_key: null                 # Defaults to the CLAUDE_API_KEY environment variable
  temperature: 0.2
  max_tokens: 4000
  timeout: 120                    # Seconds per HTTP request

mutation:
  engine: 'stryker'
  command: ['npx', 'stryker', 'run']
  timeout: 600                    # Seconds per mutation run
  report_file: 'reports/mutation/mutation.json'
  reports_dir: 'reports'
  generate_report: true           # Write an analysis report after every run

feedback_loop:
  target_mutation_score: 80.0     # Stop once the mutation score reaches this value (0-100)
  max_iterations: 5               # Maximum number of mutation analyses per file
  merge_strategy: 'auto'          # 'auto' | 'splice' | 'append'
  improve_no_coverage: false      # Also send no-coverage mutants to the model

test_generation:
  framework: 'jest'               # 'jest' | 'mocha' | 'pytest'
  output_dir: 'tests'

batch:
  concurrency: 3                  # Files processed side by side per batch
  mode: 'generate'                # 'generate' | 'improve'
  use_feedback_loop: true

storage:
  base_path: '.'
  encoding: 'utf-8'

logging:
  level: 'WARNING'
  file: null
"""

        with open(filepath, 'w', encoding='utf-8') as f:
            f.write(config_content)

        logger.info(f"Configuration created at {filepath}")

    def get(self, key: str, default=None):
        """Get configuration value using dot notation."""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key.split('.')
        target = self.config
        for k in keys[:-1]:
            if not isinstance(target.get(k), dict):
                target[k] = {}
            target = target[k]
        target[keys[-1]] = value

    def _deep_merge(self, default: Dict, user: Dict) -> Dict:
        """Deeply merge user config with defaults."""
        result = copy.deepcopy(default)

        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result
