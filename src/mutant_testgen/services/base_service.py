"""Base service class for common functionality."""

import logging
from abc import ABC
from typing import Optional

from mutant_testgen.config import Config
from mutant_testgen.utils.user_feedback import UserFeedback


class BaseService(ABC):
    """Base class for all services providing configuration and message routing.

    Messages go to the rich ``UserFeedback`` when one is supplied and to
    ``logger`` otherwise. ``logger`` defaults to one named after the concrete
    service class.
    """

    def __init__(self, config: Optional[Config] = None, feedback: Optional[UserFeedback] = None,
                 logger: Optional[logging.Logger] = None):
        self.config = config or Config(config_file=None)
        self.feedback = feedback
        self.logger = logger or logging.getLogger(self.__class__.__name__)

        # Determine if we should use Rich UI or standard logging
        self.use_rich_ui = feedback is not None

    def _log_info(self, message: str):
        if self.use_rich_ui:
            self.feedback.info(message)
        else:
            self.logger.info(message)

    def _log_success(self, message: str):
        if self.use_rich_ui:
            self.feedback.success(message)
        else:
            self.logger.info(f"SUCCESS: {message}")

    def _log_warning(self, message: str, suggestion: Optional[str] = None):
        if self.use_rich_ui:
            self.feedback.warning(message, suggestion)
        else:
            self.logger.warning(message)
            if suggestion:
                self.logger.warning(f"Suggestion: {suggestion}")

    def _log_error(self, message: str, suggestion: Optional[str] = None):
        if self.use_rich_ui:
            self.feedback.error(message, suggestion)
        else:
            self.logger.error(message)
            if suggestion:
                self.logger.error(f"Suggestion: {suggestion}")

    def _log_debug(self, message: str):
        if self.use_rich_ui and self.feedback.verbose:
            self.feedback.debug(message)
        else:
            self.logger.debug(message)
