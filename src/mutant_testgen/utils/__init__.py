"""Utility components for mutant-testgen."""

from .cost_manager import CostManager
from .storage import FileSystemStorage, StorageProvider, is_test_file
from .user_feedback import UserFeedback
from .validation import SettingsValidator

__all__ = [
    "CostManager",
    "FileSystemStorage",
    "StorageProvider",
    "is_test_file",
    "UserFeedback",
    "SettingsValidator",
]
