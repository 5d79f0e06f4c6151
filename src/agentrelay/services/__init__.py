"""
Services Package — small I/O wrappers around the coordinator.

- ApiSetupService: model selection, encrypted credentials, connection test
- PreferencesService: the user's preferences file
- get_git_branch: branch lookup for a working directory
"""

from agentrelay.services.api_setup import ApiSetupService
from agentrelay.services.git import get_git_branch
from agentrelay.services.preferences import PreferencesService

__all__ = [
    "ApiSetupService",
    "PreferencesService",
    "get_git_branch",
]
