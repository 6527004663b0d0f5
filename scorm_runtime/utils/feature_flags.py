"""
Feature Flags System for the SCORM runtime
Environment-based feature control for runtime behaviour
"""

import os
from typing import Dict, List, Optional
from dataclasses import dataclass
from enum import Enum


class Environment(Enum):
    DEVELOPMENT = "development"
    TEST = "test"
    QA = "qa"
    STAGING = "staging"
    PRODUCTION = "production"


ALL_ENVIRONMENTS = list(Environment)


@dataclass
class FeatureFlag:
    name: str
    enabled: bool
    description: str
    environments: List[Environment]


class FeatureFlagService:
    """Service for managing feature flags in the backend"""

    def __init__(self):
        self.current_environment = self._get_current_environment()
        self.flags = self._initialize_flags()

    def _get_current_environment(self) -> Environment:
        """Get current environment from environment variable"""
        env_name = os.getenv('ENVIRONMENT', 'development').lower()
        try:
            return Environment(env_name)
        except ValueError:
            return Environment.DEVELOPMENT

    def _initialize_flags(self) -> Dict[str, FeatureFlag]:
        """Initialize feature flags with their configurations"""
        flags = {
            'strict_error_codes': FeatureFlag(
                name='strict_error_codes',
                enabled=False,
                description='Report SCORM misuse through GetLastError instead of always "0"',
                environments=[]
            ),
            'api_bridge_injection': FeatureFlag(
                name='api_bridge_injection',
                enabled=True,
                description='Inject the parent API bridge script into proxied HTML',
                environments=ALL_ENVIRONMENTS
            ),
            'interaction_log': FeatureFlag(
                name='interaction_log',
                enabled=True,
                description='Append every SetValue to the interaction log',
                environments=ALL_ENVIRONMENTS
            ),
        }

        # Apply environment-specific overrides
        self._apply_environment_overrides(flags)

        return flags

    def _apply_environment_overrides(self, flags: Dict[str, FeatureFlag]) -> None:
        """Apply environment-specific feature flag overrides"""
        for flag in flags.values():
            flag.enabled = self.current_environment in flag.environments

            # Apply environment variable overrides
            env_var_name = f"FEATURE_{flag.name.upper()}"
            env_override = os.getenv(env_var_name)
            if env_override is not None:
                flag.enabled = env_override.lower() in ('true', '1', 'yes', 'on')

    def is_enabled(self, flag_name: str) -> bool:
        """Check if a feature flag is enabled"""
        flag = self.flags.get(flag_name)
        if flag is None:
            return False
        return flag.enabled

    def get_flag(self, flag_name: str) -> Optional[FeatureFlag]:
        """Get a specific feature flag"""
        return self.flags.get(flag_name)

    def get_enabled_flags(self) -> List[str]:
        """Get list of all enabled flag names"""
        return [name for name, flag in self.flags.items() if flag.enabled]

    def set_flag(self, flag_name: str, enabled: bool) -> bool:
        """Toggle a flag at runtime (development and test only)"""
        if self.current_environment not in (Environment.DEVELOPMENT, Environment.TEST):
            return False

        flag = self.flags.get(flag_name)
        if flag:
            flag.enabled = enabled
            return True
        return False

    def get_environment_info(self) -> Dict:
        """Get current environment information"""
        return {
            'current_environment': self.current_environment.value,
            'total_flags': len(self.flags),
            'enabled_flags': len(self.get_enabled_flags()),
            'flag_summary': {name: flag.enabled for name, flag in self.flags.items()}
        }


# Global feature flag service instance
feature_flags = FeatureFlagService()


# Convenience functions for common usage
def is_feature_enabled(flag_name: str) -> bool:
    """Check if a feature is enabled"""
    return feature_flags.is_enabled(flag_name)
