"""
Configuration package for the trade decision pipeline.

Public API:
    - Settings: Main configuration class
    - load_settings: Factory function to load settings from environment
    - Enumerations: Bias, SetupStatus, LifecycleState, AdvisoryLevel,
      OperatingMode, CheckName, GateName
    - Reason: Machine-readable reason codes
"""

from config.constants import (
    AdvisoryLevel,
    Bias,
    CheckName,
    GateName,
    LifecycleState,
    OperatingMode,
    Reason,
    SetupStatus,
)
from config.settings import Settings, load_settings

__all__ = [
    "Settings",
    "load_settings",
    "AdvisoryLevel",
    "Bias",
    "CheckName",
    "GateName",
    "LifecycleState",
    "OperatingMode",
    "Reason",
    "SetupStatus",
]
