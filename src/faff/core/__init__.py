"""
faff Core - data classes shared across the package.

Models are plain dataclasses with no USB dependencies, so they can be
built from config and used in tests without hardware.
"""

from .models import (
    DetectedDevice,
    DeviceSelector,
    FlashIdentity,
    LinkSettings,
    ProgramResult,
    ProgrammingCursor,
    ProgrammingSettings,
)

__all__ = [
    'DetectedDevice',
    'DeviceSelector',
    'FlashIdentity',
    'LinkSettings',
    'ProgramResult',
    'ProgrammingCursor',
    'ProgrammingSettings',
]
