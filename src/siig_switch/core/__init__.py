"""
Core data model - descriptor snapshots, session states and transfer results.
"""

from .models import (
    AltSetting,
    ConfigDescriptor,
    SessionState,
    TransferResult,
)

__all__ = [
    'AltSetting',
    'ConfigDescriptor',
    'SessionState',
    'TransferResult',
]
