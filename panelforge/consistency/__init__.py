"""
PanelForge Consistency Module

Per-job identity and environment constraints shared by every panel.
"""

from .profile import (
    IdentityDescriptor,
    EnvironmentProfile,
    ConsistencyProfile,
    build_consistency_profile,
    derive_environment,
    placeholder_descriptor,
)

__all__ = [
    'IdentityDescriptor',
    'EnvironmentProfile',
    'ConsistencyProfile',
    'build_consistency_profile',
    'derive_environment',
    'placeholder_descriptor',
]
