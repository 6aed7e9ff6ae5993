"""
docgov Version Management - Centralized version for all components

This module provides a single source of truth for the docgov version.
"""

# =============================================================================
# docgov Version - Single Source of Truth
# =============================================================================

__version__ = "0.4.0"


def get_version() -> str:
    """Get the current docgov version string."""
    return __version__


def get_short_banner() -> str:
    """Get a compact version banner."""
    return f"docgov v{get_version()} | document governance engine"
