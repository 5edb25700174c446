"""
Release API Layer.

This package handles all communication with the GitHub and CNB release
listings.
"""

from .releases import ReleaseClient

__all__ = ["ReleaseClient"]
