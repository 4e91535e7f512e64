"""
Service module for the Optimus submission system.

This module provides the HTTP endpoints for format negotiation, archive
ingestion and competition listing.
"""

from .identity import IdentityResolver, StaticKeyResolver
from .negotiator import CompetitionRegistry, Negotiator
from .server import ServerConfig, SubmissionService, create_app

__all__ = [
    "CompetitionRegistry",
    "IdentityResolver",
    "Negotiator",
    "ServerConfig",
    "StaticKeyResolver",
    "SubmissionService",
    "create_app",
]
