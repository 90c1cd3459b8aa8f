"""
Pack handling for packsmith.

A pack is a directory (local, or a git checkout) with a techpack.yaml at its
root. This package covers everything done to a pack before convergence.

Key Components:
    - Manifest: Pydantic model for techpack.yaml
    - ManifestLoader: Parse, normalize and validate a pack directory
    - TrustManager: Consent and tamper detection for executable content
    - DependencyResolver: Order a component selection into a plan
    - PackFetcher: Clone, update and pin pack checkouts
    - PromptExecutor: Gather configure-time values
"""

from packsmith.pack.manifest import Component, Manifest
from packsmith.pack.loader import MANIFEST_FILE_NAME, ManifestLoader, validate_peer_dependencies
from packsmith.pack.resolver import DependencyResolver, ResolvedPlan, select_components
from packsmith.pack.trust import TrustableItem, TrustDecision, TrustManager
from packsmith.pack.fetcher import FetchResult, PackFetcher, PackSource
from packsmith.pack.prompts import CrossPackPromptResolver, PromptExecutor, StaticAnswerer

__all__ = [
    "MANIFEST_FILE_NAME",
    "Component",
    "CrossPackPromptResolver",
    "DependencyResolver",
    "FetchResult",
    "Manifest",
    "ManifestLoader",
    "PackFetcher",
    "PackSource",
    "PromptExecutor",
    "ResolvedPlan",
    "StaticAnswerer",
    "TrustDecision",
    "TrustManager",
    "TrustableItem",
    "select_components",
    "validate_peer_dependencies",
]
