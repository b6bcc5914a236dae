"""Airlift: move npm packages into air-gapped registries.

v0.1.0:
  - Tri-state existence checks (exists / not exists / uncertain) with caching
  - Bounded-concurrency publishing with order-preserving results
  - Failure classification with cause-aware retries and fallback dist-tags
  - Reconciliation of ambiguous "404 after upload" failures
  - Registry snapshots and offline diffs for incremental transfers
"""

__version__ = "0.1.0"
__description__ = "Reliable, incremental npm package transfer into offline registries"

from airlift.core.engine import PublishEngine
from airlift.cli.app import app as cli

__all__ = ["PublishEngine", "cli", "__version__"]
