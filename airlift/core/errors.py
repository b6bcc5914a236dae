"""Base exception for batch-level failures.

Per-artifact failures never raise; they are captured as ``PublishOutcome``
records.  Anything deriving from ``AirliftError`` aborts the whole run.
"""

from __future__ import annotations


class AirliftError(RuntimeError):
    """Root of every batch-fatal Airlift error."""
