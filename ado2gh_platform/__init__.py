"""ADO -> GitHub migration platform.

Runs batches of repository migrations (and the stages that depend on them)
with bounded parallelism, a durable per-repository status ledger and
success-subset handoff between stages.
"""

from __future__ import annotations

__all__ = ["__version__"]
__version__ = "0.2.0"
