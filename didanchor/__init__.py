"""didanchor: ledger-anchored decentralized identifiers.

Operations commit to their successors. Batches commit to their operations.
The ledger only ever sees one string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.4.0"
