"""didanchor.core

Configuration, errors, encoding, logging, and the operation log.
"""

from didanchor.core.config import Config
from didanchor.core.exceptions import DidAnchorError

__all__ = ["Config", "DidAnchorError"]
