"""Pure statistical digests of one run's raw records."""

from .cross import summarize_cross_protocol
from .derivatives import summarize_derivatives
from .dex import summarize_dex
from .lending import summarize_lending
from .nft import summarize_nft

__all__ = [
    "summarize_cross_protocol",
    "summarize_derivatives",
    "summarize_dex",
    "summarize_lending",
    "summarize_nft",
]
