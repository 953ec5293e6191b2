"""Stock checking system.

This package provides:
- Evidence data structures shared by checking and discovery
- The multi-strategy evidence extractor
- The order-limit prober

The checker, keyword watcher and scheduler sit on top of discovery and
services; import them from their own modules.
"""

from .base import (
    DiscoveredProduct,
    EvidenceSource,
    ScrapeEvidence,
    SelectorProfile,
    SignalReading,
)
from .extractor import EvidenceExtractor, resolve_evidence
from .order_limit import OrderLimitProber

__all__ = [
    # Data structures
    "DiscoveredProduct",
    "EvidenceSource",
    "ScrapeEvidence",
    "SelectorProfile",
    "SignalReading",
    # Extraction
    "EvidenceExtractor",
    "resolve_evidence",
    "OrderLimitProber",
]
