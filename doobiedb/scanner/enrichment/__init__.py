"""Multi-stage identification and enrichment of captures and text queries."""

from .pipeline import EnrichmentPipeline, ScanQuery

__all__ = ["EnrichmentPipeline", "ScanQuery"]
