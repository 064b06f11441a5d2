"""Package scanner: capture, identify and enrich products for the catalog."""

from .camera import CaptureDevice, CaptureFrame, DeviceError, OpenCVCaptureDevice
from .config import (
    CameraConfig,
    DatabaseConfig,
    InferenceConfig,
    PipelineConfig,
    PotencyConfig,
    ScannerConfig,
    SessionConfig,
    load_config,
)
from .duplicates import SimilarityWeights, find_groups, similarity
from .enrichment import EnrichmentPipeline, ScanQuery
from .inference import InferenceBackend, InferenceError, create_backend
from .models import (
    DuplicateGroup,
    ProductRecord,
    ProfileItem,
    ScanEvent,
    ScanFailure,
    ScanResult,
    ScanSession,
    ScanSuccess,
    StabilityMetrics,
    Terpene,
)
from .potency import thc_midpoint, thc_range
from .session import ManagerState, ScanSessionManager
from .stability import StabilityAssessor

__all__ = [
    "CaptureDevice",
    "CaptureFrame",
    "DeviceError",
    "OpenCVCaptureDevice",
    "StabilityAssessor",
    "ScanSessionManager",
    "ManagerState",
    "EnrichmentPipeline",
    "ScanQuery",
    "InferenceBackend",
    "InferenceError",
    "create_backend",
    "SimilarityWeights",
    "similarity",
    "find_groups",
    "thc_range",
    "thc_midpoint",
    "ProductRecord",
    "ProfileItem",
    "Terpene",
    "ScanSession",
    "ScanSuccess",
    "ScanFailure",
    "ScanResult",
    "ScanEvent",
    "StabilityMetrics",
    "DuplicateGroup",
    "ScannerConfig",
    "CameraConfig",
    "InferenceConfig",
    "SessionConfig",
    "PipelineConfig",
    "PotencyConfig",
    "DatabaseConfig",
    "load_config",
]
