"""TOML configuration loader for the scanner."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib
    except ImportError:
        tomllib = None  # type: ignore[assignment]

from .duplicates import SimilarityWeights


@dataclass
class CameraConfig:
    index: int = 0
    width: int = 1920
    height: int = 1080


@dataclass
class ClaudeInferenceConfig:
    api_key: str = ""
    model: str = "claude-sonnet-4-5-20250929"


@dataclass
class GeminiInferenceConfig:
    api_key: str = ""
    model: str = "gemini-2.0-flash"


@dataclass
class InferenceConfig:
    backend: str = "claude"
    timeout: float = 30.0
    claude: ClaudeInferenceConfig = field(default_factory=ClaudeInferenceConfig)
    gemini: GeminiInferenceConfig = field(default_factory=GeminiInferenceConfig)


@dataclass
class SessionConfig:
    stability_interval: float = 0.5
    submission_interval: float = 3.0
    burst_size: int = 2
    retry_delay: float = 1.5


@dataclass
class PipelineConfig:
    min_detection_confidence: float = 30.0
    check_duplicates: bool = True
    max_effects: int = 8
    max_flavors: int = 6
    max_medical_uses: int = 6
    max_terpenes: int = 6


@dataclass
class PotencyConfig:
    low: float = 20.5
    high: float = 26.5

    @property
    def bounds(self) -> tuple[float, float]:
        return (self.low, self.high)


@dataclass
class DuplicatesConfig:
    weights: SimilarityWeights = field(default_factory=SimilarityWeights)


@dataclass
class DatabaseConfig:
    path: str = "~/.config/doobiedb/scanner.db"


@dataclass
class ScannerConfig:
    camera: CameraConfig = field(default_factory=CameraConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    potency: PotencyConfig = field(default_factory=PotencyConfig)
    duplicates: DuplicatesConfig = field(default_factory=DuplicatesConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def load_config(path: str | Path | None = None) -> ScannerConfig:
    """Load configuration from a TOML file.

    Falls back to defaults if no path is given or the file doesn't exist.
    API keys can be overridden via environment variables.
    """
    raw: dict = {}

    if path is not None:
        p = Path(path)
        if p.exists():
            if tomllib is None:
                raise ImportError(
                    "tomli is required on Python < 3.11: pip install tomli"
                )
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cam = raw.get("camera", {})
    inf = raw.get("inference", {})
    ses = raw.get("session", {})
    pip = raw.get("pipeline", {})
    pot = raw.get("potency", {})
    dup = raw.get("duplicates", {})
    dbs = raw.get("database", {})

    claude_cfg = inf.get("claude", {})
    gemini_cfg = inf.get("gemini", {})

    # Resolve API keys: config file → environment variable
    claude_api_key = claude_cfg.get("api_key", "") or os.environ.get(
        "ANTHROPIC_API_KEY", ""
    )
    gemini_api_key = gemini_cfg.get("api_key", "") or os.environ.get(
        "GEMINI_API_KEY", ""
    )

    potency = PotencyConfig(
        low=float(pot.get("low", 20.5)),
        high=float(pot.get("high", 26.5)),
    )
    if potency.low > potency.high:
        raise ValueError(
            f"Invalid potency bounds: low={potency.low} > high={potency.high}"
        )

    # Unknown weight keys are rejected rather than silently ignored
    weight_overrides = dup.get("weights", {})
    if "threshold" in dup:
        weight_overrides = {**weight_overrides, "threshold": dup["threshold"]}
    try:
        weights = SimilarityWeights(**weight_overrides)
    except TypeError as e:
        raise ValueError(f"Invalid [duplicates] settings: {e}") from None

    return ScannerConfig(
        camera=CameraConfig(
            index=cam.get("index", 0),
            width=cam.get("width", 1920),
            height=cam.get("height", 1080),
        ),
        inference=InferenceConfig(
            backend=inf.get("backend", "claude"),
            timeout=float(inf.get("timeout", 30.0)),
            claude=ClaudeInferenceConfig(
                api_key=claude_api_key,
                model=claude_cfg.get("model", "claude-sonnet-4-5-20250929"),
            ),
            gemini=GeminiInferenceConfig(
                api_key=gemini_api_key,
                model=gemini_cfg.get("model", "gemini-2.0-flash"),
            ),
        ),
        session=SessionConfig(
            stability_interval=float(ses.get("stability_interval", 0.5)),
            submission_interval=float(ses.get("submission_interval", 3.0)),
            burst_size=int(ses.get("burst_size", 2)),
            retry_delay=float(ses.get("retry_delay", 1.5)),
        ),
        pipeline=PipelineConfig(
            min_detection_confidence=float(
                pip.get("min_detection_confidence", 30.0)
            ),
            check_duplicates=pip.get("check_duplicates", True),
            max_effects=pip.get("max_effects", 8),
            max_flavors=pip.get("max_flavors", 6),
            max_medical_uses=pip.get("max_medical_uses", 6),
            max_terpenes=pip.get("max_terpenes", 6),
        ),
        potency=potency,
        duplicates=DuplicatesConfig(weights=weights),
        database=DatabaseConfig(
            path=dbs.get("path", "~/.config/doobiedb/scanner.db"),
        ),
    )
