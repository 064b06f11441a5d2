"""Multi-stage identification and enrichment pipeline.

Stages run in order and each inference call sits behind its own fault
boundary: a failed secondary stage degrades to lookup-table synthesis, a
failed persistence write is logged, and only a failed primary extraction
turns the whole scan into a ScanFailure (which still carries a fallback
record).
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from pathlib import Path

from ..config import ScannerConfig
from ..db import CatalogDB, ProductCacheDB
from ..inference import InferenceBackend, InferenceError, InferenceRequest
from ..models import (
    SOURCES,
    ProductRecord,
    ScanEvent,
    ScanFailure,
    ScanResult,
    ScanSuccess,
)
from ..potency import thc_midpoint, thc_range
from ..profiles import SUPPORTED_EFFECTS, SUPPORTED_FLAVORS, synthesize
from . import prompts
from .outcomes import (
    InferenceFailed,
    Parsed,
    ParseFailure,
    StageOutcome,
    TimedOut,
    describe,
)
from .parsing import (
    DEFAULT_NAME,
    PrimaryFields,
    parse_detection,
    parse_object,
    parse_profiles,
    validate_primary,
)
from .text import rewrite_potency_sentences

logger = logging.getLogger(__name__)

_FALLBACK_TEXT = "Text analysis incomplete. Please check spelling and try again."
_FALLBACK_IMAGE = (
    "Package scan incomplete. Please try again with clearer lighting "
    "and ensure all text is visible."
)


@dataclass
class ScanQuery:
    """One capture or query to identify."""

    text: str = ""
    images: list[bytes] = field(default_factory=list)  # JPEG payloads
    source: str = "text"  # image | text | voice
    operator_id: str | None = None

    def __post_init__(self) -> None:
        if self.source not in SOURCES:
            raise ValueError(f"Unknown source: {self.source!r}")
        if not self.text.strip() and not self.images:
            raise ValueError("A scan query needs text or at least one image")

    @classmethod
    def from_text(
        cls, text: str, *, voice: bool = False, operator_id: str | None = None
    ) -> ScanQuery:
        return cls(text=text, source="voice" if voice else "text", operator_id=operator_id)

    @classmethod
    def from_images(
        cls, images: list[bytes], *, operator_id: str | None = None
    ) -> ScanQuery:
        return cls(images=list(images), source="image", operator_id=operator_id)


def _ignore(event: ScanEvent) -> None:
    pass


class EnrichmentPipeline:
    """Turn a capture or text query into a validated ProductRecord."""

    def __init__(
        self,
        backend: InferenceBackend,
        config: ScannerConfig | None = None,
        db_path: str | Path | None = None,
    ) -> None:
        self._backend = backend
        self._config = config or ScannerConfig()
        self._db_path = db_path if db_path is not None else self._config.database.path

    async def identify(self, query: ScanQuery) -> ScanResult:
        return await self._run(query, _ignore)

    async def identify_stream(self, query: ScanQuery) -> AsyncIterator[ScanEvent]:
        """Yield progress events, ending with one ``complete`` or ``error`` event."""
        queue: asyncio.Queue[ScanEvent | None] = asyncio.Queue()
        task = asyncio.create_task(self._run(query, queue.put_nowait))
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while (event := await queue.get()) is not None:
                yield event
            try:
                result = task.result()
            except Exception as e:
                logger.exception("Streaming scan failed")
                result = ScanFailure(error=str(e), fallback=self._fallback(query, ""))
        finally:
            if not task.done():
                task.cancel()

        if isinstance(result, ScanSuccess):
            message = (
                "Strain already exists in your collection"
                if result.duplicate
                else "New strain profile generated successfully"
            )
            yield ScanEvent(type="complete", message=message, result=result)
        else:
            yield ScanEvent(type="error", message=result.error, result=result)

    async def _run(
        self, query: ScanQuery, emit: Callable[[ScanEvent], None]
    ) -> ScanResult:
        provisional = query.text.strip()

        if query.images:
            emit(ScanEvent("progress", "Analyzing captured frames...", phase="capture"))
            detected = await self._detect(query.images, emit)
            if detected:
                provisional = detected
                emit(ScanEvent("detection", f"Strain detected: {detected}"))
                if query.operator_id and self._config.pipeline.check_duplicates:
                    emit(
                        ScanEvent(
                            "progress",
                            "Checking for existing strain...",
                            phase="duplicate_check",
                        )
                    )
                    existing = await self._find_existing(query.operator_id, detected)
                    if existing is not None:
                        logger.info("Known strain %r, skipping generation", existing.name)
                        return ScanSuccess(record=existing, duplicate=True)

        emit(
            ScanEvent(
                "progress", "Generating strain profile...", phase="generation"
            )
        )

        # Stage 1: primary extraction
        outcome = await self._call(
            self._primary_request(query, provisional),
            lambda text: self._parse_primary(text, query, provisional),
        )
        match outcome:
            case Parsed(value=fields):
                pass
            case _:
                reason = describe(outcome)
                logger.warning("Primary extraction failed: %s", reason)
                return ScanFailure(
                    error=reason, fallback=self._fallback(query, provisional)
                )

        # Stage 2: deterministic override from the final name
        bounds = self._config.potency.bounds
        thc_min, thc_max = thc_range(fields.name, bounds)
        thc = thc_midpoint(fields.name, bounds)
        description = rewrite_potency_sentences(fields.description, thc)

        # Stage 3: independent secondary enrichment
        effects, flavors = await asyncio.gather(
            self._secondary("effects", fields),
            self._secondary("flavors", fields),
        )

        # Stage 4: assembly
        record = ProductRecord(
            name=fields.name,
            category=fields.category,
            confidence=fields.confidence,
            thc=thc,
            thc_min=thc_min,
            thc_max=thc_max,
            cbd=fields.cbd,
            effect_profiles=effects,
            flavor_profiles=flavors,
            terpenes=fields.terpenes,
            medical_uses=fields.medical_uses,
            description=description,
            source=query.source,
            operator_id=query.operator_id,
        )

        # Stage 5: best-effort persistence
        await asyncio.to_thread(self._persist, record, query.operator_id)
        return ScanSuccess(record=record)

    async def _call(
        self, request: InferenceRequest, parser: Callable[[str], object]
    ) -> StageOutcome:
        timeout = self._config.inference.timeout
        try:
            raw = await asyncio.wait_for(self._backend.generate(request), timeout)
        except asyncio.TimeoutError:
            return TimedOut(seconds=timeout)
        except InferenceError as e:
            return InferenceFailed(error=str(e))
        except Exception as e:
            logger.exception("Backend error during %s stage", request.stage)
            return InferenceFailed(error=str(e))

        try:
            return Parsed(value=parser(raw))
        except (ValueError, TypeError, AttributeError) as e:
            logger.debug("Unparseable %s response: %r", request.stage, raw)
            return ParseFailure(raw=raw, error=str(e))

    async def _detect(
        self, images: list[bytes], emit: Callable[[ScanEvent], None]
    ) -> str:
        """Name-only pass over each frame; the most confident answer wins."""
        best_name, best_confidence = "", 0.0
        for i, image in enumerate(images, start=1):
            emit(
                ScanEvent(
                    "progress",
                    f"Processing frame {i}/{len(images)}...",
                    phase="analysis",
                )
            )
            outcome = await self._call(
                InferenceRequest(
                    stage="detection",
                    system=prompts.DETECTION_SYSTEM,
                    prompt=prompts.DETECTION_PROMPT,
                    images=[image],
                    max_tokens=300,
                    temperature=0.1,
                ),
                parse_detection,
            )
            match outcome:
                case Parsed(value=(name, confidence)):
                    if name and confidence > best_confidence:
                        best_name, best_confidence = name, confidence
                case _:
                    logger.warning("Frame %d detection failed: %s", i, describe(outcome))

        if best_confidence < self._config.pipeline.min_detection_confidence:
            return ""
        return best_name

    def _primary_request(self, query: ScanQuery, provisional: str) -> InferenceRequest:
        bounds = self._config.potency.bounds
        low, high = thc_range(provisional, bounds)
        system = prompts.PRIMARY_SYSTEM.format(
            low=low, high=high, thc=thc_midpoint(provisional, bounds)
        )
        if query.images:
            hint = f' The label appears to read "{provisional}".' if provisional else ""
            prompt = prompts.PRIMARY_IMAGE_PROMPT.format(hint=hint)
            if query.text.strip():
                prompt += f' Operator note: "{query.text.strip()}".'
            temperature = 0.3
        else:
            prompt = prompts.PRIMARY_TEXT_PROMPT.format(query=query.text.strip())
            temperature = 0.7
        return InferenceRequest(
            stage="primary",
            system=system,
            prompt=prompt,
            images=list(query.images),
            max_tokens=1000,
            temperature=temperature,
        )

    def _parse_primary(
        self, text: str, query: ScanQuery, provisional: str
    ) -> PrimaryFields:
        data = parse_object(text)
        name = data.get("name")
        if query.images and not provisional and not (isinstance(name, str) and name.strip()):
            raise ValueError("no product name identified in the images")
        pc = self._config.pipeline
        return validate_primary(
            data,
            provisional,
            max_effects=pc.max_effects,
            max_flavors=pc.max_flavors,
            max_medical_uses=pc.max_medical_uses,
            max_terpenes=pc.max_terpenes,
        )

    async def _secondary(self, kind: str, fields: PrimaryFields) -> list:
        if kind == "effects":
            table, known, limit = SUPPORTED_EFFECTS, fields.effects, self._config.pipeline.max_effects
        else:
            table, known, limit = SUPPORTED_FLAVORS, fields.flavors, self._config.pipeline.max_flavors

        request = InferenceRequest(
            stage=kind,
            system=prompts.PROFILE_SYSTEM.format(
                kind=kind, supported=", ".join(table), example=next(iter(table))
            ),
            prompt=prompts.PROFILE_PROMPT.format(
                name=fields.name,
                category=fields.category,
                kind=kind,
                known=", ".join(known),
            ),
            max_tokens=600,
            temperature=0.7,
        )
        outcome = await self._call(
            request, lambda text: parse_profiles(text, kind, limit)
        )
        match outcome:
            case Parsed(value=items):
                return items
        logger.warning(
            "%s enrichment for %r fell back to lookup: %s",
            kind,
            fields.name,
            describe(outcome),
        )
        return synthesize(kind, known[:limit])

    async def _find_existing(self, operator_id: str, name: str) -> ProductRecord | None:
        try:
            return await asyncio.to_thread(self._lookup, operator_id, name)
        except (sqlite3.Error, OSError):
            logger.exception("Duplicate check failed for %r", name)
            return None

    def _lookup(self, operator_id: str, name: str) -> ProductRecord | None:
        db = CatalogDB(self._db_path)
        try:
            return db.find_by_name(operator_id, name)
        finally:
            db.close()

    def _persist(self, record: ProductRecord, operator_id: str | None) -> None:
        """Write-through cache and catalog insert; failures are logged only."""
        try:
            cache = ProductCacheDB(self._db_path)
            try:
                key = cache.put(record)
                logger.info("Cached %s", key)
            finally:
                cache.close()
        except (sqlite3.Error, OSError):
            logger.exception("Cache write failed for %r (non-critical)", record.name)

        if not operator_id:
            return
        try:
            catalog = CatalogDB(self._db_path)
            try:
                catalog.insert_record(record, operator_id)
                logger.info("Saved %r for operator %s", record.name, operator_id)
            finally:
                catalog.close()
        except (sqlite3.Error, OSError):
            logger.exception("Catalog insert failed for %r", record.name)

    def _fallback(self, query: ScanQuery, provisional: str) -> ProductRecord:
        name = provisional or query.text.strip() or DEFAULT_NAME
        bounds = self._config.potency.bounds
        thc_min, thc_max = thc_range(name, bounds)
        return ProductRecord(
            name=name,
            category="Hybrid",
            confidence=0,
            thc=thc_midpoint(name, bounds),
            thc_min=thc_min,
            thc_max=thc_max,
            effect_profiles=synthesize("effects", ["Unknown"]),
            flavor_profiles=synthesize("flavors", ["Unknown"]),
            medical_uses=["Consult Professional"],
            description=_FALLBACK_IMAGE if query.images else _FALLBACK_TEXT,
            source=query.source,
            operator_id=query.operator_id,
        )
