"""CLI entry point for the package scanner."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .camera import DeviceError, OpenCVCaptureDevice
from .config import load_config
from .db import CatalogDB
from .duplicates import find_groups
from .enrichment import EnrichmentPipeline, ScanQuery
from .inference import create_backend
from .models import ProductRecord, ScanFailure, ScanSession, StabilityMetrics
from .potency import thc_midpoint, thc_range
from .session import ScanSessionManager
from .stability import StabilityAssessor

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="doobiedb-scanner",
        description="Identify packaged products from a camera or text and enrich them for the catalog",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to the TOML config file",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    sub = parser.add_subparsers(dest="command")

    # cameras
    sub.add_parser("cameras", help="List available cameras")

    # identify
    identify_parser = sub.add_parser(
        "identify", help="Identify one product from text or image files"
    )
    group = identify_parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--text", type=str, help="Product name or description")
    group.add_argument("--image", type=str, nargs="+", help="JPEG image files")
    identify_parser.add_argument(
        "--voice", action="store_true", help="Mark the text as a voice transcript"
    )
    identify_parser.add_argument("--operator", type=str, default=None)
    identify_parser.add_argument("--json", action="store_true", help="Output JSON")

    # scan
    scan_parser = sub.add_parser("scan", help="Continuous scan session on the camera")
    scan_parser.add_argument("--operator", type=str, default=None)
    scan_parser.add_argument(
        "--duration",
        type=float,
        default=None,
        metavar="SECONDS",
        help="End the session after this many seconds (default: until Ctrl-C)",
    )

    # range
    range_parser = sub.add_parser("range", help="Print the deterministic THC range")
    range_parser.add_argument("names", nargs="+")

    # dedupe
    dedupe_parser = sub.add_parser(
        "dedupe", help="Find duplicate records in an operator's catalog"
    )
    dedupe_parser.add_argument("--operator", type=str, required=True)
    dedupe_parser.add_argument("--json", action="store_true", help="Output JSON")
    dedupe_parser.add_argument(
        "--delete", action="store_true", help="Delete every member but the first"
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
    )

    try:
        config = load_config(args.config)
    except ValueError as e:
        print(f"Config error: {e}", file=sys.stderr)
        sys.exit(2)

    match args.command:
        case "cameras":
            _cmd_cameras()
        case "identify":
            asyncio.run(_cmd_identify(config, args))
        case "scan":
            try:
                asyncio.run(_cmd_scan(config, args))
            except KeyboardInterrupt:
                pass
        case "range":
            _cmd_range(config, args)
        case "dedupe":
            _cmd_dedupe(config, args)


def _cmd_cameras() -> None:
    cameras = OpenCVCaptureDevice.list_cameras()
    if not cameras:
        print("No cameras found.")
        return
    print(f"Available cameras: {len(cameras)}")
    for idx in cameras:
        print(f"  camera {idx}")


def _print_record(record: ProductRecord) -> None:
    print(f"  {record.name}  [{record.category}]  confidence {record.confidence:.0f}%")
    print(f"  THC {record.thc}% (range {record.thc_min}-{record.thc_max}%)  CBD {record.cbd}%")
    if record.effect_profiles:
        effects = ", ".join(f"{p.emoji} {p.name} {p.intensity}/5" for p in record.effect_profiles)
        print(f"  effects: {effects}")
    if record.flavor_profiles:
        flavors = ", ".join(f"{p.emoji} {p.name} {p.intensity}/5" for p in record.flavor_profiles)
        print(f"  flavors: {flavors}")
    if record.medical_uses:
        print(f"  medical: {', '.join(record.medical_uses)}")
    print(f"  {record.description}")


async def _cmd_identify(config, args) -> None:
    if args.image:
        images = [Path(p).read_bytes() for p in args.image]
        query = ScanQuery.from_images(images, operator_id=args.operator)
    else:
        query = ScanQuery.from_text(
            args.text, voice=args.voice, operator_id=args.operator
        )

    pipeline = EnrichmentPipeline(create_backend(config), config)

    result = None
    async for event in pipeline.identify_stream(query):
        if event.type in ("progress", "detection") and not args.json:
            print(f"… {event.message}")
        result = event.result

    if args.json:
        if isinstance(result, ScanFailure):
            data = {"error": result.error, "fallback": result.fallback.to_dict()}
        else:
            data = {"duplicate": result.duplicate, "record": result.record.to_dict()}
        print(json.dumps(data, ensure_ascii=False, indent=2))
        return

    if isinstance(result, ScanFailure):
        print(f"Identification failed: {result.error}", file=sys.stderr)
        _print_record(result.fallback)
        sys.exit(1)
    if result.duplicate:
        print("Already in the catalog:")
    _print_record(result.record)


async def _cmd_scan(config, args) -> None:
    pipeline = EnrichmentPipeline(create_backend(config), config)
    device = OpenCVCaptureDevice(
        camera_index=config.camera.index,
        width=config.camera.width,
        height=config.camera.height,
    )
    last_recommendation = ""

    def on_stability(metrics: StabilityMetrics) -> None:
        nonlocal last_recommendation
        if metrics.recommendation != last_recommendation:
            last_recommendation = metrics.recommendation
            print(metrics.recommendation)

    def on_update(event: str, session: ScanSession) -> None:
        if event == "scan_added":
            record = session.scans[-1]
            print(f"📦 {record.name} ({record.category}, THC {record.thc}%)")

    sc = config.session
    manager = ScanSessionManager(
        device,
        pipeline,
        assessor=StabilityAssessor(),
        operator_id=args.operator,
        stability_interval=sc.stability_interval,
        submission_interval=sc.submission_interval,
        burst_size=sc.burst_size,
        retry_delay=sc.retry_delay,
        on_update=on_update,
        on_stability=on_stability,
    )

    try:
        session = manager.start()
    except DeviceError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    print("Scanning. Press Ctrl-C to finish.")
    try:
        if args.duration is not None:
            await asyncio.sleep(args.duration)
        else:
            await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        manager.end()
        await manager.wait_in_flight()

    stats = session.stats()
    print(f"\nSession {session.id}: {stats['count']} scan(s) in {stats['duration']}")
    for record in session.scans:
        print(f"  - {record.name}")
    if session.needs_selection:
        print("Several products were scanned; pick the one to keep.")


def _cmd_range(config, args) -> None:
    bounds = config.potency.bounds
    for name in args.names:
        low, high = thc_range(name, bounds)
        print(f"{name}: {low}-{high}% (midpoint {thc_midpoint(name, bounds)}%)")


def _cmd_dedupe(config, args) -> None:
    db = CatalogDB(config.database.path)
    try:
        records = db.list_records(args.operator)
        groups = find_groups(records, config.duplicates.weights)

        if args.json:
            data = [
                {
                    "anchor": g.anchor_name,
                    "similarity": g.similarity,
                    "members": [{"id": m.id, "name": m.name} for m in g.members],
                }
                for g in groups
            ]
            print(json.dumps(data, ensure_ascii=False, indent=2))
        elif not groups:
            print(f"No duplicates among {len(records)} record(s).")
        else:
            print(f"{len(groups)} duplicate group(s):")
            for g in groups:
                print(f"  {g.anchor_name} ({g.similarity}%)")
                for m in g.members[1:]:
                    print(f"    - {m.name}  [{m.id}]")

        if args.delete and groups:
            ids = [m.id for g in groups for m in g.members[1:]]
            deleted = db.delete_records(ids)
            print(f"Deleted {deleted} record(s).", file=sys.stderr)
    finally:
        db.close()
