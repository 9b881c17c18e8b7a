"""
merchantgeo CLI entrypoint.

Quick local access to the geocoding chain and the geometry helpers, mostly for
debugging provider configuration. Every subcommand prints JSON to stdout.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from merchantgeo.config.settings import get_settings
from merchantgeo.core import wkb
from merchantgeo.core.errors import MerchantGeoError, ValidationError
from merchantgeo.core.geo import Point, bounding_box, haversine_distance_km, validate_coordinates
from merchantgeo.core.logging import configure_logging
from merchantgeo.domain.models import Merchant
from merchantgeo.geocoding.manager import build_geocoding_manager
from merchantgeo.spatial.search import build_spatial_index, find_nearest


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _read_input(path: str) -> str:
    """Read a UTF-8 input file, or stdin for "-"."""
    if path == "-":
        return sys.stdin.read()
    with open(path, encoding="utf-8") as fh:
        return fh.read()


def _cmd_geocode(args: argparse.Namespace) -> int:
    settings = get_settings()
    manager = build_geocoding_manager(settings)
    address = manager.validate_and_normalize_address(args.address)

    if args.retry:
        retry = settings.geocoding.retry
        min_accuracy = args.min_accuracy if args.min_accuracy is not None else retry.min_accuracy
        result = manager.geocode_with_retry(address, min_accuracy, retry.max_retries)
    else:
        result = manager.geocode(address, deadline_seconds=args.deadline)

    _print_json(result.model_dump(mode="json"))
    return 0


def _cmd_reverse(args: argparse.Namespace) -> int:
    validate_coordinates(args.lng, args.lat)
    manager = build_geocoding_manager(get_settings())
    result = manager.reverse_geocode(args.lng, args.lat)
    _print_json(result.model_dump(mode="json"))
    return 0


def _cmd_batch(args: argparse.Namespace) -> int:
    manager = build_geocoding_manager(get_settings())
    lines = _read_input(args.file).splitlines()
    addresses = [line.strip() for line in lines if line.strip()]

    results = manager.batch_geocode(addresses, deadline_seconds=args.deadline)
    _print_json([r.model_dump(mode="json") for r in results])
    return 0


def _cmd_distance(args: argparse.Namespace) -> int:
    validate_coordinates(args.lng1, args.lat1)
    validate_coordinates(args.lng2, args.lat2)
    km = haversine_distance_km(args.lng1, args.lat1, args.lng2, args.lat2)
    _print_json({"distance_km": km})
    return 0


def _cmd_bbox(args: argparse.Namespace) -> int:
    validate_coordinates(args.lng, args.lat)
    min_lng, min_lat, max_lng, max_lat = bounding_box(args.lng, args.lat, args.radius_km)
    _print_json({"min_lng": min_lng, "min_lat": min_lat, "max_lng": max_lng, "max_lat": max_lat})
    return 0


def _cmd_encode(args: argparse.Namespace) -> int:
    point = Point(lng=args.lng, lat=args.lat)
    data = wkb.encode(point)
    _print_json({"point": wkb.to_string(point), "wkb_hex": data.hex() if data is not None else None})
    return 0


def _cmd_decode(args: argparse.Namespace) -> int:
    point = wkb.decode(args.hex)
    _print_json({"lng": point.lng, "lat": point.lat, "point": wkb.to_string(point)})
    return 0


def _load_merchants(path: str) -> list[Merchant]:
    text = _read_input(path)
    try:
        raw = json.loads(text)
        if not isinstance(raw, list):
            raise ValueError("expected a JSON array of merchants")
        return [Merchant.model_validate(item) for item in raw]
    except ValueError as exc:
        raise ValidationError(f"invalid merchants file {path}: {exc}") from exc


def _cmd_nearby(args: argparse.Namespace) -> int:
    validate_coordinates(args.lng, args.lat)
    settings = get_settings()
    radius_km = args.radius_km if args.radius_km is not None else settings.spatial.nearest_radius_km

    # Grid lookup narrows the candidates; find_nearest ranks and trims them.
    index = build_spatial_index(settings, _load_merchants(args.file))
    candidates = index.find_nearby(args.lng, args.lat, radius_km)
    hits = find_nearest(candidates, args.lng, args.lat, args.limit, radius_km=radius_km, settings=settings)

    _print_json([{"id": h.item.id, "title": h.item.title, "distance_km": h.distance_km} for h in hits])
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the merchantgeo CLI."""
    parser = argparse.ArgumentParser(prog="merchantgeo")
    parser.add_argument("--log-level", default=None, help="Override the configured log level.")
    sub = parser.add_subparsers(dest="command", required=True)

    geo = sub.add_parser("geocode", help="Geocode one address through the provider chain.")
    geo.add_argument("address")
    geo.add_argument("--retry", action="store_true", help="Retry until the configured accuracy is reached.")
    geo.add_argument("--min-accuracy", type=float, default=None, help="0..1; only with --retry")
    geo.add_argument("--deadline", type=float, default=None, help="Give up after this many seconds.")
    geo.set_defaults(func=_cmd_geocode)

    rev = sub.add_parser("reverse", help="Reverse geocode a coordinate pair.")
    rev.add_argument("--lng", required=True, type=float)
    rev.add_argument("--lat", required=True, type=float)
    rev.set_defaults(func=_cmd_reverse)

    batch = sub.add_parser("batch", help="Geocode one address per line from a file ('-' for stdin).")
    batch.add_argument("file")
    batch.add_argument("--deadline", type=float, default=None, help="Overall time budget in seconds.")
    batch.set_defaults(func=_cmd_batch)

    dist = sub.add_parser("distance", help="Great-circle distance in km between two points.")
    dist.add_argument("--lng1", required=True, type=float)
    dist.add_argument("--lat1", required=True, type=float)
    dist.add_argument("--lng2", required=True, type=float)
    dist.add_argument("--lat2", required=True, type=float)
    dist.set_defaults(func=_cmd_distance)

    box = sub.add_parser("bbox", help="Bounding box around a center point.")
    box.add_argument("--lng", required=True, type=float)
    box.add_argument("--lat", required=True, type=float)
    box.add_argument("--radius-km", required=True, type=float)
    box.set_defaults(func=_cmd_bbox)

    enc = sub.add_parser("encode", help="Encode a point as WKB hex.")
    enc.add_argument("--lng", required=True, type=float)
    enc.add_argument("--lat", required=True, type=float)
    enc.set_defaults(func=_cmd_encode)

    dec = sub.add_parser("decode", help="Decode a WKB hex point.")
    dec.add_argument("hex")
    dec.set_defaults(func=_cmd_decode)

    near = sub.add_parser("nearby", help="Nearest merchants from a JSON array file ('-' for stdin).")
    near.add_argument("file")
    near.add_argument("--lng", required=True, type=float)
    near.add_argument("--lat", required=True, type=float)
    near.add_argument("--radius-km", type=float, default=None, help="Defaults to spatial.nearest_radius_km.")
    near.add_argument("--limit", type=int, default=None, help="Defaults to spatial.nearest_limit.")
    near.set_defaults(func=_cmd_nearby)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m merchantgeo.cli`."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    func: Any = getattr(args, "func")
    try:
        return int(func(args))
    except (MerchantGeoError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
