#!/usr/bin/env python3
"""
Move a client's cached responses between its plain and compressed namespaces.

Run it after flipping a client's ``compression_enabled`` so the records
cached under the old encoding stay reachable. Use ``--validate`` afterwards
to re-check the converted records against their sources.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Dict

from shared.config import ApiCacheSettings, get_settings
from shared.logging import configure_logging
from service_api_cache.app.caching.converter import DEFAULT_BATCH_SIZE
from service_api_cache.app.factory import build_cache_manager


async def convert(
    settings: ApiCacheSettings,
    client: str,
    *,
    compress: bool = True,
    batch_size: int = DEFAULT_BATCH_SIZE,
    overwrite: bool = False,
    validate_only: bool = False,
) -> Dict[str, object]:
    """Convert (or only validate) one client's records and return the summary."""
    manager = build_cache_manager(settings)
    try:
        converter = manager.converter(client, compress, batch_size=batch_size, overwrite=overwrite)
        if validate_only:
            stats = await converter.validate_all()
        else:
            stats = await converter.convert_all()
    finally:
        await manager.close()

    return {
        "mode": "validate" if validate_only else ("compress" if compress else "decompress"),
        "backend": manager.cache_store.backend_id,
        **converter.summary(stats),
    }


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Convert cached API responses between plain and compressed storage.")
    parser.add_argument("client", help="Configured client to convert")
    parser.add_argument("--decompress", action="store_true", help="Move records from the compressed namespace back to plain")
    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE, help="Records per batch")
    parser.add_argument("--overwrite", action="store_true", help="Replace records already present in the target")
    parser.add_argument("--validate", action="store_true", help="Only validate previously converted records")
    parser.add_argument("--clients-file", type=Path, default=None, help="YAML clients file overriding API_CACHE_CLIENTS_FILE")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    settings = get_settings()
    if args.clients_file:
        settings = settings.model_copy(update={"clients_file": str(args.clients_file)})
    configure_logging("api-cache-convert", settings.log_level)

    try:
        summary = asyncio.run(convert(
            settings,
            args.client,
            compress=not args.decompress,
            batch_size=args.batch_size,
            overwrite=args.overwrite,
            validate_only=args.validate,
        ))
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[cache-convert] failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(summary, indent=2))
    return 0 if not summary.get("error_count") and not summary.get("mismatch_count") else 2


if __name__ == "__main__":
    raise SystemExit(main())
