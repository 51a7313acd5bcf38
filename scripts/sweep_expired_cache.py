#!/usr/bin/env python3
"""
Delete expired cache records for one or all configured API clients.

Expired records are already invisible to readers; this sweep reclaims their
storage. Run it from cron or a CI job with the same API_CACHE_* environment
the service uses.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

from shared.config import ApiCacheSettings, get_settings
from shared.logging import configure_logging
from service_api_cache.app.factory import build_cache_manager


async def sweep(settings: ApiCacheSettings, clients: Optional[List[str]], dry_run: bool) -> Dict[str, object]:
    """Sweep (or count, when ``dry_run``) expired records and return the summary."""
    manager = build_cache_manager(settings)
    names = clients or manager.registry.names()
    results: Dict[str, int] = {}

    try:
        for name in names:
            if dry_run:
                results[name] = await manager.cache_store.count_expired(manager.namespace(name))
            else:
                results.update(await manager.delete_expired(name))
    finally:
        await manager.close()

    return {
        "dry_run": dry_run,
        "backend": manager.cache_store.backend_id,
        "expired" if dry_run else "deleted": results,
        "total": sum(results.values()),
    }


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete expired API cache records.")
    parser.add_argument("--client", action="append", dest="clients", help="Client to sweep (repeatable); defaults to all")
    parser.add_argument("--clients-file", type=Path, default=None, help="YAML clients file overriding API_CACHE_CLIENTS_FILE")
    parser.add_argument("--dry-run", action="store_true", help="Only count expired records; delete nothing")
    parser.add_argument("--output", type=Path, default=None, help="Optional path to write JSON summary")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    settings = get_settings()
    if args.clients_file:
        settings = settings.model_copy(update={"clients_file": str(args.clients_file)})
    configure_logging("api-cache-sweep", settings.log_level)

    try:
        summary = asyncio.run(sweep(settings, args.clients, args.dry_run))
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[cache-sweep] failed: {exc}", file=sys.stderr)
        return 1

    if args.dry_run:
        print("[cache-sweep] DRY RUN - no records deleted")

    print(json.dumps(summary, indent=2))

    if args.output:
        args.output.write_text(json.dumps(summary, indent=2))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
