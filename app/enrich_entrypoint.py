"""Enrichment entrypoint - one-shot cold load and AI enrichment from the shell.

Usage:
    python -m app.enrich_entrypoint            # CEX and DEX
    python -m app.enrich_entrypoint cex        # CEX only
    python -m app.enrich_entrypoint dex        # DEX only
"""

import asyncio
import sys
from typing import Dict, List

from app.core.config import DatasetKind
from app.core.logging import get_logger
from app.main import build_service
from app.services.enhancement import EnhancementService

logger = get_logger("enrich_entrypoint")


async def run_enrichment(service: EnhancementService, kinds: List[DatasetKind]) -> Dict[str, dict]:
    """Load each dataset, wait for its background run and report the outcome."""
    results: Dict[str, dict] = {}
    for kind in kinds:
        try:
            page = await service.get_page(kind, 1, 10)
        except Exception as exc:  # noqa: BLE001
            logger.error(f"{kind.upper()} metadata load failed: {exc}")
            results[kind] = {"success": False, "error": str(exc)}
            continue

        logger.info(f"{kind.upper()}: {page.total} entities loaded, waiting for AI enrichment...")
        await service.jobs.wait()

        status = service.get_status(kind)
        results[kind] = {
            "success": True,
            "enhanced": status.enhanced_count,
            "total": status.total_count,
            "last_error": status.last_error,
        }
        logger.info(f"{kind.upper()} done: {status.enhanced_count}/{status.total_count} enhanced")
    return results


def main():
    """Main entry point for one-shot enrichment."""
    kinds: List[DatasetKind] = ["cex", "dex"]
    if len(sys.argv) > 1:
        kind = sys.argv[1]
        if kind not in ("cex", "dex"):
            logger.error(f"Invalid dataset: {kind}. Must be one of: cex, dex")
            sys.exit(1)
        kinds = [kind]  # type: ignore[list-item]

    results = asyncio.run(run_enrichment(build_service(), kinds))
    logger.info(f"Enrichment completed: {results}")

    if any(not r.get("success", False) for r in results.values()):
        sys.exit(1)
    return results


if __name__ == "__main__":
    main()
