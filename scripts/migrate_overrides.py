#!/usr/bin/env python3
"""Backfill reviewed-answer overrides.

Recomputes each override's lookup key from its question and embeds any
question that has no stored embedding yet. Safe to run repeatedly.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.database import DatabaseConfig, close_database, initialize_database
from config.settings import Settings
from indexer.embeddings import EmbeddingClient
from observability.logging import setup_logging
from services.overrides import OverrideStore

logger = logging.getLogger(__name__)


async def migrate(settings: Settings, page_size: int = 200) -> dict:
    adapter = await initialize_database(DatabaseConfig(sqlite_path=settings.sqlite_path))
    try:
        embedder = EmbeddingClient(
            api_key=settings.require_openai_key(),
            model=settings.embedding_model,
            dimensions=settings.embedding_dim,
            timeout=settings.request_timeout,
        )
        store = OverrideStore(adapter, embedder)
        return await store.backfill(page_size=page_size)
    finally:
        await close_database()


def main():
    parser = argparse.ArgumentParser(description="Backfill override lookup keys and question embeddings")
    parser.add_argument("--page-size", type=int, default=200, help="Overrides read per page")
    args = parser.parse_args()

    settings = Settings.from_env()
    setup_logging(level=settings.log_level, use_json=settings.log_json)

    try:
        stats = asyncio.run(migrate(settings, page_size=args.page_size))
    except Exception as e:
        logger.error(f"Override migration failed: {e}")
        sys.exit(1)

    print(json.dumps(stats, indent=2))
    if stats["failed"]:
        sys.exit(2)


if __name__ == "__main__":
    main()
