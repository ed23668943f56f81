#!/usr/bin/env python3
"""Bulk-import a directory of text and markdown files into the knowledge base.

Each file becomes one document: the file name (without extension) is the
title, the relative directory names become extra tags, and the content is
chunked and embedded with the same ingestor the API uses.

Usage:
    # Preview what would be imported
    python scripts/import_docs.py --dir docs/ --category Atlas --dryrun

    # Import with extra tags and a custom chunk size
    python scripts/import_docs.py --dir docs/ --category Atlas --tags search,vector --chunk 800

Environment variables:
    DATABASE_URL: Target database (asyncpg URL)
    OPENAI_API_KEY: Required unless --dryrun is set
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path for imports
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

env_path = project_dir / ".env"
if env_path.exists():
    load_dotenv(env_path)

from lab_assistant.api.deps import build_services
from lab_assistant.core.config import get_settings
from lab_assistant.core.database import async_session_maker, engine
from lab_assistant.knowledge.errors import KnowledgeError
from lab_assistant.knowledge.models import ChunkingConfig
from lab_assistant.observability import get_metrics_backend

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".md", ".txt", ".markdown", ".mdx"}


def find_files(root: Path) -> list[Path]:
    """Return supported files under ``root``, sorted for a stable import order."""
    return sorted(
        path
        for path in root.rglob("*")
        if path.is_file() and path.suffix.lower() in SUPPORTED_EXTENSIONS
    )


def tags_for(path: Path, root: Path, user_tags: list[str]) -> list[str]:
    """Combine user tags with the file's relative directory names, first seen wins."""
    path_tags = [part.strip() for part in path.relative_to(root).parent.parts if part.strip()]
    return list(dict.fromkeys(user_tags + path_tags))


async def import_documents(
    root: Path,
    category: str,
    tags: list[str],
    chunking: ChunkingConfig,
    author: str,
    dry_run: bool = False,
) -> dict:
    """Import every supported file under ``root``.

    Each file is committed on its own, so one failure does not undo the rest.

    Returns:
        Summary dict with counts.
    """
    summary = {"files": 0, "imported": 0, "chunks": 0, "errors": 0}

    files = find_files(root)
    summary["files"] = len(files)
    logger.info(f"Found {len(files)} supported files")

    services = None
    if not dry_run:
        services = build_services(get_settings(), async_session_maker, get_metrics_backend())

    for position, path in enumerate(files, start=1):
        relative = path.relative_to(root)
        title = path.stem
        file_tags = tags_for(path, root, tags)
        content = path.read_text(encoding="utf-8", errors="replace")

        logger.info(f"[{position}/{len(files)}] {relative}")
        logger.info(f"  Title: {title}")
        logger.info(f"  Tags: {', '.join(file_tags) or '-'}")
        logger.info(f"  Content length: {len(content)} characters")

        if dry_run:
            logger.info("  [DRY RUN] Document would be created")
            continue

        async with async_session_maker() as session:
            try:
                document = await services.ingestor.ingest(
                    session,
                    title=title,
                    content=content,
                    chunking=chunking,
                    category=category,
                    tags=file_tags,
                    author=author,
                    source=str(relative),
                )
                await session.commit()
            except KnowledgeError as e:
                await session.rollback()
                summary["errors"] += 1
                logger.error(f"  Failed: {e.kind}: {e.message}")
                continue
            except SQLAlchemyError as e:
                await session.rollback()
                summary["errors"] += 1
                logger.error(f"  Failed: database error: {e}")
                continue

        summary["imported"] += 1
        summary["chunks"] += document.chunk_count
        logger.info(f"  Created document id={document.id} with {document.chunk_count} chunks")

    await engine.dispose()
    return summary


def main():
    parser = argparse.ArgumentParser(
        description="Import text and markdown files into the knowledge base."
    )
    parser.add_argument("--dir", required=True, type=Path, help="Directory to scan recursively")
    parser.add_argument("--category", required=True, help="Category for the documents")
    parser.add_argument("--tags", default="", help="Comma-separated list of tags")
    parser.add_argument("--chunk", type=int, default=1000, help="Chunk size in characters (default: 1000)")
    parser.add_argument("--overlap", type=int, default=200, help="Overlap in characters (default: 200)")
    parser.add_argument("--author", default="System Import", help="Author name (default: System Import)")
    parser.add_argument("--dryrun", action="store_true", help="Preview without writing anything")
    args = parser.parse_args()

    if not args.dir.is_dir():
        logger.error(f"Directory {args.dir} does not exist")
        sys.exit(1)

    user_tags = [tag.strip() for tag in args.tags.split(",") if tag.strip()]

    logger.info("=" * 60)
    logger.info("Document Import")
    logger.info("=" * 60)
    logger.info(f"Directory: {args.dir}")
    logger.info(f"Category: {args.category}")
    logger.info(f"Chunk size: {args.chunk}, overlap: {args.overlap}")
    logger.info(f"MODE: {'Dry-run' if args.dryrun else 'LIVE'}")
    logger.info("-" * 60)

    summary = asyncio.run(
        import_documents(
            args.dir,
            category=args.category,
            tags=user_tags,
            chunking=ChunkingConfig(chunk_size=args.chunk, overlap=args.overlap),
            author=args.author,
            dry_run=args.dryrun,
        )
    )

    logger.info("-" * 60)
    logger.info(f"  Files found: {summary['files']}")
    logger.info(f"  Documents imported: {summary['imported']}")
    logger.info(f"  Chunks created: {summary['chunks']}")
    logger.info(f"  Errors: {summary['errors']}")
    logger.info("=" * 60)

    if summary["errors"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
