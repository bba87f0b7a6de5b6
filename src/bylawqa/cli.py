"""bylawqa CLI — search and verification-store seeding commands."""

import asyncio
import sys
from pathlib import Path


def _configure_logging() -> None:
    from bylawqa.config import settings
    from bylawqa.observability import setup_logging

    setup_logging(json_format=False, level=settings.log_level)


def search_main() -> None:
    """Run a verified bylaw search: bylawqa-search <query>"""
    _configure_logging()

    if len(sys.argv) < 2:
        print("Usage: bylawqa-search <query>")
        print('  Example: bylawqa-search "What does Bylaw No. 4742 say about tree removal?"')
        sys.exit(1)

    query = " ".join(sys.argv[1:])

    async def _run():
        from bylawqa.config import settings
        from bylawqa.observability import new_correlation_id
        from bylawqa.pipeline.service import BylawSearchService

        new_correlation_id()
        async with BylawSearchService(settings) as service:
            results = await service.search(query)

        print(f"\nFound {len(results)} results for: {query}\n")
        for i, r in enumerate(results, 1):
            status = "verified" if r.is_verified else "unverified"
            print(f"--- Result {i} (score={r.score:.4f}, {status}) ---")
            print(f"Bylaw {r.bylaw_number}: {r.title}")
            if r.section:
                print(f"Section: {r.section}" + (f" — {r.section_title}" if r.section_title else ""))
            print(f"Source: {r.official_url or r.pdf_path}")
            print(f"Text: {r.content[:300]}...")
            print()

    asyncio.run(_run())


def init_verification_main() -> None:
    """Seed the verification store from the PDF directory: bylawqa-init-verification [pdf_dir]"""
    _configure_logging()

    if sys.argv[1:] == ["--help"]:
        print("Usage: bylawqa-init-verification [pdf_dir]")
        print("  Creates one verified bylaw record per numbered PDF. Existing records are kept.")
        sys.exit(0)

    async def _run() -> int:
        from bylawqa.config import settings
        from bylawqa.storage.db import Database
        from bylawqa.storage.verification import VerificationStore

        pdf_dir = Path(sys.argv[1]) if len(sys.argv) > 1 else settings.pdf_dir
        db = Database(
            settings.database_url,
            embedding_dim=settings.embedding_dim,
            require_ssl=settings.database_require_ssl,
        )
        try:
            await db.init()
            store = VerificationStore(db)
            return await store.initialize_from_directory(pdf_dir, settings.official_url_template)
        finally:
            await db.aclose()

    try:
        created = asyncio.run(_run())
    except FileNotFoundError as e:
        print(str(e))
        sys.exit(1)
    print(f"\nCreated {created} verified bylaw records")
