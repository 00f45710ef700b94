"""
Seed script: imports (reseeds) a control catalog from a JSON or YAML file.
Run: cd backend && python ../scripts/seed_catalog.py [path/to/catalog.json] [--name default]

Without a path the file at CATALOG_PATH is used.
"""
import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

# Ensure backend is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "backend"))
os.chdir(str(Path(__file__).resolve().parent.parent / "backend"))

from compliance_engine.config import settings  # noqa: E402
from compliance_engine.database import async_session, engine  # noqa: E402
from compliance_engine.services.catalog_import import import_catalog  # noqa: E402
from compliance_engine.services.errors import CatalogNotFound  # noqa: E402


async def seed(path: str, name: str) -> int:
    try:
        report = await import_catalog(async_session, path, catalog_name=name)
    except CatalogNotFound as e:
        print(f"Catalog not imported: {e}")
        return 1
    finally:
        await engine.dispose()

    print(f"Catalog '{report.catalog_name}' (id={report.catalog_id}, generation {report.generation})")
    print(f"  controls:  {report.imported}")
    print(f"  CCIs:      {report.cci_count}")
    print(f"  relations: {report.relation_count}")
    if report.errors:
        print(f"  {len(report.errors)} issue(s):")
        for issue in report.errors:
            print(f"    [{issue.kind}] {issue.message}")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Import a control catalog")
    parser.add_argument("path", nargs="?", default=settings.CATALOG_PATH)
    parser.add_argument("--name", default="default", help="catalog name (default: %(default)s)")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(levelname)s %(name)s: %(message)s")
    sys.exit(asyncio.run(seed(args.path, args.name)))
