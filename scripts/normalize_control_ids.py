"""
Maintenance script: rewrites stored control ids ("AC-2 (1)") to canonical form ("AC-2(1)")
on findings, package baselines and official determinations.
Run: cd backend && python ../scripts/normalize_control_ids.py
"""
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
from compliance_engine.services.maintenance import renormalize_control_ids  # noqa: E402


async def normalize() -> None:
    try:
        async with async_session() as s:
            result = await renormalize_control_ids(s)
            await s.commit()
    finally:
        await engine.dispose()

    print(f"Updated {result['findings']} findings")
    print(f"Updated {result['baselines']} baseline rows")
    print(f"Updated {result['overrides']} official determinations")
    print(f"Removed {result['duplicates_removed']} duplicate rows")


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(normalize())
