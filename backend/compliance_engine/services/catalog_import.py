"""
Catalog Import Service — reseeds a control catalog from a JSON/YAML source.

Source format (one object per control, keyed by raw control id):

  {
    "AC-2 (1)": {
      "name": "Automated System Account Management",
      "controlText": "...",
      "discussion": "...",
      "relatedControls": ["AC-3", "AU-2"],
      "ccis": [{"cci": "CCI-000015", "definition": "..."}]
    }
  }

Phases:
  1. clear:     CCI links, relations, then controls of this catalog (one transaction)
  2. controls:  one row per entry, id normalized
  3. ccis:      one link per (control, CCI)
  4. relations: best effort; dangling or duplicate edges are skipped, and each
               edge is written under its own savepoint so one rejected edge
               does not undo the rest of its batch

Phases 2..4 run in fixed-size batches, one transaction per batch.

A failed or timed-out batch is rolled back and recorded; earlier batches stay
committed and later batches still run. There is no retry: re-running the import
(which starts with a clear) is the recovery path.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO

import yaml
from pydantic import ValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from compliance_engine.config import settings
from compliance_engine.models.catalog import Catalog, Control, ControlCci, ControlRelation
from compliance_engine.schemas.catalog import CatalogEntry
from compliance_engine.services.control_ids import canonical_control_id, control_family
from compliance_engine.services.errors import CatalogNotFound

log = logging.getLogger(__name__)

DEFAULT_CATALOG_NAME = "default"


@dataclass
class ImportIssue:
    """Non-fatal problem recorded during an import."""
    kind: str
    message: str
    phase: str | None = None
    batch: int | None = None
    control_id: str | None = None


@dataclass
class ImportReport:
    """Result of a catalog import. Counts are read back after commit."""
    catalog_name: str
    catalog_id: int | None = None
    generation: int = 0
    imported: int = 0
    cci_count: int = 0
    relation_count: int = 0
    errors: list[ImportIssue] = field(default_factory=list)


BatchFn = Callable[[AsyncSession, list[str]], Awaitable[list[ImportIssue]]]


# ═══════════════════════════════════════════════
# SOURCE LOADING
# ═══════════════════════════════════════════════

def load_catalog_source(
    source: Mapping[str, Any] | str | Path | bytes | BinaryIO,
    name: str | None = None,
) -> tuple[dict[str, Any], str | None]:
    """Read a catalog source. Returns (raw mapping, source name).

    Raises CatalogNotFound when the source is missing, unreadable or not a
    mapping of control id -> entry.
    """
    if isinstance(source, Mapping):
        return dict(source), name

    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.is_file():
            raise CatalogNotFound(f"Catalog file not found at: {path}")
        try:
            content = path.read_bytes()
        except OSError as e:
            raise CatalogNotFound(f"Catalog file unreadable: {path}: {e}") from e
        name = path.name
    elif isinstance(source, bytes):
        content = source
    else:
        content = source.read()
        if name is None and isinstance(getattr(source, "name", None), str):
            name = source.name

    data = _parse_catalog_content(content, name)
    if not isinstance(data, dict) or not data:
        raise CatalogNotFound("Catalog source is empty or not a mapping of control id -> entry")
    return data, name


def _parse_catalog_content(content: bytes | str, name: str | None) -> Any:
    try:
        if isinstance(content, bytes):
            content = content.decode("utf-8")
        if name and name.lower().endswith((".yaml", ".yml")):
            return yaml.safe_load(content)
        try:
            return json.loads(content)
        except json.JSONDecodeError:
            return yaml.safe_load(content)
    except (UnicodeDecodeError, yaml.YAMLError) as e:
        raise CatalogNotFound(f"Catalog source unreadable: {e}") from e


def _validate_entries(raw: dict[str, Any], issues: list[ImportIssue]) -> dict[str, CatalogEntry]:
    """Normalize ids and validate entries; bad entries are reported and dropped."""
    entries: dict[str, CatalogEntry] = {}
    for raw_id, data in raw.items():
        control_id = canonical_control_id(raw_id)
        if not control_id:
            issues.append(ImportIssue("InvalidEntry", f"Empty control id {raw_id!r}", phase="validate"))
            continue
        if control_id in entries:
            issues.append(ImportIssue(
                "DuplicateControl",
                f"{raw_id!r} normalizes to {control_id}, which is already in the catalog",
                phase="validate", control_id=control_id,
            ))
            continue
        try:
            entries[control_id] = CatalogEntry.model_validate(data)
        except ValidationError as e:
            issues.append(ImportIssue(
                "InvalidEntry", f"Control {control_id}: {e.error_count()} validation error(s): {e}",
                phase="validate", control_id=control_id,
            ))
    return entries


# ═══════════════════════════════════════════════
# IMPORT
# ═══════════════════════════════════════════════

async def import_catalog(
    session_factory: async_sessionmaker[AsyncSession],
    source: Mapping[str, Any] | str | Path | bytes | BinaryIO,
    *,
    catalog_name: str = DEFAULT_CATALOG_NAME,
    activate: bool = True,
    batch_size: int | None = None,
    batch_timeout: float | None = None,
    max_concurrent_batches: int | None = None,
    keep_dangling_relations: bool | None = None,
    source_name: str | None = None,
) -> ImportReport:
    """Rebuild one catalog from `source` and return the import report."""
    batch_size = batch_size or settings.IMPORT_BATCH_SIZE
    if batch_timeout is None:
        batch_timeout = settings.IMPORT_BATCH_TIMEOUT_SECONDS
    max_concurrent_batches = max_concurrent_batches or settings.IMPORT_MAX_CONCURRENT_BATCHES
    if keep_dangling_relations is None:
        keep_dangling_relations = settings.IMPORT_KEEP_DANGLING_RELATIONS

    # Fatal problems surface here, before anything is deleted
    raw, source_name = load_catalog_source(source, source_name)

    report = ImportReport(catalog_name=catalog_name)
    entries = _validate_entries(raw, report.errors)
    control_ids = list(entries)
    log.info("Importing catalog %r: %d controls in source", catalog_name, len(control_ids))

    catalog = await _prepare_catalog(session_factory, catalog_name, source_name)
    report.catalog_id = catalog.id
    report.generation = catalog.generation

    await _clear_catalog(session_factory, catalog.id)

    batches = [control_ids[i:i + batch_size] for i in range(0, len(control_ids), batch_size)]
    semaphore = asyncio.Semaphore(max(1, max_concurrent_batches))

    async def run_phase(phase: str, fn: BatchFn) -> None:
        log.info("Phase %s: %d batch(es)", phase, len(batches))
        results = await asyncio.gather(*(
            _run_batch(session_factory, semaphore, phase, idx, batch, fn, batch_timeout)
            for idx, batch in enumerate(batches, 1)
        ))
        for batch_issues in results:
            report.errors.extend(batch_issues)

    await run_phase(
        "controls",
        lambda s, batch: _create_controls(s, catalog.id, batch, entries),
    )
    await run_phase(
        "ccis",
        lambda s, batch: _create_ccis(s, catalog.id, batch, entries),
    )

    async with session_factory() as s:
        known_ids = set((await s.execute(
            select(Control.control_id).where(Control.catalog_id == catalog.id)
        )).scalars().all())

    await run_phase(
        "relations",
        lambda s, batch: _create_relations(
            s, catalog.id, batch, entries, known_ids, keep_dangling_relations,
        ),
    )

    await _finalize_catalog(session_factory, catalog.id, activate)

    async with session_factory() as s:
        report.imported, report.cci_count, report.relation_count = await count_catalog_rows(s, catalog.id)

    log.info(
        "Catalog import complete: catalog=%r generation=%d controls=%d ccis=%d relations=%d issues=%d",
        catalog_name, report.generation, report.imported, report.cci_count,
        report.relation_count, len(report.errors),
    )
    return report


async def _run_batch(
    session_factory: async_sessionmaker[AsyncSession],
    semaphore: asyncio.Semaphore,
    phase: str,
    index: int,
    batch: list[str],
    fn: BatchFn,
    timeout: float | None,
) -> list[ImportIssue]:
    """Run one batch in its own transaction; failures are returned as issues."""
    async with semaphore:
        log.debug("  %s batch %d (%d controls)", phase, index, len(batch))
        try:
            issues = await asyncio.wait_for(
                _in_transaction(session_factory, fn, batch),
                timeout if timeout and timeout > 0 else None,
            )
        except asyncio.TimeoutError:
            log.error("%s batch %d timed out after %ss; %d controls not imported",
                      phase, index, timeout, len(batch))
            return [ImportIssue(
                "BatchTimeout",
                f"{phase} batch {index} timed out after {timeout}s ({batch[0]} .. {batch[-1]})",
                phase=phase, batch=index,
            )]
        except SQLAlchemyError as e:
            log.error("%s batch %d failed: %s", phase, index, e)
            return [ImportIssue(
                "BatchFailed",
                f"{phase} batch {index} rolled back ({batch[0]} .. {batch[-1]}): {e}",
                phase=phase, batch=index,
            )]
    for issue in issues:
        issue.phase = phase
        issue.batch = index
    return issues


async def _in_transaction(
    session_factory: async_sessionmaker[AsyncSession], fn: BatchFn, batch: list[str],
) -> list[ImportIssue]:
    async with session_factory() as s:
        async with s.begin():
            return await fn(s, batch)


async def _prepare_catalog(
    session_factory: async_sessionmaker[AsyncSession], name: str, source_name: str | None,
) -> Catalog:
    """Get or create the catalog handle and bump its generation."""
    async with session_factory() as s:
        async with s.begin():
            catalog = (await s.execute(
                select(Catalog).where(Catalog.name == name)
            )).scalar_one_or_none()
            if catalog is None:
                catalog = Catalog(name=name, generation=0)
                s.add(catalog)
            catalog.generation = (catalog.generation or 0) + 1
            catalog.source_name = source_name
            await s.flush()
        return catalog


async def _clear_catalog(session_factory: async_sessionmaker[AsyncSession], catalog_id: int) -> None:
    """Delete children before parents so no foreign key is violated."""
    log.info("Clearing existing data of catalog %d", catalog_id)
    control_pks = select(Control.id).where(Control.catalog_id == catalog_id)
    async with session_factory() as s:
        async with s.begin():
            await s.execute(delete(ControlCci).where(ControlCci.control_pk.in_(control_pks)))
            await s.execute(delete(ControlRelation).where(ControlRelation.source_control_pk.in_(control_pks)))
            await s.execute(delete(Control).where(Control.catalog_id == catalog_id))


async def _finalize_catalog(
    session_factory: async_sessionmaker[AsyncSession], catalog_id: int, activate: bool,
) -> None:
    async with session_factory() as s:
        async with s.begin():
            values: dict[str, Any] = {"imported_at": datetime.utcnow()}
            if activate:
                await s.execute(update(Catalog).where(Catalog.id != catalog_id).values(is_active=False))
                values["is_active"] = True
            await s.execute(update(Catalog).where(Catalog.id == catalog_id).values(**values))


async def count_catalog_rows(s: AsyncSession, catalog_id: int) -> tuple[int, int, int]:
    """(controls, CCI links, relations) currently stored for a catalog."""
    controls = (await s.execute(
        select(func.count(Control.id)).where(Control.catalog_id == catalog_id)
    )).scalar() or 0
    ccis = (await s.execute(
        select(func.count(ControlCci.id))
        .join(Control, ControlCci.control_pk == Control.id)
        .where(Control.catalog_id == catalog_id)
    )).scalar() or 0
    relations = (await s.execute(
        select(func.count(ControlRelation.id))
        .join(Control, ControlRelation.source_control_pk == Control.id)
        .where(Control.catalog_id == catalog_id)
    )).scalar() or 0
    return controls, ccis, relations


# ═══════════════════════════════════════════════
# PHASES
# ═══════════════════════════════════════════════

async def _create_controls(
    s: AsyncSession, catalog_id: int, batch: list[str], entries: dict[str, CatalogEntry],
) -> list[ImportIssue]:
    for control_id in batch:
        entry = entries[control_id]
        s.add(Control(
            catalog_id=catalog_id,
            control_id=control_id,
            family=control_family(control_id),
            name=entry.name,
            control_text=entry.control_text,
            discussion=entry.discussion or None,
        ))
    await s.flush()
    return []


async def _load_batch_controls(
    s: AsyncSession, catalog_id: int, control_ids: list[str],
) -> dict[str, Control]:
    if not control_ids:
        return {}
    rows = (await s.execute(
        select(Control).where(
            Control.catalog_id == catalog_id,
            Control.control_id.in_(control_ids),
        )
    )).scalars().all()
    return {c.control_id: c for c in rows}


async def _create_ccis(
    s: AsyncSession, catalog_id: int, batch: list[str], entries: dict[str, CatalogEntry],
) -> list[ImportIssue]:
    issues: list[ImportIssue] = []
    wanted = [cid for cid in batch if entries[cid].ccis]
    controls = await _load_batch_controls(s, catalog_id, wanted)

    for control_id in wanted:
        control = controls.get(control_id)
        if control is None:
            issues.append(ImportIssue(
                "ControlMissing", f"Control {control_id} not found; CCIs skipped",
                control_id=control_id,
            ))
            continue

        seen: set[str] = set()
        for cci in entries[control_id].ccis:
            code = cci.cci.strip()
            if code in seen:
                issues.append(ImportIssue(
                    "DuplicateCci", f"{control_id} lists {code} more than once",
                    control_id=control_id,
                ))
                continue
            seen.add(code)
            s.add(ControlCci(control_pk=control.id, cci=code, definition=cci.definition))

    await s.flush()
    return issues


async def _create_relations(
    s: AsyncSession,
    catalog_id: int,
    batch: list[str],
    entries: dict[str, CatalogEntry],
    known_ids: set[str],
    keep_dangling: bool,
) -> list[ImportIssue]:
    """Create relation edges; every edge problem is a per-edge skip."""
    issues: list[ImportIssue] = []
    wanted = [cid for cid in batch if entries[cid].related_controls]
    controls = await _load_batch_controls(s, catalog_id, wanted)

    for control_id in wanted:
        control = controls.get(control_id)
        if control is None:
            issues.append(ImportIssue(
                "ControlMissing", f"Control {control_id} not found; relations skipped",
                control_id=control_id,
            ))
            continue

        seen: set[str] = set()
        for raw_related in entries[control_id].related_controls:
            related_id = canonical_control_id(raw_related)
            if not related_id:
                issues.append(ImportIssue(
                    "InvalidRelation", f"{control_id} has an empty related control id",
                    control_id=control_id,
                ))
                continue
            if related_id in seen:
                log.warning("    Skipped relationship %s -> %s: duplicate edge", control_id, related_id)
                issues.append(ImportIssue(
                    "DuplicateRelation", f"{control_id} -> {related_id} listed more than once",
                    control_id=control_id,
                ))
                continue
            seen.add(related_id)
            if related_id not in known_ids and not keep_dangling:
                log.warning("    Skipped relationship %s -> %s: target not in catalog", control_id, related_id)
                issues.append(ImportIssue(
                    "RelationTargetMissing", f"{control_id} -> {related_id}: target not in catalog",
                    control_id=control_id,
                ))
                continue
            try:
                async with s.begin_nested():
                    s.add(ControlRelation(source_control_pk=control.id, related_control_id=related_id))
                    await s.flush()
            except SQLAlchemyError as e:
                log.warning("    Failed relationship %s -> %s: %s", control_id, related_id, e)
                issues.append(ImportIssue(
                    "RelationFailed", f"{control_id} -> {related_id}: {e}",
                    control_id=control_id,
                ))

    return issues
