from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from api.dependencies import get_repo

router = APIRouter(tags=["runs"])


def _get_repo():
    return get_repo()


@router.get("/runs")
def list_runs(limit: int = Query(20, ge=1, le=500)):
    runs = _get_repo().list_runs(limit=limit)
    return [
        {
            "id": run.run_id,
            "started_unix_ms": run.started_unix_ms,
            "finished_unix_ms": run.finished_unix_ms,
            "elapsed_ms": run.elapsed_ms,
            "scanned_entries": run.scanned_entries,
            "filtered_entries": run.filtered_entries,
            "ingested_pages": run.ingested_pages,
            "extracted_definitions": run.extracted_definitions,
            "extracted_relations": run.extracted_relations,
            "extraction_errors": run.extraction_errors,
        }
        for run in runs
    ]


@router.get("/checkpoints/{name}")
def get_checkpoint(name: str):
    checkpoint = _get_repo().load_checkpoint(name)
    if not checkpoint:
        raise HTTPException(status_code=404, detail=f"Checkpoint not found: {name}")
    return {
        "name": name,
        "last_processed_index": checkpoint.last_processed_index,
        "ingested_pages": checkpoint.ingested_pages,
        "extracted_definitions": checkpoint.extracted_definitions,
        "extracted_relations": checkpoint.extracted_relations,
        "updated_unix_ms": checkpoint.updated_unix_ms,
    }
