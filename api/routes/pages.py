from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, HTTPException, Query

from api.dependencies import get_indexer, get_repo

router = APIRouter(prefix="/pages", tags=["pages"])


def _get_repo():
    return get_repo()


def _get_indexer():
    return get_indexer()


# declared before /{url:path} so "search" is not taken as a page url
@router.get("/search")
def search_pages(q: str, limit: int = Query(20, ge=1, le=200)):
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail="Query must not be empty")
    hits = _get_indexer().search(q, limit=limit)
    return {"query": q, "hits": hits}


@router.get("/{url:path}")
def get_page(url: str):
    page = _get_repo().get_page(url)
    if not page:
        raise HTTPException(status_code=404, detail=f"Page not found: {url}")
    return {
        "id": page.id,
        "url": page.url,
        "title": page.title,
        "namespace": page.namespace,
        "mime_type": page.mime_type,
        "redirect_url": page.redirect_url,
        "content_sha256": page.content_sha256,
        "extraction_confidence": page.extraction_confidence,
        "updated_at": page.updated_at,
        "definitions": [asdict(d) for d in page.definitions],
        "relations": [asdict(r) for r in page.relations],
        "aliases": [asdict(a) for a in page.aliases],
    }
