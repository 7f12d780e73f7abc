from __future__ import annotations

import hashlib
import logging
import queue
import threading
from dataclasses import dataclass
from typing import List, Optional, Union

from ..extraction.engine import ExtractionEngine
from ..extraction.models import ExtractedPage

logger = logging.getLogger(__name__)

MIN_QUEUE_CAPACITY = 32
_POLL_SECONDS = 0.05


class WorkerPoolError(RuntimeError):
    """
    The pool can no longer accept or complete work: every worker thread has
    died with jobs in flight, or a job was submitted after shutdown.
    """


@dataclass(frozen=True)
class HtmlJobMeta:
    url: str
    title: str
    namespace: str
    mime_type: str
    cluster_idx: Optional[int]
    blob_idx: Optional[int]


@dataclass
class HtmlJob:
    entry_index: int
    meta: HtmlJobMeta
    html: str


@dataclass(frozen=True)
class Shutdown:
    pass


WorkerJob = Union[HtmlJob, Shutdown]


@dataclass
class WorkerResult:
    entry_index: int
    page: Optional[ExtractedPage] = None
    error: Optional[str] = None


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def build_page_from_html(meta: HtmlJobMeta, html: str, engine: ExtractionEngine) -> ExtractedPage:
    extraction = engine.extract(meta.title, html)
    return ExtractedPage(
        url=meta.url,
        title=meta.title,
        namespace=meta.namespace,
        mime_type=meta.mime_type,
        cluster_idx=meta.cluster_idx,
        blob_idx=meta.blob_idx,
        redirect_url=None,
        content_sha256=sha256_hex(html),
        raw_html=html if engine.config.store_raw_html else None,
        plain_text=extraction.plain_text,
        extraction_confidence=extraction.extraction_confidence,
        definitions=extraction.definitions,
        relations=extraction.relations,
        aliases=extraction.aliases,
    )


class ExtractionWorkerPool:
    """
    Fixed set of extraction threads fed through bounded job/result queues.
    Workers only run the extraction engine; persisting results is left to the
    thread that owns the pool.

    Every blocking put made by the owner drains finished results while it
    waits, so a full result queue can never wedge the workers.
    """

    def __init__(self, engine: ExtractionEngine, threads: int, queue_capacity: int):
        self.engine = engine
        capacity = max(queue_capacity, MIN_QUEUE_CAPACITY)
        self.jobs: "queue.Queue[WorkerJob]" = queue.Queue(maxsize=capacity)
        self.results: "queue.Queue[WorkerResult]" = queue.Queue(maxsize=capacity)
        self.in_flight = 0
        self._threads = [
            threading.Thread(target=self._worker_loop, args=(worker_id,), name=f"extract-{worker_id}", daemon=True)
            for worker_id in range(max(threads, 1))
        ]
        self._started = False
        self._stopped = False

    @property
    def size(self) -> int:
        return len(self._threads)

    def start(self) -> None:
        if self._started:
            return
        for thread in self._threads:
            thread.start()
        self._started = True
        logger.info("Started %s extraction workers (queue capacity %s)", self.size, self.jobs.maxsize)

    def _worker_loop(self, worker_id: int) -> None:
        while True:
            job = self.jobs.get()
            if isinstance(job, Shutdown):
                break
            try:
                page = build_page_from_html(job.meta, job.html, self.engine)
                result = WorkerResult(entry_index=job.entry_index, page=page)
            except Exception as exc:  # noqa: BLE001
                result = WorkerResult(entry_index=job.entry_index, error=f"{type(exc).__name__}: {exc}")
            self.results.put(result)
        logger.debug("Worker %s finished", worker_id)

    def _alive(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def _put(self, item: WorkerJob) -> List[WorkerResult]:
        drained: List[WorkerResult] = []
        while True:
            if not self._alive():
                raise WorkerPoolError("All extraction workers have stopped; cannot dispatch more work")
            try:
                self.jobs.put(item, timeout=_POLL_SECONDS)
                return drained
            except queue.Full:
                drained.extend(self.drain(block=False))

    def submit(self, job: HtmlJob) -> List[WorkerResult]:
        """
        Dispatch one job, blocking while the job queue is full. Returns any
        results drained while waiting; the caller must process them.
        """
        if self._stopped or not self._started:
            raise WorkerPoolError(f"Worker pool is not running (entry index {job.entry_index})")
        drained = self._put(job)
        self.in_flight += 1
        return drained

    def drain(self, block: bool = False) -> List[WorkerResult]:
        """
        Collect finished results. Non-blocking mode returns whatever is ready;
        blocking mode waits until every dispatched job has reported back.
        """
        out: List[WorkerResult] = []
        while True:
            if block and self.in_flight == 0:
                return out
            try:
                if block:
                    result = self.results.get(timeout=_POLL_SECONDS)
                else:
                    result = self.results.get_nowait()
            except queue.Empty:
                if not block:
                    return out
                if not self._alive():
                    try:
                        result = self.results.get_nowait()
                    except queue.Empty:
                        raise WorkerPoolError(
                            f"All extraction workers died with {self.in_flight} job(s) in flight"
                        ) from None
                else:
                    continue
            self.in_flight = max(0, self.in_flight - 1)
            out.append(result)

    def shutdown(self) -> List[WorkerResult]:
        """
        Queue one Shutdown sentinel per worker. Returns results drained while
        the job queue was full.
        """
        if self._stopped or not self._started:
            self._stopped = True
            return []
        drained: List[WorkerResult] = []
        for _ in self._threads:
            drained.extend(self._put(Shutdown()))
        self._stopped = True
        return drained

    def join(self, timeout: Optional[float] = None) -> None:
        for thread in self._threads:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Worker thread %s did not stop in time", thread.name)

    def abort(self) -> None:
        """
        Best-effort stop after a fatal error: discard queued work and results
        and let the daemon threads exit.
        """
        self._stopped = True
        for q in (self.jobs, self.results):
            while True:
                try:
                    q.get_nowait()
                except queue.Empty:
                    break
        for _ in self._threads:
            try:
                self.jobs.put_nowait(Shutdown())
            except queue.Full:
                break
        self.in_flight = 0
