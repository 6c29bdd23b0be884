"""
Compensating actions for account-then-profile provisioning.

Creating a user is two writes: the identity account, then the Profile
document. They are not transactional. When the second write fails we queue a
`ReconciliationJob`; `ProfileReconciler.run_once` retries the profile write
and, after `max_attempts` failures, deletes the orphaned account so the
platform never keeps an identity that can log in without a profile.

Durability:
    Jobs are documents in the `reconciliationJobs` collection of the same
    `DocumentStore` the profiles live in, so they survive restarts and every
    worker sees the same queue. A worker leases a job (`status="leased"`,
    `leasedUntil`) before touching it; an expired lease makes the job visible
    again. Leases are best effort (the store has no compare-and-set), so every
    step of a job is idempotent: the profile and its linked documents are
    written under fixed ids and deleting a missing account is a no-op.

    If the job itself cannot be persisted (the store is down) it is held in
    process memory and written on the next queue access.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol
import logging
import time
import uuid

from identity_access.admin_client import AdminClientError
from identity_access.stores import DocumentNotFound, DocumentStore, DocumentStoreError

logger = logging.getLogger("cloverpass.gateway.reconciliation")

RECONCILIATION_JOBS_COLLECTION = "reconciliationJobs"

QUEUED = "queued"
LEASED = "leased"


class AccountDeleter(Protocol):
    def delete_user(self, uid: str) -> None: ...


@dataclass
class ReconciliationJob:
    uid: str
    collection: str
    document: dict
    extra_documents: List[tuple[str, dict]] = field(default_factory=list)
    attempts: int = 0
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    enqueued_at: float = 0.0
    last_error: Optional[str] = None

    def to_document(self, *, status: str = QUEUED, leased_until: float | None = None, lease_key: str | None = None) -> dict:
        return {
            "uid": self.uid,
            "collection": self.collection,
            "document": self.document,
            "extraDocuments": [{"collection": c, "document": d} for c, d in self.extra_documents],
            "attempts": self.attempts,
            "enqueuedAt": self.enqueued_at,
            "lastError": self.last_error,
            "status": status,
            "leasedUntil": leased_until,
            "leaseKey": lease_key,
        }

    @classmethod
    def from_document(cls, job_id: str, doc: dict) -> "ReconciliationJob":
        extras = [
            (str(item.get("collection")), dict(item.get("document") or {}))
            for item in doc.get("extraDocuments") or []
            if isinstance(item, dict)
        ]
        return cls(
            uid=str(doc.get("uid", "")),
            collection=str(doc.get("collection", "")),
            document=dict(doc.get("document") or {}),
            extra_documents=extras,
            attempts=int(doc.get("attempts") or 0),
            job_id=job_id,
            enqueued_at=float(doc.get("enqueuedAt") or 0.0),
            last_error=doc.get("lastError"),
        )


@dataclass
class ReconciliationReport:
    completed: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    requeued: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "completed": list(self.completed),
            "deleted": list(self.deleted),
            "requeued": list(self.requeued),
            "failed": list(self.failed),
        }


class ReconciliationQueue:
    """Pending jobs persisted in the document store.

    Parameters
    ----------
    store:
        Where jobs are kept (collection `reconciliationJobs`).
    lease_seconds:
        How long a leased job stays invisible to other workers.
    clock:
        Returns epoch seconds; injectable for tests.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        collection: str = RECONCILIATION_JOBS_COLLECTION,
        lease_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.collection = collection
        self.lease_seconds = lease_seconds
        self.clock = clock
        self._unsaved: Dict[str, ReconciliationJob] = {}

    def enqueue(self, job: ReconciliationJob) -> ReconciliationJob:
        if not job.enqueued_at:
            job.enqueued_at = self.clock()
        logger.error(
            "reconciliation_enqueued job=%s uid=%s collection=%s", job.job_id, job.uid, job.collection
        )
        self._persist(job)
        return job

    def release(self, job: ReconciliationJob) -> None:
        """Return a job to the queue after a failed attempt."""
        self._persist(job)

    def complete(self, job: ReconciliationJob) -> None:
        if self._unsaved.pop(job.job_id, None) is not None:
            return
        self.store.delete(self.collection, job.job_id)

    def pending(self) -> List[ReconciliationJob]:
        """Every job not yet completed, leased or not, oldest first."""
        self.flush()
        jobs = [ReconciliationJob.from_document(job_id, doc) for job_id, doc in self.store.stream(self.collection)]
        jobs.extend(self._unsaved.values())
        return sorted(jobs, key=lambda j: (j.enqueued_at, j.job_id))

    def lease(self, limit: int) -> List[ReconciliationJob]:
        """Claim up to `limit` visible jobs for this worker."""
        self.flush()
        now = self.clock()
        leased: List[ReconciliationJob] = list(self._unsaved.values())[:limit]
        candidates = []
        for job_id, doc in self.store.stream(self.collection):
            if doc.get("status") == LEASED and float(doc.get("leasedUntil") or 0) > now:
                continue
            candidates.append(ReconciliationJob.from_document(job_id, doc))
        candidates.sort(key=lambda j: (j.enqueued_at, j.job_id))
        for job in candidates:
            if len(leased) >= limit:
                break
            lease_key = uuid.uuid4().hex
            try:
                self.store.update(
                    self.collection,
                    job.job_id,
                    {"status": LEASED, "leasedUntil": now + self.lease_seconds, "leaseKey": lease_key},
                )
            except DocumentNotFound:
                continue
            current = self.store.get(self.collection, job.job_id) or {}
            if current.get("leaseKey") != lease_key:
                # Another worker claimed it between our read and write.
                continue
            leased.append(job)
        return leased

    def flush(self) -> int:
        """Write jobs held in memory; returns how many are still unsaved."""
        for job in list(self._unsaved.values()):
            self._persist(job)
        return len(self._unsaved)

    def _persist(self, job: ReconciliationJob) -> None:
        try:
            self.store.set(self.collection, job.job_id, job.to_document())
        except DocumentStoreError as exc:
            self._unsaved[job.job_id] = job
            logger.error("reconciliation_persist_deferred job=%s uid=%s error=%s", job.job_id, job.uid, exc)
            return
        self._unsaved.pop(job.job_id, None)

    def __len__(self) -> int:
        return len(self.pending())


class ProfileReconciler:
    def __init__(self, queue: ReconciliationQueue, store: DocumentStore, accounts: AccountDeleter, *, max_attempts: int = 3) -> None:
        self.queue = queue
        self.store = store
        self.accounts = accounts
        self.max_attempts = max_attempts

    def run_once(self, *, limit: int = 50) -> ReconciliationReport:
        """Lease up to `limit` visible jobs and process each once."""
        report = ReconciliationReport()
        for job in self.queue.lease(limit):
            job.attempts += 1
            try:
                self.store.set(job.collection, job.uid, job.document)
                for index, (collection, doc) in enumerate(job.extra_documents):
                    self.store.set(collection, f"{job.job_id}-{index}", doc)
            except Exception as exc:
                job.last_error = exc.__class__.__name__
                logger.warning(
                    "reconciliation_write_failed job=%s uid=%s attempt=%d error=%s",
                    job.job_id, job.uid, job.attempts, job.last_error,
                )
                self._give_up_or_requeue(job, report)
                continue
            self.queue.complete(job)
            logger.info("reconciliation_completed job=%s uid=%s", job.job_id, job.uid)
            report.completed.append(job.uid)
        return report

    def _give_up_or_requeue(self, job: ReconciliationJob, report: ReconciliationReport) -> None:
        if job.attempts < self.max_attempts:
            self.queue.release(job)
            report.requeued.append(job.uid)
            return
        try:
            self.accounts.delete_user(job.uid)
        except AdminClientError as exc:
            logger.error("reconciliation_delete_failed job=%s uid=%s code=%s", job.job_id, job.uid, exc.code)
            self.queue.release(job)
            report.failed.append(job.uid)
            return
        self.queue.complete(job)
        logger.warning("reconciliation_orphan_deleted job=%s uid=%s", job.job_id, job.uid)
        report.deleted.append(job.uid)
