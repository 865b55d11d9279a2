"""Detached, best-effort delivery of audit records.

Records are handed to a single worker thread, so persistence never blocks
the response path and keeps running when the caller disconnects or the
request's task is cancelled.  One worker also keeps the JSONL hash chain in
submission order.  Failures are logged and dropped.
"""

import logging
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace

from llm_gateway.audit.attachments import (
    AttachmentStore,
    LocalAttachmentStore,
    S3AttachmentStore,
    persist_attachment,
)
from llm_gateway.audit.writer import AuditRecord, AuditSink, JsonlAuditSink, S3AuditSink
from llm_gateway.config.settings import Settings
from llm_gateway.models.openai import Attachment

logger = logging.getLogger("llmgw.audit")


class AuditDispatcher:
    def __init__(
        self,
        sink: AuditSink,
        attachment_store: AttachmentStore | None = None,
        executor: ThreadPoolExecutor | None = None,
    ):
        self._sink = sink
        self._attachment_store = attachment_store
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="llmgw-audit"
        )

    def dispatch(
        self, record: AuditRecord, attachments: Sequence[Attachment] = ()
    ) -> Future[str | None]:
        return self._executor.submit(self._persist, record, tuple(attachments))

    def _persist(self, record: AuditRecord, attachments: tuple[Attachment, ...]) -> str | None:
        try:
            if attachments and self._attachment_store is not None:
                refs = tuple(
                    persist_attachment(self._attachment_store, attachment).as_dict()
                    for attachment in attachments
                )
                record = replace(record, attachments=refs)
            reference = self._sink.persist(record)
        except Exception as exc:
            logger.warning(
                "audit_write_failed",
                extra={"request_id": record.request_id, "error": str(exc)},
            )
            return None

        logger.debug(
            "audit_written",
            extra={"request_id": record.request_id, "audit_reference": reference},
        )
        return reference

    def flush(self, timeout: float | None = None) -> None:
        """Block until every record submitted so far has been handled."""
        self._executor.submit(lambda: None).result(timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


def build_audit_dispatcher(settings: Settings) -> AuditDispatcher:
    backend = settings.audit_backend_normalized
    if backend == "jsonl":
        return AuditDispatcher(
            sink=JsonlAuditSink(settings.audit_log_path, settings.contracts_dir),
            attachment_store=LocalAttachmentStore(settings.attachment_dir),
        )
    if backend == "s3":
        if not settings.audit_bucket:
            raise ValueError("LLMGW_AUDIT_BUCKET is required when audit_backend=s3")
        return AuditDispatcher(
            sink=S3AuditSink(
                bucket=settings.audit_bucket,
                contracts_dir=settings.contracts_dir,
                prefix=settings.audit_prefix,
                region=settings.aws_region,
            ),
            attachment_store=S3AttachmentStore(
                bucket=settings.audit_bucket,
                prefix=f"{settings.audit_prefix.strip('/')}/attachments",
                region=settings.aws_region,
            ),
        )
    raise ValueError(f"Unsupported audit backend: {backend}")
