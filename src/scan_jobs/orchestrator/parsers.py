"""Output protocols: streaming JSON lines and single batch documents."""

from __future__ import annotations

import json
import logging

from scan_jobs.orchestrator.errors import DecodeError, ProcessError
from scan_jobs.orchestrator.models import JobKind, OutputProtocol
from scan_jobs.orchestrator.records import ResultRecord

logger = logging.getLogger(__name__)

_MAX_ERROR_PREVIEW_CHARS = 2_000


class StreamingParser:
    """Decode each output line as one self-contained JSON record."""

    protocol = OutputProtocol.STREAMING

    def __init__(self, kind: JobKind, *, job_id: int | None = None) -> None:
        self.kind = kind
        self.job_id = job_id
        self.dropped_lines = 0

    def feed_line(self, raw: bytes | str) -> ResultRecord | None:
        """Return the decoded record, or None for blank and malformed lines."""

        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        text = text.strip()
        if not text:
            return None
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as error:
            self._drop(text, f"invalid JSON ({error.msg})")
            return None
        if not isinstance(payload, dict):
            self._drop(text, f"expected an object, got {type(payload).__name__}")
            return None
        return ResultRecord(kind=self.kind, payload=payload)

    def _drop(self, text: str, reason: str) -> None:
        self.dropped_lines += 1
        logger.warning(
            "Job %s: dropping output line, %s: %.200s",
            self.job_id,
            reason,
            text,
        )


class BatchParser:
    """Buffer all output and decode it once the process has exited."""

    protocol = OutputProtocol.BATCH

    def __init__(self, kind: JobKind, *, job_id: int | None = None) -> None:
        self.kind = kind
        self.job_id = job_id
        self._chunks: list[bytes] = []

    def feed(self, chunk: bytes) -> None:
        self._chunks.append(chunk)

    @property
    def raw_text(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")

    def finish(self) -> list[ResultRecord]:
        """Decode the buffered document into records.

        One envelope level is unwrapped: `{"success": true, "data": [...]}`
        yields the `data` collection, `"data": null` an empty one. An envelope
        with `"success": false` raises `ProcessError` carrying its `error`.
        """

        raw = self.raw_text
        collection = decode_collection(raw)
        records: list[ResultRecord] = []
        for item in collection:
            if not isinstance(item, dict):
                raise DecodeError(
                    f"Failed to parse output: record is not an object: {item!r}",
                    raw=raw,
                )
            records.append(ResultRecord(kind=self.kind, payload=item))
        return records

    def reported_error(self) -> str | None:
        """The `error` of a `{"success": false}` envelope, if the output is one."""

        try:
            document = json.loads(self.raw_text)
        except json.JSONDecodeError:
            return None
        if isinstance(document, dict) and document.get("success") is False:
            message = document.get("error")
            return str(message) if message else None
        return None


def decode_collection(raw: str) -> list[object]:
    """Decode a batch document and unwrap one `{"data": ...}` envelope level.

    Raises:
        DecodeError: the text is not JSON or holds no result list.
        ProcessError: the envelope reports `"success": false`.
    """

    try:
        document = json.loads(raw.strip())
    except json.JSONDecodeError as error:
        raise DecodeError(f"Failed to parse output: {_preview(raw)}", raw=raw) from error

    collection: object = document
    if isinstance(document, dict):
        if document.get("success") is False:
            message = document.get("error") or "tool reported failure"
            raise ProcessError(f"Tool reported an error: {message}", exit_code=None)
        if "data" in document:
            collection = document["data"]
        elif "success" in document:
            collection = None
        else:
            raise DecodeError(
                f"Failed to parse output: expected a result collection: {_preview(raw)}",
                raw=raw,
            )
    if collection is None:
        return []
    if not isinstance(collection, list):
        raise DecodeError(
            f"Failed to parse output: expected a list of records: {_preview(raw)}",
            raw=raw,
        )
    return collection


def decode_dns_records(raw: str) -> list[str]:
    """Record values from a DNS query document; structured entries are kept as JSON."""

    return [
        item if isinstance(item, str) else json.dumps(item, ensure_ascii=False)
        for item in decode_collection(raw)
        if item is not None
    ]


def _preview(raw: str) -> str:
    if len(raw) <= _MAX_ERROR_PREVIEW_CHARS:
        return raw
    hidden = len(raw) - _MAX_ERROR_PREVIEW_CHARS
    return raw[:_MAX_ERROR_PREVIEW_CHARS] + f"... [{hidden} more chars]"
