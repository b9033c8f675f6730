"""Batch provider contract and its OpenAI implementation.

Any vendor offering this shape can back the pipeline:

    submit(requests)          -> BatchSubmission (batch id)
    check_status(batch_id)    -> BatchStatus (status, output/error file ids, counts)
    download_output(file_id)  -> raw JSONL bytes

OpenAI flow:
    1. Encode requests as JSONL (one ``/v1/chat/completions`` call per line).
    2. Upload the file with ``purpose="batch"`` and create the batch.
    3. ``batches.retrieve`` reports progress; the batch may take up to 24h.
    4. ``files.content`` returns the output (and error) JSONL artifacts.

``parse_batch_output`` turns an artifact into ``custom_id -> ItemResult``.
Malformed lines never raise; they become GenerationError entries keyed by
``line:<n>`` so the consumer records them like any other failed item.
"""

import json
import logging
import os
from typing import Any, Iterable, Iterator, Protocol, Sequence

from openai import AsyncOpenAI

from weekly_digest.batch_types import (
    BatchRequest,
    BatchStatus,
    BatchSubmission,
    GenerationError,
    ItemResult,
    RequestCounts,
    SummaryResult,
    WeekNote,
)

logger = logging.getLogger(__name__)

BATCH_ENDPOINT = "/v1/chat/completions"
DEFAULT_COMPLETION_WINDOW = "24h"


class BatchProvider(Protocol):
    async def submit(
        self, requests: Sequence[BatchRequest], metadata: dict[str, str] | None = None
    ) -> BatchSubmission: ...

    async def check_status(self, batch_id: str) -> BatchStatus: ...

    async def download_output(self, file_id: str) -> bytes: ...


# ---------------------------------------------------------------------------
# JSONL encoding / decoding
# ---------------------------------------------------------------------------


def requests_to_jsonl(requests: Iterable[BatchRequest]) -> bytes:
    lines = [
        json.dumps(
            {
                "custom_id": request.custom_id,
                "method": "POST",
                "url": BATCH_ENDPOINT,
                "body": request.body,
            },
            ensure_ascii=False,
        )
        for request in requests
    ]
    return ("\n".join(lines) + "\n").encode("utf-8")


def parse_summary_content(custom_id: str, content: str) -> ItemResult:
    """Validate the model's JSON answer and wrap it as a SummaryResult."""
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        return GenerationError(custom_id, f"Invalid summary payload: {exc}")

    if not isinstance(payload, dict):
        return GenerationError(custom_id, "Invalid summary payload: expected an object")

    summary = payload.get("summary") or ""
    raw_notes = payload.get("notes") or []
    if not isinstance(summary, str) or not isinstance(raw_notes, list):
        return GenerationError(custom_id, "Invalid summary payload: wrong field types")

    notes = []
    for raw in raw_notes:
        if not isinstance(raw, dict) or not raw.get("title"):
            continue
        tags = raw.get("tags")
        if not isinstance(tags, list):
            tags = []
        notes.append(
            WeekNote(
                title=str(raw["title"]),
                summary=str(raw.get("summary") or ""),
                tags=tuple(str(tag) for tag in tags if tag),
            )
        )

    if not summary and not notes:
        return GenerationError(custom_id, "Empty summary payload")
    return SummaryResult(custom_id=custom_id, summary=summary, notes=tuple(notes))


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or error)
    return str(error)


def parse_result_record(record: dict[str, Any], fallback_id: str) -> ItemResult:
    """Interpret one decoded output or error line."""
    custom_id = record.get("custom_id")
    if not isinstance(custom_id, str) or not custom_id:
        return GenerationError(fallback_id, "Result line has no custom_id")

    if record.get("error"):
        return GenerationError(custom_id, _error_message(record["error"]))

    response = record.get("response") or {}
    if not isinstance(response, dict):
        return GenerationError(custom_id, "Malformed response: expected an object")
    body = response.get("body") or {}
    if not isinstance(body, dict):
        return GenerationError(custom_id, "Malformed response body: expected an object")
    status_code = response.get("status_code") or 200
    if not isinstance(status_code, int) or isinstance(status_code, bool):
        return GenerationError(custom_id, f"Malformed status code: {status_code!r}")
    if status_code >= 400:
        detail = _error_message(body["error"]) if body.get("error") else ""
        return GenerationError(custom_id, detail or f"Provider returned HTTP {status_code}")

    choices = body.get("choices") or []
    if not isinstance(choices, list):
        return GenerationError(custom_id, "Malformed choices: expected a list")
    if not choices:
        return GenerationError(custom_id, "Response has no choices")

    choice = choices[0]
    message = choice.get("message") if isinstance(choice, dict) else None
    if not isinstance(message, dict):
        return GenerationError(custom_id, "Malformed choice: missing message")
    content = message.get("content")
    if not content:
        return GenerationError(custom_id, "Response has empty content")
    if not isinstance(content, str):
        return GenerationError(custom_id, "Malformed content: expected a string")
    return parse_summary_content(custom_id, content)


def _decode_lines(raw: bytes | str) -> Iterator[tuple[int, str | None]]:
    """Yield ``(line_number, text)``; text is None for a line that is not UTF-8."""
    if isinstance(raw, str):
        yield from enumerate(raw.splitlines(), start=1)
        return
    for number, chunk in enumerate(raw.splitlines(), start=1):
        try:
            yield number, chunk.decode("utf-8")
        except UnicodeDecodeError:
            yield number, None


def parse_batch_output(raw: bytes | str) -> dict[str, ItemResult]:
    """Parse a JSONL artifact into ``custom_id -> ItemResult``.

    Duplicate custom ids collapse to the last line seen.
    """
    results: dict[str, ItemResult] = {}

    for number, line in _decode_lines(raw):
        fallback_id = f"line:{number}"
        if line is None:
            logger.warning("Batch output line %d is not valid UTF-8", number)
            results[fallback_id] = GenerationError(fallback_id, "Output line is not valid UTF-8")
            continue
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as exc:
            logger.warning("Unparseable batch output line %d: %s", number, exc)
            results[fallback_id] = GenerationError(fallback_id, f"Unparseable output line: {exc}")
            continue

        if not isinstance(record, dict):
            results[fallback_id] = GenerationError(fallback_id, "Output line is not an object")
            continue

        result = parse_result_record(record, fallback_id)
        if result.custom_id in results:
            logger.warning("Duplicate result for %s in batch output", result.custom_id)
        results[result.custom_id] = result

    return results


# ---------------------------------------------------------------------------
# OpenAI implementation
# ---------------------------------------------------------------------------


def get_openai_client(api_key: str | None = None) -> AsyncOpenAI:
    """Create the AsyncOpenAI client used for batch calls."""
    return AsyncOpenAI(
        api_key=api_key or os.environ.get("OPENAI_API_KEY", ""),
        max_retries=3,
        timeout=120.0,
    )


class OpenAIBatchProvider:
    """BatchProvider backed by the OpenAI Batch API.

    The client is created lazily so a process without credentials can still
    start; the first provider call then fails with the SDK's own error.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        client: AsyncOpenAI | None = None,
        completion_window: str = DEFAULT_COMPLETION_WINDOW,
        input_filename: str = "weekly-summaries.jsonl",
    ):
        self._api_key = api_key
        self._client = client
        self.completion_window = completion_window
        self.input_filename = input_filename

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = get_openai_client(self._api_key)
        return self._client

    async def submit(
        self, requests: Sequence[BatchRequest], metadata: dict[str, str] | None = None
    ) -> BatchSubmission:
        """Upload the requests and create a batch.

        Raises:
            ValueError: If ``requests`` is empty.
            openai.OpenAIError: If the upload or batch creation is rejected.
        """
        if not requests:
            raise ValueError("Cannot submit an empty batch")

        payload = requests_to_jsonl(requests)
        upload = await self.client.files.create(
            file=(self.input_filename, payload, "application/jsonl"),
            purpose="batch",
        )
        logger.info(
            "Uploaded batch input file %s with %d requests", upload.id, len(requests)
        )

        kwargs: dict[str, Any] = {
            "input_file_id": upload.id,
            "endpoint": BATCH_ENDPOINT,
            "completion_window": self.completion_window,
        }
        if metadata:
            kwargs["metadata"] = metadata
        batch = await self.client.batches.create(**kwargs)

        logger.info("Batch submitted: %s", batch.id)
        return BatchSubmission(
            batch_id=batch.id, request_count=len(requests), input_file_id=upload.id
        )

    async def check_status(self, batch_id: str) -> BatchStatus:
        batch = await self.client.batches.retrieve(batch_id)
        counts = batch.request_counts
        return BatchStatus(
            batch_id=batch.id,
            status=batch.status,
            output_file_id=batch.output_file_id,
            error_file_id=batch.error_file_id,
            request_counts=RequestCounts(
                total=counts.total if counts else 0,
                completed=counts.completed if counts else 0,
                failed=counts.failed if counts else 0,
            ),
        )

    async def download_output(self, file_id: str) -> bytes:
        response = await self.client.files.content(file_id)
        return response.content
