# prepstream/remote_client.py
import asyncio
import json
import logging
import os
from typing import Any, List, Optional

import httpx

from prepstream.errors import MalformedResponse, NetworkFailure
from prepstream.schemas import FALLBACK_REMOTE_SUBJECT, Filters, Origin, Question, RawQuestion, valid_raw_questions

logger = logging.getLogger(__name__)

GENERATION_URL = os.environ.get("GENERATION_URL", "http://localhost:8080/api/questions/generate")
REMOTE_TIMEOUT_SECONDS = float(os.environ.get("REMOTE_TIMEOUT_SECONDS", "15"))


def to_question(raw: RawQuestion, filters: Filters) -> Question:
    """Converts a validated remote item; the remote id (if any) never survives."""
    subject = (raw.subject or FALLBACK_REMOTE_SUBJECT) if filters.is_mixed else filters.subject
    return Question(
        text=raw.text,
        options=list(raw.options),
        correct_index=raw.correctIndex,
        solution=raw.solution,
        subject=subject,
        exam_type=filters.exam,
        difficulty=filters.difficulty,
        origin=Origin.GENERATED,
    )


def parse_batch(body: Any, filters: Filters) -> List[Question]:
    """
    Maps a response body of shape {"questions": [...]} into Questions.

    Malformed items are dropped individually; the batch only fails when the
    top-level shape is wrong or nothing usable is left.
    """
    if not isinstance(body, dict) or not isinstance(body.get("questions"), list):
        raise MalformedResponse(f"expected an object with a questions array, got {type(body).__name__}")
    raws = valid_raw_questions(body["questions"])
    if not raws:
        raise MalformedResponse(f"no usable question among {len(body['questions'])} item(s)")
    return [to_question(raw, filters) for raw in raws]


class RemoteQuestionClient:
    """
    Thin adapter over the question generation service.

    Performs no retries. Every failure surfaces as NetworkFailure or
    MalformedResponse; the overall call is bounded by `timeout`.
    """

    def __init__(self, url: str = GENERATION_URL, timeout: float = REMOTE_TIMEOUT_SECONDS,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def request_batch(self, filters: Filters, count: int) -> List[Question]:
        try:
            body = await asyncio.wait_for(self._post(filters, count), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise NetworkFailure(f"generation service timed out after {self.timeout}s") from e
        questions = parse_batch(body, filters)
        logger.info("Received %d generated question(s) for %s/%s", len(questions), filters.exam, filters.subject)
        return questions

    async def _post(self, filters: Filters, count: int) -> Any:
        payload = {"filters": filters.model_dump(), "count": count}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json=payload)
                resp.raise_for_status()
        except (httpx.RequestError, httpx.HTTPStatusError) as e:
            raise NetworkFailure(f"generation request failed: {e}") from e
        try:
            return resp.json()
        except json.JSONDecodeError as e:
            raise MalformedResponse("generation service returned non-JSON body") from e
