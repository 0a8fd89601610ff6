"""
Unit tests for the remote generation client adapter.
"""
import asyncio
import json

import httpx
import pytest

from prepstream.errors import MalformedResponse, NetworkFailure
from prepstream.remote_client import RemoteQuestionClient, parse_batch
from prepstream.schemas import Filters, Origin

URL = "http://generator.test/api/questions/generate"


def _item(**overrides):
    item = {
        "text": "What is 2 + 2?",
        "options": ["4", "3", "5", "22"],
        "correctIndex": 0,
        "solution": "Addition.",
    }
    item.update(overrides)
    return item


def _client(handler, timeout=5.0):
    return RemoteQuestionClient(URL, timeout=timeout, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_request_batch_posts_filters_and_count(jee_mixed):
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        seen["method"] = request.method
        return httpx.Response(200, json={"questions": [_item(), _item(subject="Chemistry")]})

    questions = await _client(handler).request_batch(jee_mixed, 2)

    assert seen["method"] == "POST"
    assert seen["body"] == {
        "filters": {"exam": "JEE", "subject": "Mix", "difficulty": 3, "language": "English"},
        "count": 2,
    }
    assert [q.subject for q in questions] == ["Physics", "Chemistry"]
    assert all(q.origin == Origin.GENERATED for q in questions)
    assert all(q.difficulty == 3 and q.exam_type == "JEE" for q in questions)


@pytest.mark.asyncio
async def test_remote_ids_are_replaced_with_local_ids(jee_mixed):
    def handler(request):
        return httpx.Response(200, json={"questions": [_item(id="remote-1"), _item(id="remote-1")]})

    questions = await _client(handler).request_batch(jee_mixed, 2)
    ids = [q.id for q in questions]
    assert "remote-1" not in ids
    assert len(set(ids)) == 2


@pytest.mark.asyncio
async def test_explicit_subject_overrides_remote_subject():
    filters = Filters(exam="JEE", subject="Maths", difficulty=4)

    def handler(request):
        return httpx.Response(200, json={"questions": [_item(subject="Physics")]})

    (question,) = await _client(handler).request_batch(filters, 1)
    assert question.subject == "Maths"
    assert question.difficulty == 4


@pytest.mark.asyncio
async def test_server_error_is_network_failure(jee_mixed):
    client = _client(lambda request: httpx.Response(500, json={"error": "Failed to generate questions"}))
    with pytest.raises(NetworkFailure):
        await client.request_batch(jee_mixed, 2)


@pytest.mark.asyncio
async def test_connection_error_is_network_failure(jee_mixed):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(NetworkFailure):
        await _client(handler).request_batch(jee_mixed, 2)


@pytest.mark.asyncio
async def test_hanging_service_is_bounded_by_timeout(jee_mixed):
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json={"questions": []})

    with pytest.raises(NetworkFailure):
        await _client(handler, timeout=0.05).request_batch(jee_mixed, 2)


@pytest.mark.asyncio
async def test_non_json_body_is_malformed(jee_mixed):
    client = _client(lambda request: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(MalformedResponse):
        await client.request_batch(jee_mixed, 2)


@pytest.mark.parametrize(
    "body",
    [
        [_item()],
        {"questions": "nope"},
        {"items": [_item()]},
        {"questions": [_item(options=["a", "b", "c"])]},
        {"questions": [_item(correctIndex=4)]},
        {"questions": [_item(correctIndex=-1)]},
        {"questions": [{"options": ["a", "b", "c", "d"], "correctIndex": 1}]},
    ],
)
def test_parse_batch_rejects_bad_shapes(body, jee_mixed):
    with pytest.raises(MalformedResponse):
        parse_batch(body, jee_mixed)


def test_parse_batch_keeps_option_order(jee_mixed):
    (question,) = parse_batch({"questions": [_item(options=["d", "c", "b", "a"], correctIndex=2)]}, jee_mixed)
    assert question.options == ["d", "c", "b", "a"]
    assert question.correct_index == 2


def test_numeric_options_and_null_solution_are_repaired(jee_mixed):
    body = {"questions": [
        _item(options=[4, 3, 5, 22], correctIndex=0),
        _item(solution=None),
    ]}
    first, second = parse_batch(body, jee_mixed)
    assert first.options == ["4", "3", "5", "22"]
    assert first.options[first.correct_index] == "4"
    assert second.solution == ""


def test_malformed_items_are_dropped_individually(jee_mixed):
    body = {"questions": [_item(text="keep me"), _item(options=["a", "b", "c"]), _item(correctIndex=7)]}
    questions = parse_batch(body, jee_mixed)
    assert [q.text for q in questions] == ["keep me"]


def test_empty_questions_array_is_malformed(jee_mixed):
    with pytest.raises(MalformedResponse):
        parse_batch({"questions": []}, jee_mixed)


@pytest.mark.asyncio
async def test_partially_valid_batch_survives_request(jee_mixed):
    def handler(request):
        return httpx.Response(200, json={"questions": [_item(options=[1, 2, 3, 4], correctIndex=3), {"text": "??"}]})

    (question,) = await _client(handler).request_batch(jee_mixed, 2)
    assert question.options == ["1", "2", "3", "4"]
    assert question.origin == Origin.GENERATED
