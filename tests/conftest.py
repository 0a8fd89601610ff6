"""
Shared fixtures: scripted remote sources and an in-memory filter store.
"""
import asyncio
import random

import pytest
import pytest_asyncio

from prepstream.errors import NetworkFailure
from prepstream.feed_manager import FeedController
from prepstream.schemas import Filters, Origin, Question
from prepstream.templates import ProceduralGenerator


def make_generated(filters: Filters, n: int, subject: str = "Physics"):
    return [
        Question(
            text=f"Generated question {i + 1}",
            options=["a", "b", "c", "d"],
            correct_index=i % 4,
            solution="because",
            subject=subject if filters.is_mixed else filters.subject,
            exam_type=filters.exam,
            difficulty=filters.difficulty,
            origin=Origin.GENERATED,
        )
        for i in range(n)
    ]


class ScriptedRemote:
    """Remote source whose requests stay pending until the test resolves them."""

    def __init__(self):
        self.calls = []

    async def request_batch(self, filters, count):
        future = asyncio.get_running_loop().create_future()
        self.calls.append((filters, count, future))
        return await future

    def succeed(self, call_index, questions):
        self.calls[call_index][2].set_result(questions)

    def fail(self, call_index, exc=None):
        self.calls[call_index][2].set_exception(exc or NetworkFailure("unreachable"))


class FailingRemote:
    def __init__(self):
        self.calls = 0

    async def request_batch(self, filters, count):
        self.calls += 1
        raise NetworkFailure("service down")


class MemoryFilterStore:
    def __init__(self, initial=None, fail_writes=False, read_gate=None):
        self.saved = {}
        self.initial = initial
        self.fail_writes = fail_writes
        self.read_gate = read_gate
        self.closed = False

    async def get_filters(self, feed_id):
        if self.read_gate is not None:
            await self.read_gate.wait()
        return self.initial or Filters()

    async def set_filters(self, feed_id, filters):
        if self.fail_writes:
            raise ConnectionError("store offline")
        self.saved[feed_id] = filters

    async def close(self):
        self.closed = True


@pytest.fixture
def jee_mixed():
    return Filters(exam="JEE", subject="Mix", difficulty=3, language="English")


@pytest.fixture
def generator():
    return ProceduralGenerator(rng=random.Random(1234))


@pytest.fixture
def remote():
    return ScriptedRemote()


@pytest.fixture
def store():
    return MemoryFilterStore()


@pytest.fixture
def changes():
    return []


@pytest_asyncio.fixture
async def feed(generator, remote, store, changes):
    controller = FeedController(generator, remote, store, "test-feed", on_change=changes.append)
    yield controller
    await controller.close()
