"""
Opportunity Board - Debounced Filter Input Tests
================================================
"""

import asyncio

import pytest_asyncio

from opportunity_board.core.filter_input import DebouncedFilterInput

DELAY = 0.01


@pytest_asyncio.fixture
async def committed():
    values: list[str] = []
    yield values


@pytest_asyncio.fixture
async def text_input(committed):
    text_input = DebouncedFilterInput(delay=DELAY, on_commit=committed.append)
    yield text_input
    await text_input.aclose()


class TestDebounce:
    """Tests for DebouncedFilterInput."""

    async def test_value_trails_raw_until_quiet(self, text_input, committed):
        text_input.set("acme")

        assert text_input.raw == "acme"
        assert text_input.value == ""
        assert text_input.pending

        await asyncio.sleep(DELAY * 5)

        assert text_input.value == "acme"
        assert not text_input.pending
        assert committed == ["acme"]

    async def test_typing_restarts_timer(self, text_input, committed):
        for raw in ("a", "ac", "acm", "acme"):
            text_input.set(raw)
            await asyncio.sleep(0)

        await asyncio.sleep(DELAY * 5)

        assert committed == ["acme"]

    async def test_flush_commits_immediately(self, text_input, committed):
        text_input.set("  <b>Globex</b> ")

        assert text_input.flush() == "Globex"
        assert committed == ["Globex"]
        assert not text_input.pending

    async def test_unchanged_value_is_not_recommitted(self, text_input, committed):
        text_input.set("acme")
        text_input.flush()
        text_input.set("acme ")
        text_input.flush()

        assert committed == ["acme"]

    async def test_aclose_drops_pending_input(self, text_input, committed):
        text_input.set("acme")
        await text_input.aclose()
        await asyncio.sleep(DELAY * 5)

        assert committed == []
        assert text_input.value == ""
