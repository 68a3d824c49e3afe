"""Tests for the session transport base class."""

import asyncio

import pytest

from agentloops.transport.base import (
    SessionBusyError,
    TransportError,
    TurnCompleted,
    TurnFailed,
)


class TestSessionTransport:
    """Tests for channel delivery and session ownership."""

    @pytest.mark.asyncio
    async def test_turn_outcome_arrives_on_channel(self, scripted_transport) -> None:
        scripted_transport.script("s1", "hello")

        await scripted_transport.send("s1", "do it")
        event = await scripted_transport.channel("s1").get()

        assert event == TurnCompleted(text="hello")
        assert scripted_transport.prompts["s1"] == ["do it"]

    @pytest.mark.asyncio
    async def test_failed_turn_becomes_turn_failed(self, scripted_transport) -> None:
        scripted_transport.script("s1", RuntimeError("agent crashed"))

        await scripted_transport.send("s1", "do it")
        event = await scripted_transport.channel("s1").get()

        assert isinstance(event, TurnFailed)
        assert event.error == "agent crashed"

    @pytest.mark.asyncio
    async def test_channels_are_per_session(self, scripted_transport) -> None:
        assert scripted_transport.channel("a") is scripted_transport.channel("a")
        assert scripted_transport.channel("a") is not scripted_transport.channel("b")

    @pytest.mark.asyncio
    async def test_user_input_refused_while_owned(self, scripted_transport) -> None:
        scripted_transport.claim("s1")

        with pytest.raises(SessionBusyError):
            await scripted_transport.submit_user_input("s1", "hi")
        assert scripted_transport.prompts["s1"] == []

        scripted_transport.release("s1")
        scripted_transport.script("s1", "hi back")
        await scripted_transport.submit_user_input("s1", "hi")
        assert await scripted_transport.channel("s1").get() == TurnCompleted(text="hi back")

    def test_double_claim(self, scripted_transport) -> None:
        scripted_transport.claim("s1")
        with pytest.raises(SessionBusyError):
            scripted_transport.claim("s1")

    @pytest.mark.asyncio
    async def test_clear_context_wraps_errors(self, scripted_transport) -> None:
        await scripted_transport.clear_context("s1")
        assert scripted_transport.resets == ["s1"]

        scripted_transport.fail_reset = True
        with pytest.raises(TransportError):
            await scripted_transport.clear_context("s1")

    @pytest.mark.asyncio
    async def test_claim_starts_with_empty_channel(self, scripted_transport) -> None:
        scripted_transport.channel("s1").put_nowait(TurnCompleted(text="left over"))

        scripted_transport.claim("s1")

        assert scripted_transport.channel("s1").empty()

    @pytest.mark.asyncio
    async def test_release_cancels_uncollected_turn(self, scripted_transport) -> None:
        scripted_transport.gate = asyncio.Event()
        scripted_transport.script("s1", "late reply")
        scripted_transport.claim("s1")
        await scripted_transport.send("s1", "do it")
        while not scripted_transport.prompts["s1"]:
            await asyncio.sleep(0)

        scripted_transport.release("s1")
        scripted_transport.gate.set()
        for _ in range(5):
            await asyncio.sleep(0)

        assert scripted_transport.channel("s1").empty()
        assert scripted_transport.replies["s1"] == ["late reply"]
