"""Tests for live reply streaming into AI cards."""

import asyncio
from typing import Optional

import pytest

from dingtalk_bridge.chat import ERROR_MESSAGE, ReplyStreamer
from dingtalk_bridge.errors import ApiError
from dingtalk_bridge.history import ConversationHistory
from dingtalk_bridge.models.card import CardInstance
from dingtalk_bridge.outbound import OutboundTarget, SendResult

TARGET = OutboundTarget(conversation_id="cidD", user_id="u1")


class FakeCards:
    def __init__(self, create_ok: bool = True, fail_updates: bool = False, fail_finish: bool = False):
        self.create_ok = create_ok
        self.fail_updates = fail_updates
        self.fail_finish = fail_finish
        self.updates: list[str] = []
        self.finished: list[str] = []

    async def create_card(self, conversation_id: str, is_group: bool) -> Optional[CardInstance]:
        return CardInstance(card_instance_id="card_1") if self.create_ok else None

    async def stream_content(self, card: CardInstance, content: str, finalize: bool = False) -> None:
        if self.fail_updates:
            raise ApiError(500, "card update failed")
        self.updates.append(content)

    async def finish_card(self, card: CardInstance, content: str) -> None:
        card.finalized = True
        if self.fail_finish:
            raise ApiError(500, "card finish failed")
        self.finished.append(content)


class FakeSender:
    def __init__(self):
        self.texts: list[str] = []

    async def send_text(self, target, text):
        self.texts.append(text)
        return SendResult(conversation_id=target.conversation_id)

    async def send_markdown(self, target, title, text):
        raise AssertionError("not used")

    async def send_card(self, target, card):
        raise AssertionError("not used")


class StepClock:
    def __init__(self, step: float = 0.0):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


async def chunks(*parts: str, fail_after: bool = False):
    for part in parts:
        yield part
    if fail_after:
        raise RuntimeError("agent stream broke")


def make_streamer(cards=None, clock=None):
    sender = FakeSender()
    history = ConversationHistory()
    streamer = ReplyStreamer(cards, sender, history, update_interval=0.3, clock=clock or StepClock())
    return streamer, sender, history


@pytest.mark.asyncio
async def test_throttled_updates_then_finalize():
    cards = FakeCards()
    streamer, sender, history = make_streamer(cards)

    result = await streamer.run(TARGET, "s1", chunks("Hel", "lo", " world"))

    assert cards.updates == ["Hel"]
    assert cards.finished == ["Hello world"]
    assert sender.texts == []
    assert result.used_card and result.delivered
    assert result.updates == 1
    assert [(m.role, m.content) for m in history.get("s1")] == [("assistant", "Hello world")]


@pytest.mark.asyncio
async def test_every_chunk_updates_when_interval_elapses():
    cards = FakeCards()
    streamer, _, _ = make_streamer(cards, clock=StepClock(step=0.5))
    await streamer.run(TARGET, "s1", chunks("a", "b", "c"))
    assert cards.updates == ["a", "ab", "abc"]
    assert cards.finished == ["abc"]


@pytest.mark.asyncio
async def test_no_card_sends_single_message():
    cards = FakeCards(create_ok=False)
    streamer, sender, _ = make_streamer(cards)

    result = await streamer.run(TARGET, "s1", chunks("Hel", "lo", " world"))

    assert sender.texts == ["Hello world"]
    assert cards.updates == []
    assert not result.used_card
    assert result.delivered


@pytest.mark.asyncio
async def test_without_card_service_sends_single_message():
    streamer, sender, _ = make_streamer(None)
    await streamer.run(TARGET, "s1", chunks("hi"))
    assert sender.texts == ["hi"]


@pytest.mark.asyncio
async def test_card_update_failure_still_finishes_card():
    cards = FakeCards(fail_updates=True)
    streamer, sender, _ = make_streamer(cards, clock=StepClock(step=0.5))

    result = await streamer.run(TARGET, "s1", chunks("Hel", "lo"))

    assert result.used_card and result.delivered
    assert result.updates == 0
    assert cards.finished == ["Hello"]
    assert sender.texts == []


@pytest.mark.asyncio
async def test_card_finish_failure_falls_back_to_message():
    cards = FakeCards(fail_updates=True, fail_finish=True)
    streamer, sender, _ = make_streamer(cards)

    result = await streamer.run(TARGET, "s1", chunks("Hel", "lo"))

    assert result.delivered
    assert sender.texts == ["Hello"]


@pytest.mark.asyncio
async def test_stream_error_finishes_card_with_error_text():
    cards = FakeCards()
    streamer, sender, history = make_streamer(cards)

    result = await streamer.run(TARGET, "s1", chunks("Hel", fail_after=True))

    assert cards.finished == [ERROR_MESSAGE]
    assert result.error == "agent stream broke"
    assert result.content == "Hel"
    assert [m.content for m in history.get("s1")] == ["Hel"]


@pytest.mark.asyncio
async def test_stream_error_without_card_sends_error_text():
    cards = FakeCards(create_ok=False)
    streamer, sender, history = make_streamer(cards)

    result = await streamer.run(TARGET, "s1", chunks(fail_after=True))

    assert sender.texts == [ERROR_MESSAGE]
    assert result.error
    assert history.get("s1") == []


@pytest.mark.asyncio
async def test_empty_reply_sends_nothing_without_card():
    cards = FakeCards(create_ok=False)
    streamer, sender, _ = make_streamer(cards)
    result = await streamer.run(TARGET, "s1", chunks())
    assert sender.texts == []
    assert not result.delivered


@pytest.mark.asyncio
async def test_cancelled_turn_finishes_card():
    cards = FakeCards()
    streamer, _, _ = make_streamer(cards)
    started = asyncio.Event()

    async def slow():
        yield "partial"
        started.set()
        await asyncio.sleep(60)
        yield "never"

    task = asyncio.create_task(streamer.run(TARGET, "s1", slow()))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert cards.finished == ["partial"]


@pytest.mark.asyncio
async def test_reply_once_uses_card():
    cards = FakeCards()
    streamer, sender, _ = make_streamer(cards)
    assert await streamer.reply_once(TARGET, "fixed")
    assert cards.finished == ["fixed"]
    assert sender.texts == []
