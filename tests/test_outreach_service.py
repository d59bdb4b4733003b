"""Tests for threaded outreach sends."""
import asyncio

import pytest

from outreach.services import outreach_service as outreach_module
from outreach.services.gmail_errors import (
    NotConnected,
    RateLimited,
    RefreshRejected,
    SendFailed,
    SendTimeout,
    TokenExpired,
)
from outreach.services.gmail_service import SendResult, build_mime_message
from outreach.services.outreach_service import OutreachService, default_subject
from outreach.services.send_guard import SendDeduplicator, SlidingWindowLimiter
from outreach.services.thread_store import ThreadBinding

from tests.fakes import make_grant


@pytest.fixture
def connected(grant_store, test_user, clock):
    grant_store.upsert(make_grant(test_user.id, clock))
    return test_user


@pytest.mark.asyncio
async def test_first_send_starts_thread_and_reply_stays_in_it(
    outreach_service, sender, thread_store, connected
):
    sender.results = [
        SendResult(message_id="m1", thread_id="t1"),
        SendResult(message_id="m2", thread_id="t1"),
    ]

    first = await outreach_service.send_threaded_message(
        connected.id, "c1", "j1", to="cand@example.com", body="<p>Hello</p>", subject="Intro"
    )
    assert (first.thread_id, first.message_id, first.binding_saved) == ("t1", "m1", True)
    assert thread_store.get("c1", "j1") == ThreadBinding(thread_id="t1", message_id="m1")

    first_message, _ = sender.calls[0]
    assert first_message.thread_id is None
    assert first_message.reply_to_message_id is None
    assert first_message.subject == "Intro"

    second = await outreach_service.send_threaded_message(
        connected.id, "c1", "j1", to="cand@example.com", body="<p>Following up</p>", subject="Ignored"
    )
    assert (second.thread_id, second.message_id) == ("t1", "m2")

    reply, _ = sender.calls[1]
    assert reply.thread_id == "t1"
    assert reply.reply_to_message_id == "m1"
    assert reply.subject is None
    mime = build_mime_message(reply)
    assert mime["In-Reply-To"] == "<m1>"
    assert mime["References"] == "<m1>"

    assert thread_store.get("c1", "j1") == ThreadBinding(thread_id="t1", message_id="m2")


@pytest.mark.asyncio
async def test_threads_are_per_candidate_and_job(outreach_service, sender, connected):
    await outreach_service.send_threaded_message(connected.id, "c1", "j1", to="a@example.com", body="x")
    await outreach_service.send_threaded_message(connected.id, "c1", "j2", to="a@example.com", body="x")

    assert sender.calls[1][0].thread_id is None


@pytest.mark.asyncio
async def test_default_subject_for_new_thread(outreach_service, sender, connected, monkeypatch):
    monkeypatch.setattr(outreach_module.settings, "OUTREACH_SUBJECT_PREFIX", "ITBC")

    await outreach_service.send_threaded_message(
        connected.id,
        "c1",
        "j1",
        to="a@example.com",
        body="Hi",
        candidate_name="Ada Lovelace",
        job_title="Data Engineer",
    )

    assert sender.calls[0][0].subject == "ITBC Data Engineer - Ada Lovelace"


def test_default_subject_falls_back_to_general_position(monkeypatch):
    monkeypatch.setattr(outreach_module.settings, "OUTREACH_SUBJECT_PREFIX", "")
    assert default_subject(None, "Ada") == "General Position - Ada"
    assert default_subject("Data Engineer", None) == "Data Engineer"


@pytest.mark.asyncio
async def test_default_cc_applied(outreach_service, sender, connected, monkeypatch):
    monkeypatch.setattr(outreach_module.settings, "OUTREACH_DEFAULT_CC", "team@example.com")

    await outreach_service.send_threaded_message(connected.id, "c1", "j1", to="a@example.com", body="x")
    await outreach_service.send_threaded_message(
        connected.id, "c2", "j1", to="a@example.com", body="x", cc="boss@example.com"
    )

    assert sender.calls[0][0].cc == "team@example.com"
    assert sender.calls[1][0].cc == "boss@example.com"


@pytest.mark.asyncio
async def test_empty_recipient_or_body_rejected(outreach_service, sender, connected):
    with pytest.raises(ValueError):
        await outreach_service.send_threaded_message(connected.id, "c1", "j1", to=" ", body="x")
    with pytest.raises(ValueError):
        await outreach_service.send_threaded_message(connected.id, "c1", "j1", to="a@example.com", body="")
    assert sender.calls == []


@pytest.mark.asyncio
async def test_send_without_grant_is_not_connected(outreach_service, sender, test_user):
    with pytest.raises(NotConnected):
        await outreach_service.send_threaded_message(test_user.id, "c1", "j1", to="a@example.com", body="x")
    assert sender.calls == []


# =============================================================================
# Refresh-then-retry
# =============================================================================

@pytest.mark.asyncio
async def test_token_expired_refreshes_once_and_retries_once(
    outreach_service, sender, provider, connected
):
    sender.results = [TokenExpired(), SendResult(message_id="m1", thread_id="t1")]

    result = await outreach_service.send_threaded_message(
        connected.id, "c1", "j1", to="a@example.com", body="x"
    )

    assert result.message_id == "m1"
    assert provider.refresh_calls == ["refresh-1"]
    assert [token for _, token in sender.calls] == ["access-1", "access-refreshed"]


@pytest.mark.asyncio
async def test_failed_refresh_surfaces_refresh_rejected(outreach_service, sender, provider, connected):
    sender.results = [TokenExpired()]
    provider.refresh_result = RefreshRejected()

    with pytest.raises(RefreshRejected):
        await outreach_service.send_threaded_message(connected.id, "c1", "j1", to="a@example.com", body="x")

    assert len(provider.refresh_calls) == 1
    assert len(sender.calls) == 1


@pytest.mark.asyncio
async def test_second_token_expired_is_not_retried_again(outreach_service, sender, provider, connected):
    sender.results = [TokenExpired(), TokenExpired(), SendResult(message_id="never", thread_id="t")]

    with pytest.raises(TokenExpired):
        await outreach_service.send_threaded_message(connected.id, "c1", "j1", to="a@example.com", body="x")

    assert len(provider.refresh_calls) == 1
    assert len(sender.calls) == 2


# =============================================================================
# Guards
# =============================================================================

@pytest.mark.asyncio
async def test_identical_sends_within_window_share_one_call(outreach_service, sender, connected, clock):
    first = await outreach_service.send_threaded_message(
        connected.id, "c1", "j1", to="a@example.com", body="same", subject="S"
    )
    clock.advance(5)
    second = await outreach_service.send_threaded_message(
        connected.id, "c1", "j1", to="a@example.com", body="same", subject="S"
    )

    assert len(sender.calls) == 1
    assert second == first


@pytest.mark.asyncio
async def test_concurrent_identical_sends_share_one_call(outreach_service, sender, connected):
    results = await asyncio.gather(
        *(
            outreach_service.send_threaded_message(
                connected.id, "c1", "j1", to="a@example.com", body="same", subject="S"
            )
            for _ in range(3)
        )
    )

    assert len(sender.calls) == 1
    assert len({(r.thread_id, r.message_id) for r in results}) == 1


@pytest.mark.asyncio
async def test_failed_send_is_not_deduplicated(outreach_service, sender, connected):
    sender.results = [SendFailed(details={"status": 500})]

    with pytest.raises(SendFailed):
        await outreach_service.send_threaded_message(connected.id, "c1", "j1", to="a@example.com", body="x")
    result = await outreach_service.send_threaded_message(connected.id, "c1", "j1", to="a@example.com", body="x")

    assert len(sender.calls) == 2
    assert result.message_id == "msg-2"


@pytest.mark.asyncio
async def test_rate_limit_blocks_before_provider_call(
    manager, thread_store, sender, connected, clock
):
    service = OutreachService(
        manager,
        thread_store,
        SendDeduplicator(window_seconds=10, clock=clock),
        SlidingWindowLimiter(limit=2, window_seconds=60),
        send_fn=sender,
    )
    for n in range(2):
        await service.send_threaded_message(connected.id, f"c{n}", "j1", to="a@example.com", body="x")

    with pytest.raises(RateLimited):
        await service.send_threaded_message(connected.id, "c9", "j1", to="a@example.com", body="x")
    assert len(sender.calls) == 2

    service.limiter.reset(str(connected.id))
    await service.send_threaded_message(connected.id, "c9", "j1", to="a@example.com", body="x")
    assert len(sender.calls) == 3


@pytest.mark.asyncio
async def test_binding_write_failure_is_reported_not_raised(
    outreach_service, sender, thread_store, connected, monkeypatch
):
    def broken_upsert(*_args):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(thread_store, "upsert", broken_upsert)

    result = await outreach_service.send_threaded_message(
        connected.id, "c1", "j1", to="a@example.com", body="x"
    )

    assert result.binding_saved is False
    assert result.message_id == "msg-1"


@pytest.mark.asyncio
async def test_slow_send_times_out(manager, thread_store, connected, clock):
    async def slow_send(_message, _token):
        await asyncio.sleep(5)
        return SendResult(message_id="late", thread_id="late")

    service = OutreachService(
        manager,
        thread_store,
        SendDeduplicator(window_seconds=10, clock=clock),
        SlidingWindowLimiter(limit=10, window_seconds=60),
        timeout_seconds=0.05,
        send_fn=slow_send,
    )

    with pytest.raises(SendTimeout):
        await service.send_threaded_message(connected.id, "c1", "j1", to="a@example.com", body="x")

    for task in list(service.dedup._inflight.values()):
        task.cancel()


@pytest.mark.asyncio
async def test_send_finishing_after_timeout_still_binds_thread(manager, thread_store, connected, clock):
    release = asyncio.Event()
    sent = []

    async def late_send(message, _token):
        sent.append(message)
        if len(sent) == 1:
            await release.wait()
            return SendResult(message_id="m1", thread_id="t1")
        return SendResult(message_id="m2", thread_id="t1")

    service = OutreachService(
        manager,
        thread_store,
        SendDeduplicator(window_seconds=10, clock=clock),
        SlidingWindowLimiter(limit=10, window_seconds=60),
        timeout_seconds=0.05,
        send_fn=late_send,
    )

    with pytest.raises(SendTimeout):
        await service.send_threaded_message(connected.id, "c1", "j1", to="a@example.com", body="first")

    # The provider call carries on after the caller gave up
    inflight = list(service.dedup._inflight.values())
    release.set()
    await asyncio.gather(*inflight)

    assert thread_store.get("c1", "j1") == ThreadBinding(thread_id="t1", message_id="m1")

    result = await service.send_threaded_message(
        connected.id, "c1", "j1", to="a@example.com", body="second"
    )
    assert (result.thread_id, result.message_id) == ("t1", "m2")
    assert sent[1].thread_id == "t1"
    assert sent[1].reply_to_message_id == "m1"
    assert sent[1].subject is None
