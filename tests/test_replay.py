"""
Tests for hookgate/services/replay.py, hookgate/services/provider_sync.py
and scripts/sync_providers.py.
"""
import uuid
import pytest
from sqlalchemy import select

from hookgate.models.incoming_event import (
    ActionStatus,
    DedupState,
    EventStatus,
    IncomingEvent,
    IncomingEventAction,
)
from hookgate.models.provider import Provider
from hookgate.models.task_queue import TaskQueue
from hookgate.services.provider_sync import sync_providers
from hookgate.services.replay import EventNotFound, replay_event


class TestReplay:
    async def test_requeues_failed_actions_only(self, db, session_factory):
        event = IncomingEvent(
            provider="stripe", external_id="evt_1", event_type="charge.succeeded",
            payload={}, status=EventStatus.PARTIALLY_PROCESSED,
        )
        db.add(event)
        await db.flush()
        failed = IncomingEventAction(
            incoming_event_id=event.id, handler="send_receipt", status=ActionStatus.FAILED,
            attempt_count=5, error_message="SMTPError: boom",
        )
        done = IncomingEventAction(
            incoming_event_id=event.id, handler="record_charge", status=ActionStatus.PROCESSED, attempt_count=1,
        )
        db.add_all([failed, done])
        await db.commit()

        requeued = await replay_event(db, event.id)

        assert requeued == [failed.id]
        async with session_factory() as session:
            saved_event = await session.get(IncomingEvent, event.id)
            assert saved_event.dedup_state == DedupState.REPLAYED
            assert saved_event.status == EventStatus.PROCESSING

            saved_failed = await session.get(IncomingEventAction, failed.id)
            assert saved_failed.status == ActionStatus.PENDING
            assert saved_failed.attempt_count == 0
            assert saved_failed.error_message is None

            saved_done = await session.get(IncomingEventAction, done.id)
            assert saved_done.status == ActionStatus.PROCESSED
            assert saved_done.attempt_count == 1

            tasks = (await session.execute(select(TaskQueue))).scalars().all()
            assert [t.payload["action_id"] for t in tasks] == [str(failed.id)]

    async def test_nothing_failed_keeps_status(self, db):
        event = IncomingEvent(
            provider="stripe", external_id="evt_1", event_type="x", payload={}, status=EventStatus.PROCESSED,
        )
        db.add(event)
        await db.commit()

        assert await replay_event(db, str(event.id)) == []
        assert event.status == EventStatus.PROCESSED
        assert event.dedup_state == DedupState.REPLAYED

    async def test_unknown_event(self, db):
        with pytest.raises(EventNotFound):
            await replay_event(db, uuid.uuid4())


class TestProviderSync:
    async def test_creates_with_generated_token(self, db):
        result = await sync_providers(db, [
            {"name": "Stripe", "verifier": "stripe", "signing_secret": "ENV[STRIPE_WEBHOOK_SECRET]"},
        ])
        assert result == {"created": ["stripe"], "updated": []}

        provider = (await db.execute(select(Provider))).scalar_one()
        assert provider.name == "stripe"
        assert provider.verifier == "stripe"
        assert provider.signing_secret == "ENV[STRIPE_WEBHOOK_SECRET]"
        assert len(provider.token) >= 32

    async def test_update_keeps_token(self, db):
        await sync_providers(db, [{"name": "acme", "rate_limit_requests": 10}])
        token = (await db.execute(select(Provider))).scalar_one().token

        result = await sync_providers(db, [{"name": "acme", "rate_limit_requests": 50, "active": False}])

        assert result == {"created": [], "updated": ["acme"]}
        provider = (await db.execute(select(Provider))).scalar_one()
        assert provider.token == token
        assert provider.rate_limit_requests == 50
        assert provider.active is False

    async def test_supplied_token_replaces(self, db):
        await sync_providers(db, [{"name": "acme"}])
        await sync_providers(db, [{"name": "acme", "token": "tok_rotated"}])
        assert (await db.execute(select(Provider))).scalar_one().token == "tok_rotated"

    async def test_missing_name(self, db):
        with pytest.raises(ValueError):
            await sync_providers(db, [{"verifier": "stripe"}])

    async def test_resolves_env_secret(self, monkeypatch):
        monkeypatch.setenv("ACME_SECRET", "s3cret")
        provider = Provider(name="acme", token="t", signing_secret="ENV[ACME_SECRET]")
        assert provider.resolve_signing_secret() == "s3cret"
        monkeypatch.delenv("ACME_SECRET")
        assert provider.resolve_signing_secret() is None


class TestLoadDefinitions:
    def test_list_and_wrapped_forms(self, tmp_path):
        from scripts.sync_providers import load_definitions

        listed = tmp_path / "listed.json"
        listed.write_text('[{"name": "stripe"}]')
        wrapped = tmp_path / "wrapped.json"
        wrapped.write_text('{"providers": [{"name": "square"}]}')

        assert load_definitions(str(listed)) == [{"name": "stripe"}]
        assert load_definitions(str(wrapped)) == [{"name": "square"}]

    def test_rejects_other_shapes(self, tmp_path):
        from scripts.sync_providers import load_definitions

        bad = tmp_path / "bad.json"
        bad.write_text('"stripe"')
        with pytest.raises(ValueError):
            load_definitions(str(bad))
