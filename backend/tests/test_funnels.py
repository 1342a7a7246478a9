"""Tests for FunnelOrchestrator event ingestion."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from channelflow.exceptions import NotFoundError
from channelflow.models.event import Event
from channelflow.models.funnel import FunnelDefinition, Stage

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def funnels(services):
    return services.funnels


@pytest_asyncio.fixture
async def saas(funnels):
    return await funnels.register_funnel(
        FunnelDefinition(
            funnel_id="saas",
            name="SaaS trial",
            stages=[
                Stage(name="lead", triggers={"signup"}, actions=("welcome-mail",)),
                Stage(name="trial", triggers={"trial-started"}, actions=("social:trial-shoutout",)),
                Stage(name="customer", triggers={"paid"}, actions=("analytics:conversion",)),
            ],
        )
    )


@pytest_asyncio.fixture
async def webinar(funnels):
    return await funnels.register_funnel(
        FunnelDefinition(
            funnel_id="webinar",
            name="Webinar",
            stages=[
                Stage(name="registered", triggers={"signup", "webinar-registration"}),
                Stage(name="attended", triggers={"webinar-joined"}, actions=("video:replay-link",)),
            ],
        )
    )


def _event(trigger_id, lead_id="lead-1", funnel_id=None, minutes=0):
    return Event(
        lead_id=lead_id,
        trigger_id=trigger_id,
        funnel_id=funnel_id,
        occurred_at=T0 + timedelta(minutes=minutes),
    )


class TestIngest:
    @pytest.mark.asyncio
    async def test_event_moves_lead_and_runs_actions(self, funnels, saas, fake_channels):
        changed = await funnels.ingest(_event("signup", funnel_id="saas"))

        assert [(s.funnel_id, s.current_stage_name) for s in changed] == [("saas", "lead")]
        assert fake_channels["email"].action_ids == ["welcome-mail"]

    @pytest.mark.asyncio
    async def test_event_without_funnel_matches_every_funnel(self, funnels, saas, webinar):
        changed = await funnels.ingest(_event("signup"))

        assert sorted((s.funnel_id, s.current_stage_name) for s in changed) == [
            ("saas", "lead"),
            ("webinar", "registered"),
        ]

    @pytest.mark.asyncio
    async def test_duplicate_event_runs_actions_once(self, funnels, saas, fake_channels):
        event = _event("signup", funnel_id="saas")

        await funnels.ingest(event)
        again = await funnels.ingest(Event(**event.model_dump()))

        assert again == []
        assert fake_channels["email"].action_ids == ["welcome-mail"]

    @pytest.mark.asyncio
    async def test_earlier_stage_trigger_is_ignored(self, funnels, saas, fake_channels):
        await funnels.ingest(_event("signup", funnel_id="saas"))
        await funnels.ingest(_event("trial-started", funnel_id="saas", minutes=1))

        changed = await funnels.ingest(_event("signup", funnel_id="saas", minutes=2))

        assert changed == []
        assert (await funnels.get_state("lead-1", "saas")).current_stage_name == "trial"
        assert fake_channels["email"].action_ids == ["welcome-mail"]

    @pytest.mark.asyncio
    async def test_lead_can_skip_stages(self, funnels, saas, fake_channels):
        await funnels.ingest(_event("paid", funnel_id="saas"))

        state = await funnels.get_state("lead-1", "saas")
        assert state.current_stage_name == "customer"
        assert fake_channels["analytics"].action_ids == ["conversion"]
        assert fake_channels["email"].calls == []

    @pytest.mark.asyncio
    async def test_redelivered_event_is_applied_after_store_failure(self, funnels, saas, store, fake_channels, monkeypatch):
        put_lead_state = store.put_lead_state
        failures = [RuntimeError("mongo unavailable")]

        async def flaky_put(state, expected_version):
            if failures:
                raise failures.pop()
            return await put_lead_state(state, expected_version)

        monkeypatch.setattr(store, "put_lead_state", flaky_put)
        event = _event("trial-started", funnel_id="saas")

        with pytest.raises(RuntimeError):
            await funnels.ingest(event)
        changed = await funnels.ingest(Event(**event.model_dump()))

        assert [s.current_stage_name for s in changed] == ["trial"]
        assert (await funnels.get_state("lead-1", "saas")).current_stage_name == "trial"
        assert fake_channels["social"].action_ids == ["trial-shoutout"]

    @pytest.mark.asyncio
    async def test_failed_event_key_is_released(self, funnels, saas, store, monkeypatch):
        async def broken_put(state, expected_version):
            raise RuntimeError("mongo unavailable")

        monkeypatch.setattr(store, "put_lead_state", broken_put)

        with pytest.raises(RuntimeError):
            await funnels.ingest(_event("signup", funnel_id="saas"))

        assert await store.record_event(_event("signup", funnel_id="saas")) is True

    @pytest.mark.asyncio
    async def test_unknown_funnel(self, funnels):
        with pytest.raises(NotFoundError):
            await funnels.ingest(_event("signup", funnel_id="missing"))

    @pytest.mark.asyncio
    async def test_unknown_state(self, funnels, saas):
        with pytest.raises(NotFoundError):
            await funnels.get_state("nobody", "saas")


class TestIngestMany:
    @pytest.mark.asyncio
    async def test_events_of_one_lead_apply_in_time_order(self, funnels, saas, fake_channels):
        events = [
            _event("paid", funnel_id="saas", minutes=2),
            _event("signup", funnel_id="saas", minutes=0),
            _event("trial-started", funnel_id="saas", minutes=1),
        ]

        await funnels.ingest_many(events)

        state = await funnels.get_state("lead-1", "saas")
        assert [v.stage_name for v in state.history] == ["lead", "trial", "customer"]
        assert fake_channels["email"].action_ids == ["welcome-mail"]
        assert fake_channels["social"].action_ids == ["trial-shoutout"]
        assert fake_channels["analytics"].action_ids == ["conversion"]

    @pytest.mark.asyncio
    async def test_concurrent_burst_for_one_lead_transitions_once(self, funnels, saas, fake_channels):
        events = [_event("signup", funnel_id="saas", minutes=i) for i in range(10)]

        changed = await funnels.ingest_many(events)

        assert len(changed) == 1
        assert fake_channels["email"].action_ids == ["welcome-mail"]

    @pytest.mark.asyncio
    async def test_many_leads(self, funnels, saas, store):
        events = [_event("signup", lead_id=f"lead-{i}", funnel_id="saas") for i in range(20)]

        changed = await funnels.ingest_many(events)

        assert len(changed) == 20
        assert len(await store.list_lead_states("saas")) == 20
