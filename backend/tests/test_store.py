"""Tests for InMemorySequenceStore versioned writes."""

from datetime import datetime, timedelta, timezone

import pytest

from channelflow.exceptions import StoreConflictError
from channelflow.models.campaign import CampaignRun, RunStatus
from channelflow.models.event import Event
from channelflow.models.funnel import LeadFunnelState
from channelflow.models.journal import DispatchAttempt, DispatchOutcome

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _run(run_id="run-1", **kwargs):
    return CampaignRun(**{"run_id": run_id, "campaign_id": "c", "target_id": "t", "started_at": T0, **kwargs})


class TestRuns:
    @pytest.mark.asyncio
    async def test_update_bumps_version(self, store):
        run = await store.create_run(_run())

        run.status = RunStatus.RUNNING
        updated = await store.update_run(run, expected_version=0)

        assert updated.version == 1
        assert (await store.get_run("run-1")).status == RunStatus.RUNNING

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, store):
        run = await store.create_run(_run())
        await store.update_run(run, 0)

        with pytest.raises(StoreConflictError):
            await store.update_run(run, 0)

    @pytest.mark.asyncio
    async def test_duplicate_run_id_conflicts(self, store):
        await store.create_run(_run())

        with pytest.raises(StoreConflictError):
            await store.create_run(_run())

    @pytest.mark.asyncio
    async def test_returned_objects_are_copies(self, store):
        run = await store.create_run(_run())
        run.current_step_index = 3

        assert (await store.get_run("run-1")).current_step_index == 0

    @pytest.mark.asyncio
    async def test_list_runs_filters_and_orders(self, store):
        await store.create_run(_run("late", started_at=T0 + timedelta(days=1), status=RunStatus.RUNNING))
        await store.create_run(_run("early", status=RunStatus.RUNNING))
        await store.create_run(_run("done", status=RunStatus.COMPLETED))

        running = await store.list_runs(status=RunStatus.RUNNING)

        assert [r.run_id for r in running] == ["early", "late"]
        assert [r.run_id for r in await store.list_runs(target_id="other")] == []


class TestLeadStates:
    @pytest.mark.asyncio
    async def test_create_then_update(self, store):
        state = LeadFunnelState(lead_id="l", funnel_id="f", current_stage_name="lead")

        created = await store.put_lead_state(state, None)
        created.current_stage_name = "trial"
        updated = await store.put_lead_state(created, created.version)

        assert created.version == 0
        assert updated.version == 1

    @pytest.mark.asyncio
    async def test_concurrent_create_conflicts(self, store):
        state = LeadFunnelState(lead_id="l", funnel_id="f", current_stage_name="lead")
        await store.put_lead_state(state, None)

        with pytest.raises(StoreConflictError):
            await store.put_lead_state(state, None)

    @pytest.mark.asyncio
    async def test_update_of_missing_state_conflicts(self, store):
        state = LeadFunnelState(lead_id="l", funnel_id="f", current_stage_name="lead")

        with pytest.raises(StoreConflictError):
            await store.put_lead_state(state, 0)


class TestEventsAndJournal:
    @pytest.mark.asyncio
    async def test_record_event_once(self, store):
        event = Event(lead_id="l", trigger_id="signup", occurred_at=T0)

        assert await store.record_event(event) is True
        assert await store.record_event(event) is False

    @pytest.mark.asyncio
    async def test_forgotten_event_can_be_recorded_again(self, store):
        event = Event(lead_id="l", trigger_id="signup", occurred_at=T0)
        await store.record_event(event)

        await store.forget_event(event)

        assert await store.record_event(event) is True

    @pytest.mark.asyncio
    async def test_attempts_listed_per_run(self, store):
        for run_id, attempt in (("a", 1), ("b", 1), ("a", 2)):
            await store.append_attempt(
                DispatchAttempt(run_id=run_id, campaign_id="c", step_index=0, attempt=attempt,
                                channel="email", outcome=DispatchOutcome.TRANSIENT_FAILURE)
            )

        assert [a.attempt for a in await store.list_attempts("a")] == [1, 2]
