"""Tests for the Celery task bodies."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from channelflow.exceptions import TransientChannelError
from channelflow.models.campaign import CampaignDefinition, CampaignRun, CampaignStep, RunStatus
from channelflow.tasks import ingest_event_task, run_tick


class TestRunTick:
    @pytest.mark.asyncio
    async def test_recovers_and_dispatches_due_runs(self, services, store, fake_channels, start):
        await store.save_campaign(
            CampaignDefinition(campaign_id="c", name="c", steps=[CampaignStep(delay_days=0, template_id="hello")])
        )
        for run_id in ("ok", "retry"):
            await store.create_run(
                CampaignRun(run_id=run_id, campaign_id="c", target_id=run_id, started_at=start - timedelta(hours=1),
                            status=RunStatus.RUNNING)
            )
        fake_channels["email"].fail_with(TransientChannelError("email", "429"))

        summary = await run_tick(services)

        assert summary["queued"] == 2
        assert summary["dispatched"] == 2
        assert summary["success"] == 1
        assert summary["transient_failure"] == 1

    @pytest.mark.asyncio
    async def test_nothing_due(self, services):
        summary = await run_tick(services)

        assert summary == {
            "queued": 0,
            "dispatched": 0,
            "skipped": 0,
            "success": 0,
            "transient_failure": 0,
            "permanent_failure": 0,
        }


class TestIngestEventTask:
    def test_runs_ingest_with_worker_services(self, services):
        services.funnels.ingest = AsyncMock(return_value=[])

        class Context:
            async def __aenter__(self):
                return services

            async def __aexit__(self, *exc):
                return False

        with patch("channelflow.tasks.worker_services", return_value=Context()):
            result = ingest_event_task.run({"lead_id": "lead-1", "trigger_id": "signup"})

        assert result == {"lead_id": "lead-1", "trigger_id": "signup", "stages": {}}
        event = services.funnels.ingest.await_args.args[0]
        assert event.trigger_id == "signup"


class TestCeleryConfig:
    def test_tasks_acknowledged_after_completion(self):
        from channelflow.celery_config import celery_app

        assert celery_app.conf.task_acks_late is True
        assert celery_app.conf.worker_prefetch_multiplier == 1
        assert celery_app.conf.accept_content == ["json"]
