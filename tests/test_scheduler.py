from __future__ import annotations

import pytest

from core.infra.scheduler import Scheduler


async def job() -> None:
    return None


def test_cron_validation() -> None:
    assert Scheduler.validate_cron_expression("0 */6 * * *")
    assert not Scheduler.validate_cron_expression("every six hours")


def test_interval_job_needs_an_interval() -> None:
    scheduler = Scheduler()

    with pytest.raises(ValueError):
        scheduler.add_interval_job(job, job_id="nothing")


def test_invalid_cron_is_rejected() -> None:
    scheduler = Scheduler()

    with pytest.raises(ValueError):
        scheduler.add_cron_job(job, "61 * * * *", job_id="bad")


@pytest.mark.asyncio
async def test_jobs_lifecycle() -> None:
    scheduler = Scheduler(timezone="America/Porto_Velho")
    await scheduler.start()
    try:
        assert scheduler.running
        scheduler.add_cron_job(job, "0 */6 * * *", job_id="scrape_all")
        scheduler.add_interval_job(job, hours=24, job_id="structure_monitor")

        jobs = scheduler.list_jobs()
        assert set(jobs) == {"scrape_all", "structure_monitor"}
        assert jobs["scrape_all"]["next_run"] is not None

        # re-adding replaces instead of duplicating
        scheduler.add_interval_job(job, hours=12, job_id="structure_monitor")
        assert len(scheduler.list_jobs()) == 2

        assert scheduler.remove_job("structure_monitor")
        assert not scheduler.remove_job("structure_monitor")
        assert list(scheduler.list_jobs()) == ["scrape_all"]
    finally:
        await scheduler.stop()

    assert not scheduler.running
