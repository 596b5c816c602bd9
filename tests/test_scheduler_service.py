"""
Tests for the periodic staleness check scheduler.
"""
import pytest

from epg_catchup.services.scheduler_service import StalenessScheduler


class StubService:
    """Records staleness checks; optionally fails."""

    def __init__(self, result=True, error=None):
        self.result = result
        self.error = error
        self.checks = 0

    async def check_staleness(self):
        self.checks += 1
        if self.error:
            raise self.error
        return self.result


class TestStalenessScheduler:
    """Test scheduler lifecycle and the check job."""

    async def test_start_and_shutdown(self):
        scheduler = StalenessScheduler(StubService(), "*/15 * * * *")
        scheduler.start()
        try:
            assert scheduler.running is True
            assert scheduler.get_next_run_time() is not None
        finally:
            scheduler.shutdown()

        assert scheduler.running is False
        assert scheduler.get_next_run_time() is None

    async def test_start_twice_keeps_one_scheduler(self):
        scheduler = StalenessScheduler(StubService())
        scheduler.start()
        try:
            first = scheduler.scheduler
            scheduler.start()
            assert scheduler.scheduler is first
        finally:
            scheduler.shutdown()

    async def test_invalid_cron(self):
        with pytest.raises(ValueError):
            StalenessScheduler(StubService(), "every hour").start()

    async def test_check_job_calls_service(self):
        service = StubService()
        await StalenessScheduler(service)._check_job()
        assert service.checks == 1

    async def test_check_job_errors_are_logged(self):
        service = StubService(error=RuntimeError("boom"))
        await StalenessScheduler(service)._check_job()
        assert service.checks == 1
