"""
Dependency Injection Configuration

Services are constructed once in the application factory and stored on
`app.state`; these providers hand them to route handlers, so tests can swap in
their own instances without touching module-level state.
"""
from typing import Annotated

from fastapi import Depends, Request

from epg_catchup.services.catchup_service import CatchupResolver
from epg_catchup.services.epg_load_service import EpgService
from epg_catchup.services.scheduler_service import StalenessScheduler


def get_epg_service(request: Request) -> EpgService:
    """EPG load service registered for this application."""
    return request.app.state.epg_service


def get_catchup_resolver(request: Request) -> CatchupResolver:
    """Catchup resolver registered for this application."""
    return request.app.state.catchup_resolver


def get_scheduler(request: Request) -> StalenessScheduler | None:
    """Staleness scheduler, if one was started."""
    return getattr(request.app.state, "scheduler", None)


EpgServiceDep = Annotated[EpgService, Depends(get_epg_service)]
CatchupResolverDep = Annotated[CatchupResolver, Depends(get_catchup_resolver)]
SchedulerDep = Annotated[StalenessScheduler | None, Depends(get_scheduler)]
