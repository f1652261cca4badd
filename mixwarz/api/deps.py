"""
FastAPI dependencies: store, settings, collaborators and the calling user.

Identity is handled upstream; the caller's user id arrives in the
X-User-Id header.
"""

import uuid
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from mixwarz.config import Settings, get_settings
from mixwarz.engines.voting import VotingService
from mixwarz.kernel.clock import Clock, SystemClock
from mixwarz.kernel.files import FileUrlService, SignedUrlService
from mixwarz.kernel.notifications import LoggingNotificationSink, NotificationSink
from mixwarz.kernel.store.base import CompetitionStore
from mixwarz.orchestration.queries import CompetitionQueries
from mixwarz.orchestration.transitions import TransitionService

USER_ID_HEADER = "X-User-Id"


def get_store(request: Request) -> CompetitionStore:
    """The store the application was started with."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Competition store is not available",
        )
    return store


def get_app_settings() -> Settings:
    return get_settings()


def get_clock(request: Request) -> Clock:
    return getattr(request.app.state, "clock", None) or SystemClock()


def get_notifier(request: Request) -> NotificationSink:
    return getattr(request.app.state, "notifier", None) or LoggingNotificationSink()


Store = Annotated[CompetitionStore, Depends(get_store)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
AppClock = Annotated[Clock, Depends(get_clock)]
Notifier = Annotated[NotificationSink, Depends(get_notifier)]


def get_file_urls(settings: AppSettings, clock: AppClock) -> FileUrlService:
    return SignedUrlService(
        base_url=settings.file_base_url,
        secret=settings.file_url_secret,
        ttl_seconds=settings.file_url_ttl_seconds,
        clock=clock,
    )


FileUrls = Annotated[FileUrlService, Depends(get_file_urls)]


async def get_current_user_id(
    x_user_id: Annotated[Optional[str], Header(alias=USER_ID_HEADER)] = None,
) -> uuid.UUID:
    """Get the calling user's id or raise 401."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user id",
        )


CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]


def get_queries(store: Store, files: FileUrls) -> CompetitionQueries:
    return CompetitionQueries(store, files)


def get_voting_service(store: Store, settings: AppSettings, clock: AppClock) -> VotingService:
    return VotingService(store, settings, clock)


def get_transition_service(
    store: Store,
    settings: AppSettings,
    clock: AppClock,
    notifier: Notifier,
) -> TransitionService:
    return TransitionService(store, settings, clock, notifier)


Queries = Annotated[CompetitionQueries, Depends(get_queries)]
Voting = Annotated[VotingService, Depends(get_voting_service)]
Transitions = Annotated[TransitionService, Depends(get_transition_service)]
