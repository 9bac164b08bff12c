from datetime import timedelta

from dependency_injector import containers, providers

from locallift.batches.batch_controller import BatchController
from locallift.batches.batch_job_repo import BatchJobRepository
from locallift.batches.batch_models import WorkloadName
from locallift.batches.progress_tracker import ProgressTracker
from locallift.database.database import sessionmanager
from locallift.keyword_ranks.keyword_repo import KeywordRepository
from locallift.keyword_ranks.rank_check_client import build_rank_check_client
from locallift.keyword_ranks.rank_check_workload import (
    RankCheckWorkload,
    build_rank_check_profile,
)
from locallift.main.aiohttp_client import aiohttp_client
from locallift.main.config import Settings, get_settings
from locallift.scheduled_posts.access_tokens import AccessTokenProvider
from locallift.scheduled_posts.gbp_client import GbpClient
from locallift.scheduled_posts.post_publish_workload import (
    PostPublishWorkload,
    build_post_publish_profile,
)
from locallift.scheduled_posts.post_repo import (
    GbpIntegrationRepository,
    ScheduledPostRepository,
)


def _stale_after(settings: Settings) -> timedelta:
    return timedelta(minutes=settings.batch_stale_threshold_minutes)


class Container(containers.DeclarativeContainer):
    """Process-wide wiring. Controllers and the progress tracker are singletons."""

    settings = providers.Callable(get_settings)
    session_factory = providers.Object(sessionmanager.session)
    http_session = providers.Object(aiohttp_client)

    # Batch engine
    batch_job_repo = providers.Singleton(BatchJobRepository, session_factory=session_factory)
    progress_tracker = providers.Singleton(
        ProgressTracker,
        store=batch_job_repo,
        retain_finished=settings.provided.batch_progress_retain_finished,
    )
    stale_after = providers.Callable(_stale_after, settings=settings)

    # Rank checks
    keyword_repo = providers.Singleton(KeywordRepository, session_factory=session_factory)
    rank_check_client = providers.Singleton(
        build_rank_check_client, session=http_session, settings=settings
    )
    rank_check_workload = providers.Singleton(
        RankCheckWorkload,
        repo=keyword_repo,
        client=rank_check_client,
        profile=providers.Callable(build_rank_check_profile, settings=settings),
        item_max_attempts=settings.provided.rank_check_item_max_attempts,
    )
    rank_check_controller = providers.Singleton(
        BatchController,
        workload=rank_check_workload,
        store=batch_job_repo,
        progress=progress_tracker,
        stale_after=stale_after,
    )

    # Post publishing
    scheduled_post_repo = providers.Singleton(
        ScheduledPostRepository, session_factory=session_factory
    )
    gbp_integration_repo = providers.Singleton(
        GbpIntegrationRepository, session_factory=session_factory
    )
    gbp_client = providers.Singleton(
        GbpClient,
        session=http_session,
        api_base_url=settings.provided.gbp_api_base_url,
        token_url=settings.provided.google_token_url,
        client_id=settings.provided.google_client_id,
        client_secret=settings.provided.google_client_secret,
        timeout_seconds=settings.provided.post_publish_timeout_seconds,
    )
    access_tokens = providers.Singleton(
        AccessTokenProvider, integrations=gbp_integration_repo, client=gbp_client
    )
    post_publish_workload = providers.Singleton(
        PostPublishWorkload,
        repo=scheduled_post_repo,
        client=gbp_client,
        tokens=access_tokens,
        profile=providers.Callable(build_post_publish_profile, settings=settings),
    )
    post_publish_controller = providers.Singleton(
        BatchController,
        workload=post_publish_workload,
        store=batch_job_repo,
        progress=progress_tracker,
        stale_after=stale_after,
    )

    batch_controllers = providers.Dict(
        {
            WorkloadName.RANK_CHECKS: rank_check_controller,
            WorkloadName.POST_PUBLISHING: post_publish_controller,
        }
    )
