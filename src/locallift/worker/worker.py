from functools import wraps

from arq.cron import cron

from locallift.main.config import get_settings
from locallift.main.container.container import Container
from locallift.main.logging import get_logger
from locallift.redis.connection import build_arq_redis_settings
from locallift.server.dependencies import lifespan

logger = get_logger(__name__)


class Worker:
    """
    Collects arq functions and cron jobs and owns the worker lifecycle.

    The container is built once on startup and shared by every job, so the
    batch controllers (and their single-flight state) are process-wide.

    Attributes:
        functions (list): Registered functions, enqueued by name.
        cron_jobs (list): Registered cron jobs.
        redis_settings (RedisSettings): Redis settings for the worker.
        retry_jobs (bool): Batches are never retried by arq, failed items
            stay eligible for the next run instead.
        job_timeout (int): Upper bound for one job in seconds.
        max_jobs (int): Maximum number of concurrent jobs.
    """

    def __init__(self):
        settings = get_settings()
        self.functions = []
        self.cron_jobs = []
        self.redis_settings = build_arq_redis_settings(settings)
        self.on_startup = self.startup
        self.on_shutdown = self.shutdown
        self.retry_jobs = False
        self.job_timeout = settings.worker_job_timeout_seconds
        self.max_jobs = settings.worker_max_jobs
        self.health_check_interval = 60

    async def startup(self, ctx):
        ctx["container"] = await lifespan.startup()
        logger.info("Worker started")

    async def shutdown(self, ctx):
        container = ctx.get("container")
        if container is not None:
            await lifespan.shutdown(container)
        logger.info("Worker stopped")

    @staticmethod
    def _container(ctx: dict) -> Container:
        return ctx["container"]

    def function(self):
        def decorator(func):
            @wraps(func)
            async def wrapper(*args):
                ctx, params = args[0], args[1]
                logger.debug(f"Executing {func.__name__} with params {params}")
                return await func(ctx["job_id"], params, container=self._container(ctx))

            self.functions.append(wrapper)
            return wrapper

        return decorator

    def cron_job(self, **decorator_kwargs):
        def decorator(func):
            @wraps(func)
            async def wrapper(*args):
                ctx = args[0]
                logger.debug(f"Executing {func.__name__}")
                return await func(container=self._container(ctx))

            self.cron_jobs.append(cron(wrapper, **decorator_kwargs))
            return wrapper

        return decorator
