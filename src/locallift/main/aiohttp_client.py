import time

import aiohttp

from locallift.main.logging import get_logger

logger = get_logger(__name__)

SLOW_DNS_THRESHOLD_MS = 2000


class AioHttpClient:
    """Process-wide pooled client session shared by the external API clients."""

    session: aiohttp.ClientSession = None

    def _create_trace_config(self) -> aiohttp.TraceConfig:
        trace = aiohttp.TraceConfig()

        async def on_request_start(session, trace_config_ctx, params):
            trace_config_ctx._request_start_time = time.perf_counter()

        async def on_request_end(session, trace_config_ctx, params):
            if not hasattr(trace_config_ctx, "_request_start_time"):
                return
            duration_ms = (time.perf_counter() - trace_config_ctx._request_start_time) * 1000
            logger.debug(
                f"{params.method} {params.url.host} -> {params.response.status}",
                extra={
                    "event": "external_request",
                    "host": params.url.host,
                    "status_code": params.response.status,
                    "duration_ms": int(duration_ms),
                },
            )

        async def on_dns_start(session, trace_config_ctx, params):
            trace_config_ctx._dns_start_time = time.perf_counter()

        async def on_dns_end(session, trace_config_ctx, params):
            if not hasattr(trace_config_ctx, "_dns_start_time"):
                return
            dns_duration_ms = (time.perf_counter() - trace_config_ctx._dns_start_time) * 1000
            if dns_duration_ms > SLOW_DNS_THRESHOLD_MS:
                logger.warning(
                    f"SLOW DNS resolution detected for {params.host}",
                    extra={
                        "event": "dns_slow",
                        "host": params.host,
                        "duration_ms": int(dns_duration_ms),
                        "threshold_ms": SLOW_DNS_THRESHOLD_MS,
                    },
                )

        trace.on_request_start.append(on_request_start)
        trace.on_request_end.append(on_request_end)
        trace.on_dns_resolvehost_start.append(on_dns_start)
        trace.on_dns_resolvehost_end.append(on_dns_end)

        return trace

    def start(self):
        # Per-request timeouts set by the API clients override this
        timeout = aiohttp.ClientTimeout(total=60.0, connect=10.0)

        connector = aiohttp.TCPConnector(
            limit=100,
            limit_per_host=30,
            enable_cleanup_closed=True,
            use_dns_cache=True,
            ttl_dns_cache=300,
        )

        self.session = aiohttp.ClientSession(
            timeout=timeout,
            connector=connector,
            trace_configs=[self._create_trace_config()],
        )

    async def stop(self):
        if self.session is None:
            return
        await self.session.close()
        self.session = None

    def __call__(self) -> aiohttp.ClientSession:
        assert self.session is not None
        return self.session


aiohttp_client = AioHttpClient()
