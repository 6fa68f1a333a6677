"""
robots.txt and per-domain spacing, checked before any page request.
"""
import logging

from core.domain_limits import DomainRateLimiter
from core.robots import RobotsChecker
from pipeline.models import Context, Signal
from pipeline.steps.base import Step

logger = logging.getLogger(__name__)

DISALLOWED_MESSAGE = "Scraping not allowed by robots.txt"


class CheckPermissions(Step):
    name = "permission_check"

    def __init__(self, robots: RobotsChecker, rate_limiter: DomainRateLimiter):
        self.robots = robots
        self.rate_limiter = rate_limiter

    async def call(self, ctx: Context) -> Signal:
        if not ctx.settings.politeness_enabled:
            ctx.event_recorder.record_skipped("permission_check", "politeness_disabled")
            return self.continue_()

        domain = ctx.attempt.domain

        async def check(event):
            info = await self.robots.get_robots_info(ctx.url)
            wait = self.rate_limiter.wait_time(domain)
            event.set_output(
                allowed=info['allowed'],
                crawl_delay=info['crawl_delay'],
                robots_cached=info['cached'],
                rate_limited=wait > 0,
                wait_seconds=round(wait, 3),
            )
            return info

        info = await ctx.event_recorder.record("permission_check", {'url': ctx.url, 'domain': domain}, check)

        if not info['allowed']:
            logger.warning(f"[permissions] robots.txt disallows {ctx.url}")
            ctx.event_recorder.record_failure(DISALLOWED_MESSAGE, error_type="robots_disallowed")
            ctx.lifecycle.fail(ctx, "permission_check", DISALLOWED_MESSAGE)
            return self.stop_failure()

        await self.rate_limiter.wait_if_needed(domain, crawl_delay=info['crawl_delay'])
        self.rate_limiter.record_request(domain)
        return self.continue_()
