"""
Static HTML fetch (served from the cache when possible).
"""
import logging

from crawler.html_fetch import HtmlFetcher
from pipeline.models import Context, Signal
from pipeline.steps.base import Step

logger = logging.getLogger(__name__)


def _size(text):
    return len(text.encode('utf-8')) if text else None


class FetchHtml(Step):
    name = "html_fetch"

    def __init__(self, html_fetcher: HtmlFetcher):
        self.html_fetcher = html_fetcher

    async def call(self, ctx: Context) -> Signal:
        async def fetch(event):
            result = await self.html_fetcher.fetch(ctx.url, board_type=ctx.board_type, use_cache=ctx.use_cache)
            event.set_output(
                success=result['success'],
                html_size=_size(result['html_content']),
                cleaned_html_size=_size(result['cleaned_html']),
                cached=result['from_cache'],
                http_status=result['http_status'],
                error=result['error'],
            )
            return result

        result = await ctx.event_recorder.record("html_fetch", {'url': ctx.url, 'use_cache': ctx.use_cache}, fetch)

        if not result['success']:
            error = result['error'] or "Failed to fetch HTML"
            ctx.event_recorder.record_failure(error, error_type="html_fetch_failed")
            ctx.lifecycle.fail(ctx, "html_fetch", error)
            return self.stop_failure()

        ctx.html_content = result['html_content']
        ctx.cleaned_html = result['cleaned_html']
        ctx.from_cache = result['from_cache']
        ctx.fetch_mode = result.get('fetch_mode') or 'static'
        return self.continue_()
