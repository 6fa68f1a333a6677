"""
Headless-browser fallback for pages whose static HTML is a JS shell.
"""
import logging
from typing import Optional

from crawler.browser_crawler import RenderedHtmlFetcher
from crawler.html_fetch import HtmlFetcher
from crawler.js_heavy import js_heavy_diagnosis
from pipeline.models import Context, Signal
from pipeline.steps.base import Step

logger = logging.getLogger(__name__)

RENDERED_SHELL_TEXT_LENGTH = 500


class RenderedFallback(Step):
    name = "rendered_fallback"

    def __init__(self, rendered_fetcher: Optional[RenderedHtmlFetcher] = None,
                 html_fetcher: Optional[HtmlFetcher] = None):
        self.rendered_fetcher = rendered_fetcher
        self.html_fetcher = html_fetcher

    async def call(self, ctx: Context) -> Signal:
        diagnosis = js_heavy_diagnosis(ctx.html_content, ctx.cleaned_html)

        if not ctx.settings.js_rendering_enabled:
            ctx.event_recorder.record_skipped("js_heavy_detected", "js_rendering_disabled", dict(
                diagnosis, js_rendering_enabled=False, triggered=False, board_type=ctx.board_type,
            ))
            return self.continue_()

        if not diagnosis['js_heavy']:
            ctx.event_recorder.record_skipped("js_heavy_detected", "not_js_heavy", dict(
                diagnosis, js_rendering_enabled=True, triggered=False,
                board_type=ctx.board_type, fetch_mode=ctx.fetch_mode,
            ))
            return self.continue_()

        ctx.event_recorder.record_simple("js_heavy_detected", status="success", output=dict(
            diagnosis, js_rendering_enabled=True, triggered=True,
            board_type=ctx.board_type, fetch_mode=ctx.fetch_mode,
        ))

        fetcher = self.rendered_fetcher or RenderedHtmlFetcher(ws_endpoint=ctx.settings.playwright_ws_endpoint)

        async def render(event):
            result = await fetcher.fetch(ctx.url, board_type=ctx.board_type)
            rendered_shell = bool(result['success']) and (
                (result.get('cleaned_text_length') or 0) < RENDERED_SHELL_TEXT_LENGTH
                or not result.get('selector_found')
            )
            event.set_output(
                success=result['success'],
                html_size=len(result['html'].encode('utf-8')) if result.get('html') else None,
                cleaned_text_length=result.get('cleaned_text_length'),
                error=result.get('error'),
                rendered=True,
                fetch_mode="rendered",
                trigger_reason=diagnosis.get('reason'),
                selector_found=result.get('selector_found'),
                found_selectors=result.get('found_selectors'),
                selector_wait_ms=result.get('selector_wait_ms'),
                iframe_used=result.get('iframe_used'),
                rendered_shell=rendered_shell,
            )
            return result

        result = await ctx.event_recorder.record(
            "rendered_html_fetch", {'url': ctx.url, 'board_type': ctx.board_type}, render,
        )

        if result['success']:
            ctx.html_content = result['html']
            ctx.cleaned_html = result['cleaned_html']
            ctx.fetch_mode = "rendered"
            if self.html_fetcher is not None:
                self.html_fetcher.remember(
                    ctx.url, ctx.html_content, ctx.cleaned_html,
                    fetched_via="browser", fetch_mode="rendered",
                )
        else:
            logger.warning(f"[rendered_fallback] Rendering failed for {ctx.url}: {result.get('error')}")
        return self.continue_()
