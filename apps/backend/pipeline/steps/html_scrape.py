"""
Cheap selector scrape. Fills blank listing fields; never completes the attempt.
"""
from pipeline.html_scraper import HtmlScraper
from pipeline.models import Context, Signal
from pipeline.steps.base import Step


class HtmlScrape(Step):
    name = "html_scrape"

    async def call(self, ctx: Context) -> Signal:
        async def scrape(event):
            scraper = HtmlScraper()
            result = scraper.extract(ctx.html_content)
            event.set_output(
                extracted_fields=list(result.keys()),
                title=result.get('title'),
                company=result.get('company_name'),
                location=result.get('location'),
                extraction_rate=round(scraper.extraction_rate(), 3),
            )
            return result

        html_size = len(ctx.html_content.encode('utf-8')) if ctx.html_content else None
        result = await ctx.event_recorder.record("html_scrape", {'html_size': html_size}, scrape)
        if result:
            ctx.updater.update_preliminary(ctx, result)
        return self.continue_()
