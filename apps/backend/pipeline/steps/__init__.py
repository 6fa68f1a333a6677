from pipeline.steps.base import Step
from pipeline.steps.detect import DetectJobBoard
from pipeline.steps.permissions import CheckPermissions
from pipeline.steps.fetch_html import FetchHtml
from pipeline.steps.embedded_board import ResolveEmbeddedJobBoard
from pipeline.steps.rendered_fallback import RenderedFallback
from pipeline.steps.limited_sources import HandleLimitedSources
from pipeline.steps.html_scrape import HtmlScrape
from pipeline.steps.selectors_extract import SelectorsExtract
from pipeline.steps.api_extract import ApiExtract
from pipeline.steps.ai_extract import AiExtract

__all__ = [
    'Step',
    'DetectJobBoard',
    'CheckPermissions',
    'FetchHtml',
    'ResolveEmbeddedJobBoard',
    'RenderedFallback',
    'HandleLimitedSources',
    'HtmlScrape',
    'SelectorsExtract',
    'ApiExtract',
    'AiExtract',
]
