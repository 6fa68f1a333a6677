"""
Heuristic detection of pages whose content is rendered client-side.
"""
import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

JS_HEAVY_TEXT_THRESHOLD = 1500
VERY_LOW_TEXT_THRESHOLD = 200

SPA_MARKERS = [
    "__NEXT_DATA__",
    "data-reactroot",
    'id="app"',
    'id="root"',
]


def js_heavy_diagnosis(html_content: Optional[str], cleaned_html: Optional[str]) -> Dict:
    """
    Diagnose whether a page looks like a JS shell.

    JS-heavy means cleaned text is under the threshold and either an SPA
    marker is present in the raw HTML or the text is very short.
    """
    try:
        text_len = len(cleaned_html or "")
        html = html_content or ""
        found_markers = [m for m in SPA_MARKERS if m in html]

        if text_len >= JS_HEAVY_TEXT_THRESHOLD:
            js_heavy, reason = False, "text_above_threshold"
        elif found_markers:
            js_heavy, reason = True, "spa_marker_detected"
        elif text_len < VERY_LOW_TEXT_THRESHOLD:
            js_heavy, reason = True, "very_low_text"
        else:
            js_heavy, reason = False, "below_threshold"

        return {
            'js_heavy': js_heavy,
            'reason': reason,
            'text_length': text_len,
            'threshold': JS_HEAVY_TEXT_THRESHOLD,
            'html_size': len(html.encode('utf-8')),
            'spa_markers_found': found_markers,
        }
    except Exception as e:
        logger.warning(f"[js_heavy] Diagnosis failed: {e}")
        return {'js_heavy': False, 'reason': 'diagnosis_error', 'error': str(e)}


def is_js_heavy(html_content: Optional[str], cleaned_html: Optional[str]) -> bool:
    return js_heavy_diagnosis(html_content, cleaned_html)['js_heavy']
