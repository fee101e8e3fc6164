"""
Grade narrative from an LLM, kept advisory only.

The merge never waits on this and nothing here can raise into it: every
failure becomes one of the fixed placeholder strings below.
"""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import google.generativeai as genai


logger = logging.getLogger(__name__)

MISSING_KEY_MESSAGE = 'AI analysis unavailable (Missing API Key).'
EMPTY_RESPONSE_MESSAGE = 'No analysis generated.'
ERROR_MESSAGE = 'Error generating analysis.'

PROMPT_TEMPLATE = """
Analyze the following grade distribution statistics and provide a brief, professional summary (max 3 sentences) suitable for an instructor.
Highlight any concerns or successes.

Stats: {stats}
"""


def format_number(value):
    """85.0 -> '85', 72.5 -> '72.5'"""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def stats_summary(stats):
    """
    Render stats as the single text payload sent to the summarizer.

    Example:
        Average: 80.00, Median: 85, Min: 55, Max: 105. Distribution: [{"range":"0-60","count":1},...]
    """
    distribution = json.dumps(
        [{'range': label, 'count': count} for label, count in stats.distribution],
        separators=(',', ':'),
    )
    return (
        f"Average: {stats.average:.2f}, Median: {format_number(stats.median)}, "
        f"Min: {format_number(stats.minimum)}, Max: {format_number(stats.maximum)}. "
        f"Distribution: {distribution}"
    )


class GeminiSummarizer:
    """Summarizes grade statistics with Gemini. Never raises."""

    def __init__(self, api_key, model='gemini-2.5-flash'):
        self.api_key = api_key
        self.model_name = model
        self._model = None
        if api_key:
            genai.configure(api_key=api_key)
            self._model = genai.GenerativeModel(model)

    def summarize(self, stats_text):
        if not self._model:
            return MISSING_KEY_MESSAGE

        try:
            response = self._model.generate_content(PROMPT_TEMPLATE.format(stats=stats_text))
            return response.text or EMPTY_RESPONSE_MESSAGE
        except Exception as e:
            logger.error("Gemini analysis error: %s", e)
            return ERROR_MESSAGE


def safe_summarize(summarizer, stats_text):
    """Call any summarizer, turning failures into the placeholder text."""
    if summarizer is None:
        return MISSING_KEY_MESSAGE
    try:
        return summarizer.summarize(stats_text) or EMPTY_RESPONSE_MESSAGE
    except Exception as e:
        logger.error("Analysis error: %s", e)
        return ERROR_MESSAGE


class AdvisoryAnalysis:
    """
    Runs one summarizer call per freshly computed stats object in the
    background and keeps whatever result arrives.

    There is no generation token: if an older call resolves after a newer
    one, its text replaces the newer text.
    """

    def __init__(self, summarizer, executor=None):
        self._summarizer = summarizer
        self._executor = executor or ThreadPoolExecutor(max_workers=2)
        self._lock = threading.Lock()
        self._last_stats = None
        self.text = ''

    def request(self, stats):
        """Start a call for `stats` and return its future, or None if skipped."""
        if stats is None or stats is self._last_stats:
            return None
        self._last_stats = stats
        return self._executor.submit(self._run, stats_summary(stats))

    def _run(self, stats_text):
        result = safe_summarize(self._summarizer, stats_text)
        with self._lock:
            self.text = result
        return result

    def shutdown(self):
        self._executor.shutdown(wait=False)
