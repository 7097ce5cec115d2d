"""
Invoice Vision Analysis

Sends a supplier invoice PDF to Claude together with the list of known projects
and turns the reply into extracted text, invoice details and scored project
matches.
"""
import base64
import json
import logging
import re
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

import anthropic

from margin_tracker.core.config import settings
from margin_tracker.core.errors import UpstreamError

logger = logging.getLogger(__name__)


class VisionError(UpstreamError):
    error = "Vision processing failed"


class RateLimiter:
    """
    Enforces a minimum delay between consecutive calls, process-wide.

    Callers block in :meth:`wait` until their slot comes up, so calls are
    serialised in arrival order.
    """

    def __init__(self, min_interval: float, clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: Optional[float] = None

    def wait(self) -> None:
        with self._lock:
            if self._last_call is not None:
                remaining = self.min_interval - (self._clock() - self._last_call)
                if remaining > 0:
                    logger.debug("Vision rate limit reached, waiting %.1fs", remaining)
                    self._sleep(remaining)
            self._last_call = self._clock()


def build_analysis_prompt(projects: Iterable[Any]) -> str:
    project_list = "\n".join(
        f"- {project.name} (ID: {project.id}, Client: {project.client_name or 'N/A'}): "
        f"{project.description or 'No description'}"
        for project in projects
    )
    return f"""Please analyze this invoice PDF and extract key information, then match it to the most relevant projects from our list.

Available Projects:
{project_list}

Please return a JSON response with this exact structure:
{{
  "extractedText": "full text extracted from the invoice",
  "invoiceDetails": {{
    "supplierName": "supplier name",
    "amount": "total amount as number",
    "date": "invoice date",
    "description": "invoice description or items"
  }},
  "projectMatches": [
    {{
      "projectId": "project_id",
      "projectName": "project name",
      "confidence": 85,
      "matchedKeywords": ["keyword1", "keyword2"],
      "contextSnippets": ["relevant text from invoice"],
      "reasoning": "explanation of why this matches"
    }}
  ]
}}"""


_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


def _round_confidence(value: Any) -> int:
    try:
        return int(round(float(value or 0)))
    except (TypeError, ValueError):
        return 0


def parse_vision_result(analysis_text: str) -> Dict[str, Any]:
    """
    Parse the model reply, which may wrap its JSON in prose or markdown.

    An unparseable reply is kept as extracted text with no matches.
    """
    match = _JSON_BLOCK.search(analysis_text)
    try:
        result = json.loads(match.group(0) if match else analysis_text)
    except (TypeError, ValueError):
        return {"extractedText": analysis_text, "projectMatches": [], "invoiceDetails": {}}
    if not isinstance(result, dict):
        return {"extractedText": analysis_text, "projectMatches": [], "invoiceDetails": {}}

    matches = result.get("projectMatches") or []
    result["projectMatches"] = [
        {**m, "confidence": _round_confidence(m.get("confidence"))}
        for m in matches if isinstance(m, dict)
    ]
    result.setdefault("extractedText", "")
    result["invoiceDetails"] = result.get("invoiceDetails") or {}
    return result


def best_match(project_matches: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not project_matches:
        return None
    return max(project_matches, key=lambda m: m.get("confidence") or 0)


def calculate_overall_confidence(result: Dict[str, Any]) -> int:
    """Score 0-100 of how much of the invoice the model understood."""
    confidence = 0.0
    if len(result.get("extractedText") or "") > 50:
        confidence += 40

    details = result.get("invoiceDetails") or {}
    if details.get("supplierName"):
        confidence += 10
    if details.get("amount"):
        confidence += 10
    if details.get("date"):
        confidence += 5
    if details.get("description"):
        confidence += 5

    matches = result.get("projectMatches") or []
    if matches:
        top = best_match(matches)
        confidence += min(30, (top.get("confidence") or 0) * 0.3)
        if len(matches) > 1:
            confidence += min(10, len(matches) * 2)

    return int(round(min(100, confidence)))


class VisionAnalyzer:
    """
    Claude-backed invoice analyzer.

    Args:
        api_key: Anthropic API key
        model: Model name
        max_tokens: Reply budget
        client: Optional pre-built ``anthropic.Anthropic`` (injected in tests)
        rate_limiter: Shared limiter; defaults to the process-wide one
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 max_tokens: Optional[int] = None, client: Any = None,
                 rate_limiter: Optional[RateLimiter] = None):
        self.model = model or settings.VISION_MODEL
        self.max_tokens = max_tokens or settings.VISION_MAX_TOKENS
        self.client = client or anthropic.Anthropic(api_key=api_key)
        self.rate_limiter = rate_limiter or default_rate_limiter

    def analyze(self, projects: Iterable[Any], pdf_url: Optional[str] = None,
                pdf_bytes: Optional[bytes] = None) -> Dict[str, Any]:
        """
        Analyze one invoice PDF, by URL when available, else by content.

        Raises:
            VisionError: if the API call fails or returns no text
        """
        if pdf_url:
            source = {"type": "url", "url": pdf_url}
        elif pdf_bytes:
            source = {
                "type": "base64",
                "media_type": "application/pdf",
                "data": base64.b64encode(pdf_bytes).decode("ascii"),
            }
        else:
            raise VisionError("No PDF provided for vision analysis")

        prompt = build_analysis_prompt(projects)
        self.rate_limiter.wait()
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "document", "source": source},
                    ],
                }],
            )
        except anthropic.RateLimitError as exc:
            raise VisionError(f"Claude API rate limit exceeded (429). Please try again in a few minutes. Details: {exc}") from exc
        except anthropic.APIError as exc:
            raise VisionError(f"Claude API failed: {exc}") from exc

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.info("Vision call used %s input / %s output tokens",
                        getattr(usage, "input_tokens", "?"), getattr(usage, "output_tokens", "?"))

        text_blocks = [block.text for block in response.content if getattr(block, "type", None) == "text"]
        if not text_blocks:
            raise VisionError("No analysis received from Claude")
        return parse_vision_result(text_blocks[0])


default_rate_limiter = RateLimiter(settings.VISION_MIN_INTERVAL_SECONDS)


def create_vision_analyzer() -> Optional[VisionAnalyzer]:
    if not settings.ANTHROPIC_API_KEY:
        logger.warning("ANTHROPIC_API_KEY is not set. Vision processing disabled.")
        return None
    return VisionAnalyzer(api_key=settings.ANTHROPIC_API_KEY)
