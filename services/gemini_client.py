# services/gemini_client.py
import aiohttp
import logging
import time
import asyncio
import json
from typing import Optional, Dict, List

from analysis.models import FlowAnalysisResult
from constants import GEMINI_API_BASE_URL

logger = logging.getLogger(__name__)

COMMENTARY_MAX_CHARS = 600

async def api_post(url: str, session: aiohttp.ClientSession, json_data: Dict, headers: Optional[Dict] = None) -> Optional[Dict]:
    """Makes a generic async POST request."""
    try:
        async with session.post(url, json=json_data, headers=headers) as response:
            response.raise_for_status()
            return await response.json()
    except aiohttp.ClientError as e:
        logger.warning("Gemini request failed: %s", e)
        return None

class GeminiClient:
    def __init__(self, session: aiohttp.ClientSession, api_key: str):
        self.session = session
        self.api_key = api_key
        self.base_url = GEMINI_API_BASE_URL
        self.headers = {'Content-Type': 'application/json', 'x-goog-api-key': self.api_key}
        self._last_request_time = 0.0
        self._rate_limit_delay = 10  # 10 seconds delay between requests to avoid 429 errors

    async def _wait_for_rate_limit(self):
        """Ensures requests respect the rate limit by pausing if necessary."""
        elapsed = time.time() - self._last_request_time
        if elapsed < self._rate_limit_delay:
            await asyncio.sleep(self._rate_limit_delay - elapsed)
        self._last_request_time = time.time()

    async def generate_flow_commentary(self, result: FlowAnalysisResult) -> str:
        """Generates a short, neutral commentary on an analysis result."""
        if not self.api_key:
            return self._generate_fallback_commentary(result, reason="Gemini API key not configured.")

        await self._wait_for_rate_limit()

        request_body = {
            "contents": [{"parts": [{"text": self._build_prompt(result)}]}],
            "safetySettings": [
                {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
                {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
                {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
                {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"}
            ]
        }

        response_json = await api_post(self.base_url, self.session, json_data=request_body, headers=self.headers)

        if response_json is None:
            return self._generate_fallback_commentary(result, reason="API response was empty")

        try:
            candidate = response_json['candidates'][0]['content']['parts'][0]['text'].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            logger.warning("Unexpected Gemini response shape: %s", e)
            return self._generate_fallback_commentary(result, reason="parsing error")

        parsed = self._parse_candidate(candidate)
        if parsed:
            return parsed

        return self._generate_fallback_commentary(result, reason="invalid model output")

    def _build_prompt(self, result: FlowAnalysisResult) -> str:
        """Constructs a direction-neutral prompt from the analysis output."""
        summary = result.summary
        top = ", ".join(f"{ticker} ({count})" for ticker, count in summary.top_tickers) or "n/a"

        insight_lines = [f"- {i.title} (confidence {i.confidence:.2f}): {i.description}" for i in result.insights[:5]]
        pattern_lines = [f"- {p.pattern_type} on {p.ticker} x{p.occurrences}: {p.description}" for p in result.patterns[:5]]
        anomaly_lines = [f"- {a.severity} {a.anomaly_type} ({a.ticker}): {a.description}" for a in result.anomalies[:5]]

        prompt = f"""
You are an options-flow analyst writing a concise, neutral recap of a user's uploaded flow data.

Context:
- flows_analyzed: {summary.total_flows_analyzed}
- market_sentiment: {summary.market_sentiment}
- risk_level: {summary.risk_level}
- top_tickers: {top}
- insights:\n{chr(10).join(insight_lines) or '- none'}
- patterns:\n{chr(10).join(pattern_lines) or '- none'}
- anomalies:\n{chr(10).join(anomaly_lines) or '- none'}

Requirements:
1. Return ONLY strict JSON (no markdown) with the key "commentary".
2. "commentary": 2-3 sentences (<={COMMENTARY_MAX_CHARS} chars) on what stands out; neutral tone, no financial advice, no hashtags, no links.
"""
        return prompt

    def _parse_candidate(self, raw_text: str) -> Optional[str]:
        text = self._strip_code_fences(raw_text.strip())

        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return None

        commentary = payload.get('commentary') if isinstance(payload, dict) else None
        if not isinstance(commentary, str):
            return None
        commentary = " ".join(commentary.split())
        if not commentary:
            return None
        if any(tag in commentary.lower() for tag in ("http://", "https://")):
            return None
        return self._truncate_text(commentary, COMMENTARY_MAX_CHARS)

    def _generate_fallback_commentary(self, result: FlowAnalysisResult, reason: str | None = None) -> str:
        if reason:
            logger.info("Using fallback commentary: %s", reason)
        return self._build_commentary_from_result(result)

    @staticmethod
    def _build_commentary_from_result(result: FlowAnalysisResult) -> str:
        summary = result.summary
        if summary.total_flows_analyzed == 0:
            return "No flows in this window yet. Upload a CSV export to get started."

        parts: List[str] = [
            f"{summary.total_flows_analyzed} flows analyzed with {summary.market_sentiment} call/put positioning and {summary.risk_level} risk."
        ]
        if summary.top_tickers:
            leader, count = summary.top_tickers[0]
            parts.append(f"{leader} led activity with {count} flows.")
        if result.patterns:
            strongest = max(result.patterns, key=lambda p: p.occurrences)
            parts.append(f"Strongest pattern: {strongest.name} ({strongest.occurrences} occurrences).")
        elif result.anomalies:
            parts.append(result.anomalies[0].description)
        return " ".join(parts)

    @staticmethod
    def _truncate_text(text: str, limit: int) -> str:
        text = text.strip()
        return text if len(text) <= limit else text[:limit]

    @staticmethod
    def _strip_code_fences(text: str) -> str:
        if text.startswith("```"):
            lines = text.splitlines()
            if len(lines) >= 3 and lines[0].startswith("```") and lines[-1].startswith("```"):
                inner = "\n".join(lines[1:-1]).strip()
                if inner.startswith("json"):
                    inner = inner[4:].strip()
                return inner
        return text
