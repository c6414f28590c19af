from __future__ import annotations

import json
import logging
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from config import Settings, get_settings
from models import FinancialSummary

logger = logging.getLogger(__name__)

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"


class AdviceUnavailable(RuntimeError):
    pass


def build_prompt(summary: FinancialSummary) -> str:
    return (
        "Given this financial summary: "
        f"Total Income {summary.total_income:.2f}, "
        f"Total Expenses {summary.total_expenses:.2f}, "
        f"Net Balance {summary.net_balance:.2f} "
        f"for the period {summary.period_start:%B %d, %Y} to "
        f"{summary.period_end:%B %d, %Y}, provide concise financial advice "
        "in 2-3 short sentences."
    )


class AdviceService:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def financial_advice(self, summary: FinancialSummary) -> str:
        api_key = self.settings.openrouter_api_key
        if not api_key:
            logger.warning("advice_unavailable: reason=missing_api_key")
            raise AdviceUnavailable("AI advice feature is not configured.")

        payload = {
            "model": self.settings.advice_model,
            "messages": [{"role": "user", "content": build_prompt(summary)}],
        }
        return _request_completion(
            payload, api_key=api_key, timeout=self.settings.advice_timeout_secs
        )


def _request_completion(payload: dict, *, api_key: str, timeout: float) -> str:
    req = Request(
        OPENROUTER_URL,
        data=json.dumps(payload).encode("utf-8"),
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Title": "Finance Tracker",
        },
        method="POST",
    )
    try:
        with urlopen(req, timeout=timeout) as resp:
            body = json.loads(resp.read().decode("utf-8"))
    except HTTPError as exc:
        detail = _error_message(exc.read())
        logger.error(f"advice_request_failed: status={exc.code} detail={detail}")
        raise RuntimeError(
            f"AI service responded with status {exc.code}: {detail}"
        ) from exc
    except (URLError, TimeoutError, json.JSONDecodeError) as exc:
        logger.error(f"advice_request_failed: error={exc}")
        raise RuntimeError("Failed to contact AI advice service") from exc

    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise RuntimeError("Unexpected AI service response") from exc
    if not content or not str(content).strip():
        raise RuntimeError("AI service returned empty advice")
    return str(content).strip()


def _error_message(raw: bytes) -> str:
    try:
        data = json.loads(raw.decode("utf-8"))
        return str(data["error"]["message"])
    except Exception:
        return raw.decode("utf-8", errors="replace")[:200]
