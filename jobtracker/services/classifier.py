"""
Email classifier backed by an OpenAI-compatible chat-completion endpoint.

One fixed prompt, temperature 0, JSON-object output parsed strictly into
ClassificationResult. Rate-limit (429 / "rate limit") and 503 answers are
retried along a per-model backoff ladder; anything else fails at once.
Every failure is soft: classify() returns None and the message stays
unclassified until the next sync.
"""

import logging
import time
from typing import Callable, Optional, Sequence

import requests
from pydantic import ValidationError
from tenacity import Retrying, retry_if_exception, stop_after_attempt

from jobtracker import config
from jobtracker.errors import ClassifierHTTPError
from jobtracker.schemas import ClassificationResult
from jobtracker.services.text_cleaner import trim_for_prompt

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You classify one email at a time.
Output only JSON with this schema:
{
  "is_job_related": true | false,
  "status": "applied" | "rejected" | "next_steps" | "comment_only" | "not_job_related",
  "summary": "short sentence",
  "company_name": "Company extracted from the message"
}

Rules:
- Ignore newsletters, job alerts, marketing blasts, and platform recommendations.
- applied: acknowledges receipt or confirms application submission.
- rejected: explicit rejection.
- next_steps: interviews, assessments, or availability requests.
- comment_only: job-related but not applied/rejected/next_steps.
- not_job_related: everything else.
Always include a concise summary and company_name guess."""

# Backoff ladders in ms, tuned to each model's rate limits
DEFAULT_BACKOFF_MS = (500, 1000, 2000)
MODEL_BACKOFF_MS = {
    "gpt-4o-mini": (400, 800, 1600, 3200),
    "gpt-5-mini": (400, 800, 1600, 3200),
    "gpt-5-nano": (300, 600, 1200, 2400),
}

RETRYABLE_STATUS_CODES = (429, 503)


def backoff_ladder_for(model: str) -> tuple:
    return MODEL_BACKOFF_MS.get(model, DEFAULT_BACKOFF_MS)


def is_retryable(error: BaseException) -> bool:
    """429/503 answers and anything whose message mentions a rate limit."""
    if isinstance(error, ClassifierHTTPError) and error.status_code in RETRYABLE_STATUS_CODES:
        return True
    return "rate limit" in str(error).lower()


def build_user_content(message: dict) -> str:
    body = message.get("body") or message.get("snippet") or ""
    return (
        f"Subject: {message.get('subject') or '(no subject)'}\n"
        f"From: {message.get('from') or 'unknown'}\n\n"
        f"Body:\n{trim_for_prompt(body)}"
    )


def parse_completion(data: dict) -> ClassificationResult:
    """
    Pull the message content out of a chat-completion answer and validate it.

    Raises:
        ValueError: empty content, invalid JSON or a schema mismatch
    """
    choices = data.get("choices") if isinstance(data, dict) else None
    if not choices:
        raise ValueError("Classification response has no choices")
    content = ((choices[0] or {}).get("message") or {}).get("content")
    if not content or not content.strip():
        raise ValueError("Empty classification response")
    return ClassificationResult.model_validate_json(content)


class EmailClassifier:
    """Classifies email documents into the five job-application statuses."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        backoff_ms: Optional[Sequence[int]] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self.model = model or config.EMAIL_CLASS_MODEL
        self.base_url = (base_url or config.OPENAI_BASE_URL).rstrip("/")
        self.backoff_ms = tuple(backoff_ms) if backoff_ms is not None else backoff_ladder_for(self.model)
        self.session = session or requests.Session()
        self.timeout = timeout or config.CLASSIFIER_TIMEOUT_SECONDS
        self._sleep = sleep

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    @property
    def max_attempts(self) -> int:
        return len(self.backoff_ms) + 1

    def build_payload(self, message: dict) -> dict:
        payload = {
            "model": self.model,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_content(message)},
            ],
        }
        # gpt-5 models only accept the default temperature
        if not self.model.startswith("gpt-5"):
            payload["temperature"] = 0
        return payload

    def classify(self, message: dict) -> Optional[ClassificationResult]:
        """
        Classify one email document.

        Returns:
            ClassificationResult, or None on any failure (logged)
        """
        if not self.enabled:
            return None

        try:
            data = self._call_with_retry(self.build_payload(message))
            result = parse_completion(data)
        except (requests.RequestException, ClassifierHTTPError) as e:
            logger.error("Email classification failed for %s: %s", message.get("id"), e)
            return None
        except (ValueError, ValidationError) as e:
            logger.error("Unusable classification for %s: %s", message.get("id"), e)
            return None

        logger.info(
            'Classified email "%s" -> %s (%s)',
            message.get("subject") or "(no subject)",
            result.status.value,
            result.company_name or "unknown company",
        )
        return result

    # ============ TRANSPORT ============

    def _ladder_wait(self, retry_state) -> float:
        index = min(retry_state.attempt_number - 1, len(self.backoff_ms) - 1)
        return self.backoff_ms[index] / 1000.0

    def _log_retry(self, retry_state) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            "Classifier call attempt %d/%d rate limited, retrying: %s",
            retry_state.attempt_number,
            self.max_attempts,
            error,
        )

    def _call_with_retry(self, payload: dict) -> dict:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._ladder_wait,
            retry=retry_if_exception(is_retryable),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(self._call_chat, payload)

    def _call_chat(self, payload: dict) -> dict:
        """Single POST to /chat/completions; raises ClassifierHTTPError on non-2xx."""
        response = self.session.post(
            f"{self.base_url}/chat/completions",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            json=payload,
            timeout=self.timeout,
        )

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.ok:
            error = data.get("error") if isinstance(data, dict) else None
            message = (error or {}).get("message") if isinstance(error, dict) else None
            raise ClassifierHTTPError(response.status_code, message or "OpenAI request failed")

        return data
