"""Receipt analysis through the Gemini vision model.

The analyzer sends the receipt bytes with a fixed instruction, expects a single
JSON object back and validates it into a ReceiptExtraction. A failed attempt
(HTTP error, empty text, unparseable JSON, schema violation) is retried exactly
once with a stricter instruction; a second failure raises ExtractionError and
the caller decides what to do with the file.

Privacy constraints:
- Never log prompts or document bytes at INFO level
- Raw model text is only logged at DEBUG
"""

from __future__ import annotations

import base64
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from ..schemas.receipt_extraction import ReceiptExtraction, SchemaValidationError
from .prompts import PROMPT_VERSION, ReceiptPrompt

if TYPE_CHECKING:
    from ..config import ModelConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# One normal attempt plus one strict retry
EXTRACTION_ATTEMPTS = 2


class ExtractionError(Exception):
    """Model call or schema validation failed on every attempt."""

    def __init__(self, message: str, attempts: int = EXTRACTION_ATTEMPTS):
        self.attempts = attempts
        super().__init__(message)


class EmptyModelResponse(ValueError):
    """The model answered without any text content."""


@dataclass
class AnalysisResult:
    """Validated extraction plus the raw JSON the model returned."""

    parsed: ReceiptExtraction
    raw: Any
    model: str
    attempts: int
    prompt_version: str = PROMPT_VERSION


def with_retry(
    operation: Callable[[int], T],
    attempts: int = EXTRACTION_ATTEMPTS,
    backoff: float = 0.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run an operation with a bounded number of attempts.

    Args:
        operation: Callable receiving the zero-based attempt number.
        attempts: Total attempts (not retries).
        backoff: Seconds to wait between attempts (0 = none).
        retry_on: Exception types that trigger another attempt.
        sleep: Sleep function (injectable for tests).

    Returns:
        The first successful result.

    Raises:
        The exception from the last attempt.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(attempts):
        try:
            return operation(attempt)
        except retry_on as e:
            if attempt == attempts - 1:
                raise
            logger.debug("Attempt %d/%d failed: %s", attempt + 1, attempts, e)
            if backoff:
                sleep(backoff)

    # Unreachable: the loop either returns or raises
    raise AssertionError("with_retry exhausted without result")


def parse_json_response(content: str | None) -> Any:
    """Parse JSON from model text, tolerating a fenced code block wrapper.

    Handles:
    - Leading/trailing whitespace
    - ```json ... ``` and ``` ... ``` fences

    Raises:
        EmptyModelResponse: If there is no text
        json.JSONDecodeError: If the text is not valid JSON
    """
    if not content or not content.strip():
        raise EmptyModelResponse("Model response is empty")

    content = content.strip()
    if content[:7].lower() == "```json":
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]

    return json.loads(content.strip())


class ReceiptAnalyzer:
    """Vision model client for receipt extraction.

    The httpx client is created once per analyzer and may be injected for
    tests; no module-level client exists.
    """

    def __init__(
        self,
        model_config: ModelConfig,
        client: httpx.Client | None = None,
        prompt: ReceiptPrompt | None = None,
    ) -> None:
        """Initialize the analyzer.

        Args:
            model_config: API key, model name, base URL and timeout.
            client: Optional preconfigured httpx client.
            prompt: Optional prompt template override.
        """
        self.model_config = model_config
        self.prompt = prompt or ReceiptPrompt()
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(model_config.timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
            headers={"x-goog-api-key": model_config.api_key},
        )

    @property
    def endpoint(self) -> str:
        base = self.model_config.base_url.rstrip("/")
        return f"{base}/models/{self.model_config.model}:generateContent"

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> "ReceiptAnalyzer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def analyze(
        self,
        file_bytes: bytes,
        mime_type: str,
        file_name: str | None = None,
    ) -> AnalysisResult:
        """Extract structured fields from a receipt.

        Args:
            file_bytes: Raw image/PDF bytes.
            mime_type: MIME type of the bytes.
            file_name: Display name, used for logging only.

        Returns:
            AnalysisResult with the validated extraction and raw JSON.

        Raises:
            ExtractionError: If both attempts failed.
        """
        encoded = base64.b64encode(file_bytes).decode("ascii")

        def attempt(number: int) -> AnalysisResult:
            text = self._generate(encoded, mime_type, strict=number > 0)
            raw = parse_json_response(text)
            parsed = ReceiptExtraction.from_dict(raw)
            return AnalysisResult(
                parsed=parsed,
                raw=raw,
                model=self.model_config.model,
                attempts=number + 1,
                prompt_version=self.prompt.version,
            )

        try:
            result = with_retry(
                attempt,
                attempts=EXTRACTION_ATTEMPTS,
                retry_on=(
                    httpx.HTTPError,
                    json.JSONDecodeError,
                    EmptyModelResponse,
                    SchemaValidationError,
                    KeyError,
                    IndexError,
                    TypeError,
                ),
            )
        except (
            httpx.HTTPError,
            json.JSONDecodeError,
            EmptyModelResponse,
            SchemaValidationError,
            KeyError,
            IndexError,
            TypeError,
        ) as e:
            logger.warning(
                "Receipt extraction failed after %d attempts for %s: %s",
                EXTRACTION_ATTEMPTS,
                file_name or "<unnamed>",
                e,
            )
            raise ExtractionError(
                f"Receipt extraction failed after {EXTRACTION_ATTEMPTS} attempts: {e}"
            ) from e

        if result.attempts > 1:
            logger.info("Receipt %s extracted on retry", file_name or "<unnamed>")
        return result

    def _generate(self, encoded_data: str, mime_type: str, strict: bool) -> str:
        """Call generateContent once and return the concatenated text parts."""
        payload = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": self.prompt.build(strict=strict)},
                        {"inline_data": {"mime_type": mime_type, "data": encoded_data}},
                    ],
                }
            ],
            "generationConfig": {"responseMimeType": "application/json"},
        }

        logger.debug(
            "Calling model %s (strict=%s, mime=%s)", self.model_config.model, strict, mime_type
        )
        response = self._client.post(self.endpoint, json=payload)
        response.raise_for_status()
        data = response.json()

        parts = data["candidates"][0]["content"].get("parts", [])
        text = "".join(part.get("text", "") for part in parts)
        logger.debug("Model returned %d characters", len(text))
        return text
