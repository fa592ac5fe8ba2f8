"""
Receipt AI: vision model extraction client.

Wraps the Gemini generateContent call with a bounded retry (one strict retry)
and strict validation of the returned JSON.
"""

from .prompts import PROMPT_VERSION, RESPONSE_SCHEMA, ReceiptPrompt
from .service import (
    AnalysisResult,
    EmptyModelResponse,
    ExtractionError,
    ReceiptAnalyzer,
    parse_json_response,
    with_retry,
)

__all__ = [
    "PROMPT_VERSION",
    "RESPONSE_SCHEMA",
    "AnalysisResult",
    "EmptyModelResponse",
    "ExtractionError",
    "ReceiptAnalyzer",
    "ReceiptPrompt",
    "parse_json_response",
    "with_retry",
]
