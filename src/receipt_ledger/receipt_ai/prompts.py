"""Prompt templates for receipt extraction.

Prompts are versioned so stored audit payloads can be traced back to the
instruction that produced them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

# v1.0: JSON-only extraction with strict retry suffix
PROMPT_VERSION = "v1.0"

RESPONSE_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "transaction_date": {"type": "string", "description": "YYYY-MM-DD date format"},
        "vendor": {"type": "string"},
        "items_summary": {"type": "string"},
        "items": {"type": "array", "items": {"type": "string"}},
        "amount": {"type": "number"},
        "tax": {"type": "number"},
        "suggested_debit_account": {"type": "string"},
        "description": {"type": "string"},
        "memo": {"type": "string"},
    },
    "required": [
        "transaction_date",
        "vendor",
        "items_summary",
        "items",
        "amount",
        "tax",
        "suggested_debit_account",
        "description",
        "memo",
    ],
}


@dataclass
class ReceiptPrompt:
    """Prompt template for receipt extraction.

    Attributes:
        version: Prompt version recorded with every analysis.
        base_prompt: Instruction sent on every attempt.
        strict_suffix: Extra instruction appended on the retry attempt.
        response_schema: JSON schema handed to the model.
    """

    version: str = PROMPT_VERSION

    base_prompt: str = """あなたは日本の経理担当者です。領収書や請求書の画像/PDFを読み取り、指定のJSONスキーマに沿って必ずJSONのみを出力してください。余分な文章やMarkdownは禁止です。
- 日付はYYYY-MM-DD
- amount, tax は整数（円）
- suggested_debit_account は会計の科目名を日本語で提案してください（例: 通信費）
- items は抽出できるときだけ配列で入れてください。なければ空配列。
- memo には注文番号や登録番号など補足を入れ、無ければ空文字
- description は店名＋主要品目の短い摘要"""

    strict_suffix: str = (
        "JSON だけを返してください。キーはスキーマと完全一致させ、型も厳守してください。"
    )

    response_schema: dict = field(default_factory=lambda: dict(RESPONSE_SCHEMA))

    def build(self, strict: bool = False) -> str:
        """Build the instruction text for one attempt.

        Args:
            strict: Append the schema-conformance reminder (retry attempt).

        Returns:
            Instruction text.
        """
        schema = json.dumps(self.response_schema, ensure_ascii=False)
        extra = self.strict_suffix if strict else ""
        return f"{self.base_prompt}\nJSONスキーマ: {schema}\n{extra}".rstrip()
