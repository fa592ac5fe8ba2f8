"""Test fixtures and utilities."""

from pathlib import Path

import pytest

from receipt_ledger.config import (
    Config,
    DatabaseConfig,
    ModelConfig,
    PipelineConfig,
    StagingConfig,
)

# Model output for a fuel receipt (ENEOS, 5000 yen incl. 500 tax)
SAMPLE_MODEL_JSON = {
    "transaction_date": "2024-05-01",
    "vendor": "ENEOS",
    "items_summary": "レギュラーガソリン",
    "items": ["レギュラー 30L"],
    "amount": 5000,
    "tax": 500,
    "suggested_debit_account": "消耗品費",
    "description": "ENEOS 給油",
    "memo": "",
}


@pytest.fixture
def sample_model_json() -> dict:
    """Valid extraction JSON as returned by the model."""
    return dict(SAMPLE_MODEL_JSON)


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_ledger.db"


@pytest.fixture
def local_config(tmp_path) -> Config:
    """Complete configuration using the local staging backend."""
    return Config(
        database=DatabaseConfig(path=tmp_path / "ledger.db"),
        model=ModelConfig(api_key="test-api-key", model="gemini-test"),
        staging=StagingConfig(backend="local", local_root=tmp_path / "staging"),
        pipeline=PipelineConfig(
            cron_secret="s3cret",
            max_file_bytes=1024,
            inter_item_delay_seconds=0,
        ),
    )
