"""
Configuration for the receipt ledger pipeline.

Values come from a YAML file, then environment variables override them.

Key invariants:
- Secrets (API key, service account key, cron secret) come from the environment
  or the config file, never from code
- Missing required values are reported together by Config.validate()
- A configuration error aborts a run before the run lock is taken
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Missing or invalid configuration: " + "; ".join(errors))


DEFAULT_MAX_FILES_PER_RUN = 50
DEFAULT_MAX_FILE_BYTES = 10_485_760
DEFAULT_CREDIT_ACCOUNT = "普通預金"
DEFAULT_GEMINI_MODEL = "gemini-3-flash-preview"

STAGING_BACKENDS = ("drive", "local")


@dataclass
class DatabaseConfig:
    """Ledger database settings."""

    path: Path = field(default_factory=lambda: Path("data/ledger.db"))


@dataclass
class ModelConfig:
    """Vision/LLM model (Gemini) configuration."""

    api_key: str = ""
    model: str = DEFAULT_GEMINI_MODEL
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    # Request timeout (seconds)
    timeout_seconds: int = 120


@dataclass
class StagingConfig:
    """Staging area configuration.

    backend selects the StagingStore implementation:
    - drive: Google Drive folders shared with a service account
    - local: two sibling directories on the local filesystem
    """

    backend: str = "drive"
    service_account_email: str = ""
    # PEM key; literal "\\n" sequences are unescaped on load
    service_account_private_key: str = ""
    unprocessed_folder_id: str = ""
    processed_folder_id: str = ""
    local_root: Path = field(default_factory=lambda: Path("data/staging"))


@dataclass
class PipelineConfig:
    """Run coordinator and endpoint settings."""

    cron_secret: str = ""
    # Optional bearer token for the upload endpoint (empty = open)
    upload_token: str = ""
    default_credit_account: str = DEFAULT_CREDIT_ACCOUNT
    max_files_per_run: int = DEFAULT_MAX_FILES_PER_RUN
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    # Applied when the model reports zero tax (None = disabled)
    tax_fallback_rate: float | None = None
    # Pause after each fully processed file (rate limit against the model)
    inter_item_delay_seconds: float = 2.0


@dataclass
class Config:
    """Application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    staging: StagingConfig = field(default_factory=StagingConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.model.api_key:
            errors.append("GEMINI_API_KEY is required")
        if not self.model.model:
            errors.append("GEMINI_MODEL is required")
        if not self.pipeline.cron_secret:
            errors.append("CRON_SECRET is required")

        if self.staging.backend not in STAGING_BACKENDS:
            errors.append(
                f"staging.backend must be one of {', '.join(STAGING_BACKENDS)} "
                f"(got {self.staging.backend!r})"
            )
        elif self.staging.backend == "drive":
            if "@" not in self.staging.service_account_email:
                errors.append("GOOGLE_SERVICE_ACCOUNT_EMAIL must be an email address")
            if not self.staging.service_account_private_key:
                errors.append("GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY is required")
            if not self.staging.unprocessed_folder_id:
                errors.append("GDRIVE_UNPROCESSED_FOLDER_ID is required")
            if not self.staging.processed_folder_id:
                errors.append("GDRIVE_PROCESSED_FOLDER_ID is required")

        if self.pipeline.max_files_per_run <= 0:
            errors.append("MAX_FILES_PER_RUN must be a positive integer")
        if self.pipeline.max_file_bytes <= 0:
            errors.append("MAX_FILE_BYTES must be a positive integer")

        rate = self.pipeline.tax_fallback_rate
        if rate is not None and not 0 <= rate <= 1:
            errors.append("TAX_FALLBACK_RATE must be between 0 and 1")

        return errors

    def ensure_valid(self) -> None:
        """Raise ConfigurationError if validate() reports any problem."""
        errors = self.validate()
        if errors:
            raise ConfigurationError(errors)


def _positive_int(raw, default: int) -> int:
    """Parse a positive integer, falling back to default for blank values."""
    if raw is None:
        return default
    if isinstance(raw, str):
        if not raw.strip():
            return default
        try:
            return int(raw.strip())
        except ValueError:
            # Reported by validate()
            return -1
    return int(raw)


def _optional_rate(raw) -> float | None:
    """Parse an optional rate; blank means unset."""
    if raw is None:
        return None
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            return float(raw)
        except ValueError:
            # Reported by validate()
            return -1.0
    return float(raw)


def load_config(config_path: Path | str | None = None) -> Config:
    """
    Load configuration from YAML file.

    Environment variables override config values:
    - DATABASE_PATH
    - GEMINI_API_KEY, GEMINI_MODEL
    - STAGING_BACKEND, STAGING_LOCAL_ROOT
    - GOOGLE_SERVICE_ACCOUNT_EMAIL, GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY
    - GDRIVE_UNPROCESSED_FOLDER_ID, GDRIVE_PROCESSED_FOLDER_ID
    - CRON_SECRET, UPLOAD_TOKEN
    - DEFAULT_CREDIT_ACCOUNT
    - MAX_FILES_PER_RUN, MAX_FILE_BYTES
    - TAX_FALLBACK_RATE
    """
    data: dict = {}
    if config_path is not None:
        config_path = Path(config_path)
        if config_path.exists():
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

    env = os.environ

    db_data = data.get("database", {}) or {}
    database = DatabaseConfig(
        path=Path(env.get("DATABASE_PATH", db_data.get("path", "data/ledger.db"))),
    )

    model_data = data.get("model", {}) or {}
    model = ModelConfig(
        api_key=env.get("GEMINI_API_KEY", model_data.get("api_key", "")),
        model=env.get("GEMINI_MODEL", model_data.get("model", DEFAULT_GEMINI_MODEL)),
        base_url=model_data.get(
            "base_url", "https://generativelanguage.googleapis.com/v1beta"
        ),
        timeout_seconds=int(model_data.get("timeout_seconds", 120)),
    )

    staging_data = data.get("staging", {}) or {}
    private_key = env.get(
        "GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY",
        staging_data.get("service_account_private_key", ""),
    )
    staging = StagingConfig(
        backend=env.get("STAGING_BACKEND", staging_data.get("backend", "drive")).lower(),
        service_account_email=env.get(
            "GOOGLE_SERVICE_ACCOUNT_EMAIL", staging_data.get("service_account_email", "")
        ),
        service_account_private_key=private_key.replace("\\n", "\n"),
        unprocessed_folder_id=env.get(
            "GDRIVE_UNPROCESSED_FOLDER_ID", staging_data.get("unprocessed_folder_id", "")
        ),
        processed_folder_id=env.get(
            "GDRIVE_PROCESSED_FOLDER_ID", staging_data.get("processed_folder_id", "")
        ),
        local_root=Path(
            env.get("STAGING_LOCAL_ROOT", staging_data.get("local_root", "data/staging"))
        ),
    )

    pipeline_data = data.get("pipeline", {}) or {}
    pipeline = PipelineConfig(
        cron_secret=env.get("CRON_SECRET", pipeline_data.get("cron_secret", "")),
        upload_token=env.get("UPLOAD_TOKEN", pipeline_data.get("upload_token", "")),
        default_credit_account=env.get(
            "DEFAULT_CREDIT_ACCOUNT",
            pipeline_data.get("default_credit_account", DEFAULT_CREDIT_ACCOUNT),
        ),
        max_files_per_run=_positive_int(
            env.get("MAX_FILES_PER_RUN", pipeline_data.get("max_files_per_run")),
            DEFAULT_MAX_FILES_PER_RUN,
        ),
        max_file_bytes=_positive_int(
            env.get("MAX_FILE_BYTES", pipeline_data.get("max_file_bytes")),
            DEFAULT_MAX_FILE_BYTES,
        ),
        tax_fallback_rate=_optional_rate(
            env.get("TAX_FALLBACK_RATE", pipeline_data.get("tax_fallback_rate"))
        ),
        inter_item_delay_seconds=float(pipeline_data.get("inter_item_delay_seconds", 2.0)),
    )

    return Config(database=database, model=model, staging=staging, pipeline=pipeline)


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Receipt ledger pipeline configuration
#
# Every value can be overridden by the environment variable named in the comment.

database:
  path: "data/ledger.db"                  # DATABASE_PATH

model:
  api_key: ""                             # GEMINI_API_KEY
  model: "gemini-3-flash-preview"         # GEMINI_MODEL
  timeout_seconds: 120

staging:
  backend: "drive"                        # STAGING_BACKEND (drive | local)
  service_account_email: ""               # GOOGLE_SERVICE_ACCOUNT_EMAIL
  service_account_private_key: ""         # GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY
  unprocessed_folder_id: ""               # GDRIVE_UNPROCESSED_FOLDER_ID
  processed_folder_id: ""                 # GDRIVE_PROCESSED_FOLDER_ID
  local_root: "data/staging"              # STAGING_LOCAL_ROOT (local backend only)

pipeline:
  cron_secret: ""                         # CRON_SECRET
  upload_token: ""                        # UPLOAD_TOKEN (empty = upload endpoint open)
  default_credit_account: "普通預金"       # DEFAULT_CREDIT_ACCOUNT
  max_files_per_run: 50                   # MAX_FILES_PER_RUN
  max_file_bytes: 10485760                # MAX_FILE_BYTES
  tax_fallback_rate: null                 # TAX_FALLBACK_RATE (e.g. 0.1)
  inter_item_delay_seconds: 2.0
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        f.write(default_config)
