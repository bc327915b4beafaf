"""Configuration management for FundSplit."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .ledger.validator import ValidationRules


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Transaction parser (any OpenAI-compatible provider)
    openai_api_key: str | None = None
    parser_model: str = "gpt-4o-mini"
    parser_base_url: str | None = None  # e.g. https://api.groq.com/openai/v1

    # Currency
    default_currency: str = "VND"
    currency_api_url: str = "https://hexarate.paikama.co/api"

    # Validation thresholds (amounts in the currency's minor unit)
    min_description_length: int = 3
    small_amount_threshold: int = 1000
    large_amount_threshold: int = 100_000_000
    split_tolerance: int = 0

    # Database path
    database_path: Path = Path.home() / ".fundsplit" / "fundsplit.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    def validation_rules(self) -> ValidationRules:
        """Thresholds for the transaction validator."""
        return ValidationRules(
            min_description_length=self.min_description_length,
            small_amount_threshold=self.small_amount_threshold,
            large_amount_threshold=self.large_amount_threshold,
            split_tolerance=self.split_tolerance,
        )


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ValueError(
            f"Failed to load settings. Check your .env file "
            f"(see .env.example for reference).\n"
            f"Error: {e}"
        ) from e
