"""
Application settings and configuration management.

Uses Pydantic Settings for validation and environment variable support.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_INSTRUCTION = (
    "You are a friendly, helpful assistant in a chat application. "
    "Answer clearly and concisely. You can generate images and look up the "
    "current weather by calling the tools you are given; when you do, describe "
    "the result to the user in natural language."
)


class GeminiSettings(BaseSettings):
    """Gemini API configuration (function-calling provider)."""

    api_key: str = Field(default="", description="Google AI Studio API key")
    model: str = Field(
        default="gemini-2.0-flash-lite",
        description="Default Gemini model when the request only names the 'gemini' family",
    )
    image_model: str = Field(
        default="gemini/imagen-3.0-generate-002",
        description="LiteLLM model string for the image-capable variant used by generate_image",
    )

    model_config = SettingsConfigDict(env_prefix="GEMINI_")


class PerplexitySettings(BaseSettings):
    """Perplexity API configuration (text-only provider)."""

    api_key: str = Field(default="", description="Perplexity API key")
    model: str = Field(
        default="sonar",
        description="Default Perplexity model when the request only names the 'perplexity' family",
    )

    model_config = SettingsConfigDict(env_prefix="PERPLEXITY_")


class WeatherSettings(BaseSettings):
    """Current-conditions weather service configuration."""

    api_key: str = Field(
        default="",
        description="OpenWeatherMap API key. If empty, the get_weather tool is not offered.",
    )
    base_url: str = Field(
        default="https://api.openweathermap.org/data/2.5/weather",
        description="Current weather endpoint",
    )
    units: Literal["imperial", "metric", "standard"] = Field(
        default="imperial", description="Unit system requested from the weather service"
    )

    model_config = SettingsConfigDict(env_prefix="WEATHER_")


class AntiAbuseSettings(BaseSettings):
    """reCAPTCHA verification gate configuration."""

    secret_key: str = Field(default="", description="reCAPTCHA secret key")
    verify_url: str = Field(
        default="https://www.google.com/recaptcha/api/siteverify",
        description="Verification endpoint",
    )
    score_threshold: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Minimum score accepted as human"
    )
    required: bool = Field(
        default=True,
        description="Reject API requests when no secret key is configured. "
                    "Set ANTI_ABUSE_REQUIRED=false for local development only.",
    )
    timeout: float = Field(default=10.0, gt=0, description="Verification timeout in seconds")

    model_config = SettingsConfigDict(env_prefix="ANTI_ABUSE_")


class OrchestratorSettings(BaseSettings):
    """Turn orchestration configuration."""

    default_model: str = Field(
        default="gemini",
        description="Model family or concrete model id used when the request names none",
    )
    system_instruction: str = Field(
        default=DEFAULT_SYSTEM_INSTRUCTION, description="System instruction sent with every call"
    )
    provider_timeout: float = Field(
        default=60.0, gt=0, description="Timeout in seconds for each completion call"
    )
    tool_timeout: float = Field(
        default=45.0, gt=0, description="Timeout in seconds for each tool dispatch"
    )
    max_tool_rounds: int = Field(
        default=1,
        ge=1,
        le=3,
        description="Tool-call / follow-up rounds per turn. 1 keeps the single follow-up round.",
    )
    temperature: float | None = Field(default=None, description="Default sampling temperature")
    max_tokens: int | None = Field(default=None, description="Default maximum output tokens")

    model_config = SettingsConfigDict(env_prefix="ORCHESTRATOR_")


class ServerSettings(BaseSettings):
    """HTTP server configuration."""

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=8000, description="Bind port")
    cors_origins: list[str] = Field(
        default_factory=list,
        description="Allowed CORS origins. Set via SERVER_CORS_ORIGINS='[\"https://example.com\"]'",
    )

    model_config = SettingsConfigDict(env_prefix="SERVER_")


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: Literal["development", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_file: Path | None = Field(default=None, description="Log file path")

    # Sub-configurations
    gemini: GeminiSettings = Field(default_factory=GeminiSettings)
    perplexity: PerplexitySettings = Field(default_factory=PerplexitySettings)
    weather: WeatherSettings = Field(default_factory=WeatherSettings)
    anti_abuse: AntiAbuseSettings = Field(default_factory=AntiAbuseSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from file and environment.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Loaded settings instance
    """
    global _settings
    if env_file:
        _settings = Settings(_env_file=env_file)
    else:
        _settings = Settings()
    return _settings
