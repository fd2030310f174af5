"""taskbot configuration schema — YAML + Pydantic + env override."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class ProviderConfig(BaseModel):
    """Single LLM provider."""

    api_key: str = ""
    api_base: str | None = None


class ProvidersConfig(BaseModel):
    """LLM providers (LiteLLM multi-provider)."""

    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = Field(default_factory=ProviderConfig)
    deepseek: ProviderConfig = Field(default_factory=ProviderConfig)
    groq: ProviderConfig = Field(default_factory=ProviderConfig)
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)


class AssistantConfig(BaseModel):
    """Agent that carries out jobs (assistant.*)."""

    name: str = "taskbot"
    workspace: str = "./workspace"
    model: str = "anthropic/claude-sonnet-4-5-20250929"
    cheap_model: str = "anthropic/claude-haiku-4-5-20251001"
    temperature: float = 0.3
    max_iterations: int = 30
    token_budget: int = 50_000
    system_prompt: str | None = None


class SchedulerConfig(BaseModel):
    """Job scheduler loop (scheduler.*)."""

    enabled: bool = True
    max_concurrent: int = 2
    daily_budget: float = 1.00
    interval_running_s: int = 15
    interval_active_s: int = 60
    interval_idle_s: int = 300
    condition_cooldown_s: int = 300
    run_timeout_s: int = 300
    default_max_failures: int = 3


class ExecutorsConfig(BaseModel):
    """Compiled executor cache (executors.*)."""

    enabled: bool = True
    max_failures: int = 3
    stale_days: int = 30


class ModelPriceConfig(BaseModel):
    """USD per million tokens."""

    input_per_mtok: float
    output_per_mtok: float


def _default_prices() -> dict[str, ModelPriceConfig]:
    return {
        "claude-opus-4-6": ModelPriceConfig(input_per_mtok=5, output_per_mtok=25),
        "claude-opus-4-5-20250929": ModelPriceConfig(input_per_mtok=5, output_per_mtok=25),
        "claude-sonnet-4-5-20250929": ModelPriceConfig(input_per_mtok=3, output_per_mtok=15),
        "claude-sonnet-4-20250514": ModelPriceConfig(input_per_mtok=3, output_per_mtok=15),
        "claude-haiku-4-5-20251001": ModelPriceConfig(input_per_mtok=1, output_per_mtok=5),
    }


class PricingConfig(BaseModel):
    """Model price table used for spend tracking and savings estimates."""

    models: dict[str, ModelPriceConfig] = Field(default_factory=_default_prices)


# Tools
class ShellToolConfig(BaseModel):
    timeout: int = 60


class WebToolConfig(BaseModel):
    search_api_key: str = ""
    max_results: int = 5
    max_fetch_chars: int = 20_000


class ToolsConfig(BaseModel):
    shell: ShellToolConfig = Field(default_factory=ShellToolConfig)
    web: WebToolConfig = Field(default_factory=WebToolConfig)


# Database
class DatabaseConfig(BaseModel):
    path: str = "data/taskbot.db"


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings — env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        TASKBOT_ASSISTANT__MODEL=openai/gpt-4o
        TASKBOT_SCHEDULER__DAILY_BUDGET=2.5
        TASKBOT_PROVIDERS__ANTHROPIC__API_KEY=sk-...
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKBOT_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    executors: ExecutorsConfig = Field(default_factory=ExecutorsConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        # YAML arrives as init kwargs; env must still win over it
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    # ── Computed properties ─────────────────────────────────

    @property
    def workspace_path(self) -> Path:
        return Path(self.assistant.workspace).expanduser().resolve()

    @property
    def db_path(self) -> Path:
        return Path(self.database.path)

    # ── Provider helpers ────────────────────────────────────

    def get_api_base(self, model: str | None = None) -> str | None:
        """Get API base URL for model name."""
        model_name = (model or self.assistant.model).lower()
        if "openrouter" in model_name:
            return self.providers.openrouter.api_base or "https://openrouter.ai/api/v1"
        for name in ProvidersConfig.model_fields:
            p = getattr(self.providers, name)
            if isinstance(p, ProviderConfig) and name in model_name and p.api_base:
                return p.api_base
        return None
