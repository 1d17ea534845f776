from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseModel):
    strategy: Literal["adaptive", "sequential"] = Field(
        "adaptive",
        description="Orchestration strategy; 'sequential' disables the reinference gate, observation and replanning.",
    )
    max_attempts: int = Field(3, ge=0, description="Retries allowed after the initial attempt of a step.")
    retry_base_delay_seconds: float = Field(
        1.0,
        ge=0.0,
        description="Base of the linear inter-attempt delay (delay = base * attempt number).",
    )
    invocation_timeout_seconds: float = Field(30.0, ge=0.1, description="Timeout applied to each tool invocation attempt.")
    history_tail: int = Field(3, ge=1, description="Number of recent execution records shown to the reinference gate.")
    replan_failure_window: int = Field(2, ge=1, description="Consecutive failed records that trigger replanning.")
    replan_min_remaining_steps: int = Field(2, ge=1, description="Steps that must remain after the current one to replan.")
    max_replans: int = Field(3, ge=0, description="Maximum plan adaptations per run.")
    result_preview_chars: int = Field(500, ge=50, description="Characters of each prior result shown to oracle prompts.")


class OracleSettings(BaseModel):
    host: str = Field("http://localhost", description="Base URL where Ollama is running.")
    port: int = Field(11434, ge=1, le=65535)
    model: str = Field("llama3.1", description="Model consulted for classification, extraction, planning and formatting.")
    temperature: float = Field(0.1, ge=0.0, le=1.0)
    request_timeout_seconds: float = Field(60.0, ge=1.0)
    max_retries: int = Field(3, ge=1, description="Attempts per oracle call before degrading to a fallback.")


class ToolSettings(BaseModel):
    endpoint: str = Field("http://localhost:6111", description="Base URL of the tool-provider gateway.")
    api_key: str | None = Field(default=None, description="Optional gateway authentication token.")
    api_key_header: str = Field("Authorization", description="Header name used when attaching API tokens.")
    auth_scheme: str = Field("Bearer", description="Auth scheme prefix applied to the API key (e.g. 'Bearer').")
    principal_header: str = Field("X-Principal", description="Header carrying the principal a call is made for.")
    timeout_seconds: float = Field(30.0, ge=0.1)
    verify_ssl: bool = Field(True)
    operations_path_template: str = Field(
        "/capabilities/{capability}/operations",
        description="Path template listing the operations a capability advertises.",
    )
    invoke_path_template: str = Field(
        "/capabilities/{capability}/operations/{operation}/invoke",
        description="Path template used to invoke an operation.",
    )
    catalog_cache_ttl_seconds: int = Field(300, ge=0, description="TTL for cached operation listings.")
    extra_headers: dict[str, str] = Field(default_factory=dict)
    aliases: dict[str, str] = Field(
        default_factory=lambda: {"twitter": "x-mcp", "x": "x-mcp"},
        description="Capability aliases normalized before chaining rules are matched.",
    )


class ChainingRule(BaseModel):
    capability: str | None = Field(default=None, description="Capability the rule applies to; None matches any.")
    create_marker: str = Field("create_draft", min_length=1)
    create_operation: str = Field("create_draft_thread", min_length=1)
    publish_operation: str = Field("publish_draft", min_length=1)
    identifier_argument: str = Field("id", min_length=1)
    identifier_keys: list[str] = Field(default_factory=lambda: ["draft_id", "id"])
    content_argument: str = Field("content", min_length=1)

    def matches_capability(self, capability: str) -> bool:
        if self.capability is None:
            return True
        return self.capability.lower() == capability.lower()


class ChainingSettings(BaseModel):
    enabled: bool = Field(True)
    rules: list[ChainingRule] = Field(default_factory=lambda: [ChainingRule()])  # type: ignore[call-arg]
    content_max_length: int = Field(280, ge=10, description="Hard output-length ceiling of the publishing medium.")


class FormattingSettings(BaseModel):
    long_result_chars: int = Field(3000, ge=100, description="Raw results longer than this are filtered when formatted.")
    stream_terminal_step: bool = Field(True)


class ObservabilitySettings(BaseModel):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_logs: bool = Field(True, description="Render logs as JSON; disable for console output during local runs.")


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")

    engine: EngineSettings = Field(default_factory=EngineSettings)  # type: ignore[arg-type]
    oracle: OracleSettings = Field(default_factory=OracleSettings)  # type: ignore[arg-type]
    tools: ToolSettings = Field(default_factory=ToolSettings)  # type: ignore[arg-type]
    chaining: ChainingSettings = Field(default_factory=ChainingSettings)  # type: ignore[arg-type]
    formatting: FormattingSettings = Field(default_factory=FormattingSettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_prefix="FLOWPILOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        return Settings(**dict(overrides))
    return _get_cached_settings()
