"""
Configuration module for Sidecar.
Handles environment variables, the model/provider catalog, and application settings.
"""

import os
import shutil
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class AWSConfig:
    """AWS-specific configuration (used by the Bedrock provider)"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ModelConfig:
    """Generation settings shared by provider adapters"""
    max_tokens: int = int(os.getenv("MAX_TOKENS", "16000"))
    temperature: Optional[float] = float(os.getenv("TEMPERATURE", "1")) if os.getenv("TEMPERATURE") else None
    max_tool_iterations: int = int(os.getenv("MAX_TOOL_ITERATIONS", "50"))


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Sidecar"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    verbose: bool = os.getenv("SIDECAR_VERBOSE", "false").lower() == "true"
    control_port: int = int(os.getenv("SIDECAR_PORT", "3001"))
    target_port: int = int(os.getenv("SIDECAR_TARGET_PORT", "3000"))
    dev_command: str = os.getenv("SIDECAR_DEV_COMMAND", "npm run dev")
    state_dir_name: str = ".sidecar"
    default_model: str = os.getenv("SIDECAR_DEFAULT_MODEL", "sonnet")
    # Tool confirmation
    confirm_timeout: float = float(os.getenv("CONFIRM_TIMEOUT", "120"))
    # Dev server supervision (seconds)
    health_timeout: float = float(os.getenv("DEV_SERVER_HEALTH_TIMEOUT", "30"))
    health_poll_interval: float = float(os.getenv("DEV_SERVER_POLL_INTERVAL", "0.5"))
    restart_grace_period: float = float(os.getenv("DEV_SERVER_GRACE_PERIOD", "5"))
    watch_debounce: float = float(os.getenv("WATCH_DEBOUNCE", "0.5"))
    watch_poll_interval: float = float(os.getenv("WATCH_POLL_INTERVAL", "1.0"))
    # Comparison mode
    max_comparison_runs: int = int(os.getenv("MAX_COMPARISON_RUNS", "5"))
    # Persisted event history
    history_limit: int = int(os.getenv("HISTORY_LIMIT", "500"))
    # Source files whose change re-arms a crashed dev server
    watch_extensions: List[str] = field(default_factory=lambda: [
        ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs", ".json",
        ".css", ".scss", ".html", ".md", ".mdx", ".env",
    ])
    watch_ignore_dirs: List[str] = field(default_factory=lambda: [
        ".git", "node_modules", ".next", ".nuxt", "dist", "build",
        ".cache", "coverage", ".turbo", ".sidecar", "__pycache__",
    ])


# ============================================================
# Provider catalog
# A provider flagged stateful_external keeps its own conversation
# state outside our transcript; switching into or out of it
# invalidates the caller-held history.
# ============================================================
PROVIDERS: Dict[str, Dict[str, Any]] = {
    "claude-cli": {
        "label": "Claude CLI",
        "env_key": None,
        "binary": "claude",
        "stateful_external": True,
    },
    "bedrock": {
        "label": "Amazon Bedrock",
        "env_key": None,
        "stateful_external": False,
    },
}

AVAILABLE_MODELS: List[Dict[str, Any]] = [
    # ----- Claude CLI (agent binary, no API key) -----
    {"id": "sonnet", "name": "Claude Sonnet", "provider": "claude-cli"},
    {"id": "opus", "name": "Claude Opus", "provider": "claude-cli"},
    {"id": "haiku", "name": "Claude Haiku", "provider": "claude-cli"},
    # ----- Claude on Bedrock -----
    {
        "id": "us.anthropic.claude-sonnet-4-5-20250929-v1:0",
        "name": "Claude Sonnet 4.5 (Bedrock)",
        "provider": "bedrock",
    },
    {
        "id": "us.anthropic.claude-opus-4-5-20251101-v1:0",
        "name": "Claude Opus 4.5 (Bedrock)",
        "provider": "bedrock",
    },
    {
        "id": "us.anthropic.claude-haiku-4-5-20251001-v1:0",
        "name": "Claude Haiku 4.5 (Bedrock)",
        "provider": "bedrock",
    },
]


# Create global config instances
aws_config = AWSConfig()
model_config = ModelConfig()
app_config = AppConfig()


def get_model_by_id(model_id: str) -> Optional[Dict[str, Any]]:
    """Get model configuration by ID"""
    for model in AVAILABLE_MODELS:
        if model["id"] == model_id:
            return model
    return None


def get_provider(model_id: str) -> Optional[str]:
    model = get_model_by_id(model_id)
    return model["provider"] if model else None


def get_provider_label(provider_id: str) -> str:
    return PROVIDERS.get(provider_id, {}).get("label", provider_id)


def is_stateful_provider(provider_id: Optional[str]) -> bool:
    """True when the provider keeps its own external conversation state."""
    if not provider_id:
        return False
    return bool(PROVIDERS.get(provider_id, {}).get("stateful_external", False))


def provider_available(provider_id: str) -> bool:
    """Binary-backed providers need the binary on PATH; keyed providers need their env var."""
    spec = PROVIDERS.get(provider_id)
    if spec is None:
        return False
    binary = spec.get("binary")
    if binary:
        return shutil.which(binary) is not None
    if provider_id == "bedrock":
        return aws_config.has_profile() or aws_config.has_explicit_credentials()
    env_key = spec.get("env_key")
    return bool(os.getenv(env_key)) if env_key else True


def get_model_catalog() -> List[Dict[str, Any]]:
    """Catalog grouped by provider, with availability flags for the model picker."""
    providers: Dict[str, Dict[str, Any]] = {}
    for model in AVAILABLE_MODELS:
        pid = model["provider"]
        if pid not in providers:
            providers[pid] = {
                "id": pid,
                "label": get_provider_label(pid),
                "available": provider_available(pid),
                "models": [],
            }
        providers[pid]["models"].append({"id": model["id"], "label": model["name"]})
    return list(providers.values())
