"""
Configuration: endpoint, reasoning tiers and storage settings.

Loading priority:
  1. Project dir .streamchat.yml
  2. Global ~/.streamchat/config.yml

Environment variables (and .env files) override file values.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, Callable, Any

import yaml
from dotenv import load_dotenv

CONFIG_DIR = Path.home() / ".streamchat"
CONFIG_FILE = CONFIG_DIR / "config.yml"
HISTORY_FILE = CONFIG_DIR / "history.txt"
PROJECT_CONFIG_NAME = ".streamchat.yml"
DEFAULT_DATABASE_URL = f"sqlite:///{CONFIG_DIR / 'streamchat.db'}"

REASONING_LEVELS = ("instant", "low", "medium", "high")
DEFAULT_TOKEN_CEILINGS = {
    "instant": 1024,
    "low": 2048,
    "medium": 4096,
    "high": 8192,
}
LANGUAGES = {"en", "es"}

MAX_ITERATIONS = 5
CONTEXT_WINDOW = 10


# ── Configuration metadata and validation ──


@dataclass
class ConfigFieldSpec:
    """Configuration field specification with validation rules."""
    key: str
    field_name: str
    description: str
    value_type: str  # "str", "int", "bool"
    default: Any
    validator: Optional[Callable[[Any], tuple[bool, Any, str]]] = None  # (valid, coerced_value, error_msg)


def _validate_int_range(value: Any, min_val: int, max_val: int) -> tuple[bool, int, str]:
    """Validate integer within range."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return False, 0, "Must be an integer"
    if parsed < min_val or parsed > max_val:
        return False, max(min_val, min(max_val, parsed)), f"Must be between {min_val} and {max_val}"
    return True, parsed, ""


def _validate_enum(value: Any, valid_values) -> tuple[bool, str, str]:
    """Validate value is in allowed set."""
    val_str = str(value).strip().lower()
    if val_str not in valid_values:
        return False, "", f"Must be one of: {', '.join(sorted(valid_values))}"
    return True, val_str, ""


def _validate_bool(value: Any) -> tuple[bool, bool, str]:
    """Validate boolean value."""
    if isinstance(value, bool):
        return True, value, ""
    if isinstance(value, str):
        val_lower = value.strip().lower()
        if val_lower in ("1", "true", "yes", "on"):
            return True, True, ""
        if val_lower in ("0", "false", "no", "off"):
            return True, False, ""
    return False, False, "Must be true/false, yes/no, on/off, or 1/0"


def _validate_url(value: Any) -> tuple[bool, str, str]:
    url = str(value or "").strip()
    if not url.lower().startswith(("http://", "https://")):
        return False, "", "Must be an http(s) URL"
    return True, url.rstrip("/"), ""


CONFIG_FIELDS: Dict[str, ConfigFieldSpec] = {
    "api-base": ConfigFieldSpec(
        key="api-base",
        field_name="api_base",
        description="Base URL of the OpenAI-compatible endpoint",
        value_type="str",
        default="http://localhost:8080/v1",
        validator=_validate_url,
    ),
    "model": ConfigFieldSpec(
        key="model",
        field_name="model",
        description="Model identifier sent with every request",
        value_type="str",
        default="local-model",
    ),
    "reasoning-level": ConfigFieldSpec(
        key="reasoning-level",
        field_name="reasoning_level",
        description="Thinking tier: instant, low, medium or high",
        value_type="str",
        default="medium",
        validator=lambda v: _validate_enum(v, set(REASONING_LEVELS)),
    ),
    "max-iterations": ConfigFieldSpec(
        key="max-iterations",
        field_name="max_iterations",
        description="Maximum tool-loop rounds per turn",
        value_type="int",
        default=MAX_ITERATIONS,
        validator=lambda v: _validate_int_range(v, 1, 20),
    ),
    "context-window": ConfigFieldSpec(
        key="context-window",
        field_name="context_window",
        description="Number of prior messages sent with each request",
        value_type="int",
        default=CONTEXT_WINDOW,
        validator=lambda v: _validate_int_range(v, 1, 100),
    ),
    "request-timeout": ConfigFieldSpec(
        key="request-timeout",
        field_name="request_timeout",
        description="Connect/read timeout in seconds for the model endpoint",
        value_type="int",
        default=120,
        validator=lambda v: _validate_int_range(v, 5, 3600),
    ),
    "language": ConfigFieldSpec(
        key="language",
        field_name="language",
        description="Language of user-visible error messages",
        value_type="str",
        default="en",
        validator=lambda v: _validate_enum(v, LANGUAGES),
    ),
    "search-max-results": ConfigFieldSpec(
        key="search-max-results",
        field_name="search_max_results",
        description="Results returned by the web_search tool",
        value_type="int",
        default=5,
        validator=lambda v: _validate_int_range(v, 1, 20),
    ),
    "verbose": ConfigFieldSpec(
        key="verbose",
        field_name="verbose",
        description="Verbose logging",
        value_type="bool",
        default=False,
        validator=_validate_bool,
    ),
}


def validate_config_value(key: str, value: Any) -> tuple[bool, Any, str]:
    """
    Validate a configuration value.

    Returns:
        (is_valid, coerced_value, error_message)
    """
    if key not in CONFIG_FIELDS:
        return False, value, f"Unknown configuration key: {key}"

    spec = CONFIG_FIELDS[key]
    if spec.validator:
        return spec.validator(value)

    if spec.value_type == "int":
        try:
            return True, int(value), ""
        except (TypeError, ValueError):
            return False, spec.default, "Must be an integer"
    if spec.value_type == "bool":
        return _validate_bool(value)
    return True, str(value), ""


@dataclass
class Config:
    api_base: str = "http://localhost:8080/v1"
    model: str = "local-model"
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None
    reasoning_level: str = "medium"
    token_ceilings: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TOKEN_CEILINGS))
    max_iterations: int = MAX_ITERATIONS
    context_window: int = CONTEXT_WINDOW
    request_timeout: int = 120
    database_url: str = DEFAULT_DATABASE_URL
    language: str = "en"
    serpapi_key: Optional[str] = None
    search_max_results: int = 5
    verbose: bool = False
    log_file: Optional[str] = None
    _config_source: str = ""

    @classmethod
    def load(cls, project_dir: str = ".") -> "Config":
        config = cls()
        project_path = Path(project_dir).resolve()

        for env_path in [CONFIG_DIR / ".env", project_path / ".env"]:
            if env_path.exists():
                load_dotenv(env_path, override=False)

        for candidate in [project_path / PROJECT_CONFIG_NAME, CONFIG_FILE]:
            if candidate.exists():
                config._load_yaml(candidate)
                config._config_source = str(candidate)
                break
        else:
            config._config_source = str(CONFIG_FILE)

        config._apply_env()
        return config

    def _load_yaml(self, filepath: Path):
        try:
            with open(filepath, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError):
            return
        if not isinstance(data, dict):
            return

        self.api_base = str(data.get("api-base", self.api_base)).rstrip("/")
        self.model = str(data.get("model", self.model))
        self.api_key = data.get("api-key") or None
        self.api_key_env = data.get("api-key-env") or None
        self.reasoning_level = self._normalize_reasoning_level(
            data.get("reasoning-level", self.reasoning_level)
        )
        self.token_ceilings = self._normalize_token_ceilings(data.get("token-ceilings"))
        self.max_iterations = self._coerce_positive_int(
            data.get("max-iterations", MAX_ITERATIONS), default=MAX_ITERATIONS, max_value=20
        )
        self.context_window = self._coerce_positive_int(
            data.get("context-window", CONTEXT_WINDOW), default=CONTEXT_WINDOW, max_value=100
        )
        self.request_timeout = self._coerce_positive_int(
            data.get("request-timeout", 120), default=120, min_value=5, max_value=3600
        )
        self.database_url = str(data.get("database-url", self.database_url))
        self.language = self._normalize_language(data.get("language", "en"))
        self.serpapi_key = data.get("serpapi-key") or None
        self.search_max_results = self._coerce_positive_int(
            data.get("search-max-results", 5), default=5, max_value=20
        )
        self.verbose = self._coerce_bool(data.get("verbose", False), default=False)
        self.log_file = data.get("log-file") or None

    def _apply_env(self):
        env_map = {
            "STREAMCHAT_API_BASE": ("api_base", lambda v: v.rstrip("/")),
            "STREAMCHAT_MODEL": ("model", str),
            "STREAMCHAT_API_KEY": ("api_key", str),
            "STREAMCHAT_REASONING": ("reasoning_level", self._normalize_reasoning_level),
            "STREAMCHAT_DATABASE_URL": ("database_url", str),
            "STREAMCHAT_LANGUAGE": ("language", self._normalize_language),
            "STREAMCHAT_VERBOSE": ("verbose", lambda v: v.lower() in ("true", "1")),
            "SERPAPI_KEY": ("serpapi_key", str),
        }
        for env_var, (attr, conv) in env_map.items():
            val = os.environ.get(env_var)
            if val:
                try:
                    setattr(self, attr, conv(val))
                except (ValueError, TypeError):
                    pass

    def save(self, filepath: Optional[str] = None):
        target = Path(filepath) if filepath else (
            Path(self._config_source) if self._config_source else CONFIG_FILE
        )
        target.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "api-base": self.api_base,
            "model": self.model,
            "reasoning-level": self.reasoning_level,
            "token-ceilings": dict(self.token_ceilings),
            "max-iterations": self.max_iterations,
            "context-window": self.context_window,
            "request-timeout": self.request_timeout,
            "database-url": self.database_url,
            "language": self.language,
            "search-max-results": self.search_max_results,
            "verbose": self.verbose,
        }
        if self.api_key:
            data["api-key"] = self.api_key
        if self.api_key_env:
            data["api-key-env"] = self.api_key_env
        if self.serpapi_key:
            data["serpapi-key"] = self.serpapi_key
        if self.log_file:
            data["log-file"] = self.log_file

        with open(target, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        self._config_source = str(target)

    # ── Derived values ──

    @property
    def chat_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/chat/completions"

    @property
    def models_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/models"

    def resolve_api_key(self) -> Optional[str]:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None

    def max_tokens_for(self, level: Optional[str] = None) -> int:
        level = self._normalize_reasoning_level(level or self.reasoning_level)
        return self.token_ceilings.get(level, DEFAULT_TOKEN_CEILINGS[level])

    def summary(self) -> dict:
        return {
            "api_base": self.api_base,
            "model": self.model,
            "api_key": "set" if self.resolve_api_key() else "not set",
            "reasoning_level": self.reasoning_level,
            "max_tokens": self.max_tokens_for(),
            "max_iterations": self.max_iterations,
            "context_window": self.context_window,
            "database_url": self.database_url,
            "language": self.language,
            "web_search": "serpapi" if self.serpapi_key else "duckduckgo",
            "config_source": self._config_source,
        }

    def set_config_value(self, key: str, value: Any) -> tuple[bool, str]:
        """Validate and set a config value by its YAML key, then persist."""
        is_valid, coerced, error = validate_config_value(key, value)
        if not is_valid:
            return False, error
        setattr(self, CONFIG_FIELDS[key].field_name, coerced)
        self.save()
        return True, f"{key} = {coerced}"

    # ── Normalizers ──

    @staticmethod
    def _normalize_reasoning_level(value) -> str:
        level = str(value or "medium").strip().lower()
        if level not in REASONING_LEVELS:
            return "medium"
        return level

    @staticmethod
    def _normalize_language(value) -> str:
        lang = str(value or "en").strip().lower()
        if lang not in LANGUAGES:
            return "en"
        return lang

    @classmethod
    def _normalize_token_ceilings(cls, value) -> Dict[str, int]:
        ceilings = dict(DEFAULT_TOKEN_CEILINGS)
        if not isinstance(value, dict):
            return ceilings
        for level, raw in value.items():
            level = str(level).strip().lower()
            if level not in REASONING_LEVELS:
                continue
            ceilings[level] = cls._coerce_positive_int(
                raw, default=DEFAULT_TOKEN_CEILINGS[level], min_value=64, max_value=200000
            )
        return ceilings

    @staticmethod
    def _coerce_bool(value, default: bool) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
        return default

    @staticmethod
    def _coerce_positive_int(value, default: int, min_value: int = 1, max_value: int = 100000) -> int:
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            return default
        return max(min_value, min(max_value, parsed))
