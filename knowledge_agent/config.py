"""
Configuration — loads settings from .knowledge_agent.yaml, environment
variables, and built-in defaults (in that priority order: CLI args > env >
YAML > defaults).
"""

import os

import yaml


# Knowledge documents shipped inside the package
BUNDLED_KNOWLEDGE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "knowledge")

_DEFAULTS = {
    "store_path": "~/.knowledge_agent/data/knowledge.db",
    "knowledge_dir": BUNDLED_KNOWLEDGE_DIR,
    "search_limit": 10,
    "confidence_low": 0.4,
    "confidence_high": 0.7,
    "completion_base_url": "http://localhost:8000/v1",
    "completion_model": "claude-sonnet-4-5-20250929",
    "completion_api_key": "",
    "completion_timeout": 60.0,
    "completion_max_tokens": 2048,
    "llm_max_retries": 2,
    "llm_retry_delay": 1.0,
    "web_search_enabled": True,
    "web_search_provider": "duckduckgo",
    "web_search_api_key": "",
    "web_search_max_results": 5,
    "web_search_timeout": 10.0,
    "web_cache_dir": "~/.knowledge_agent/cache",
    "web_cache_ttl_hours": 24,
    "log_dir": "~/.knowledge_agent/logs",
}

# Config file search locations
_CONFIG_FILENAMES = [".knowledge_agent.yaml", ".knowledge_agent.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Locate the YAML config.

    An explicit path (argument, then ``KNOWLEDGE_AGENT_CONFIG``) is used as
    given and never falls back to the search; otherwise the first
    ``.knowledge_agent.y[a]ml`` in CWD, then the home directory, wins.
    """
    explicit_path = explicit_path or os.getenv("KNOWLEDGE_AGENT_CONFIG")
    if explicit_path:
        explicit_path = os.path.expanduser(explicit_path)
        return explicit_path if os.path.isfile(explicit_path) else None

    candidates = (
        os.path.join(d, name)
        for d in (os.getcwd(), os.path.expanduser("~"))
        for name in _CONFIG_FILENAMES
    )
    return next((p for p in candidates if os.path.isfile(p)), None)


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


def _section(yd: dict, name: str) -> dict:
    value = yd.get(name)
    return value if isinstance(value, dict) else {}


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables
    3. .knowledge_agent.yaml config file
    4. Built-in defaults

    Nested YAML sections (``confidence``, ``completion``, ``web_search``)
    group related keys.
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(env_key, section: dict, yaml_key: str, default, cast=str):
            env_val = os.getenv(env_key) if env_key else None
            if env_val is not None:
                return cast(env_val)
            yaml_val = section.get(yaml_key)
            if yaml_val is not None:
                return cast(yaml_val)
            return default

        def _get_bool(env_key: str, section: dict, yaml_key: str, default: bool) -> bool:
            env_val = os.getenv(env_key)
            if env_val is not None:
                return env_val.lower() in ("1", "true", "yes")
            yaml_val = section.get(yaml_key)
            if yaml_val is not None:
                return bool(yaml_val)
            return default

        # Store and ingestion
        self.STORE_PATH = os.path.expanduser(
            _get("KNOWLEDGE_STORE_PATH", yd, "store_path", _DEFAULTS["store_path"]))
        self.KNOWLEDGE_DIR = os.path.expanduser(
            _get("KNOWLEDGE_DIR", yd, "knowledge_dir", _DEFAULTS["knowledge_dir"]))
        self.SEARCH_LIMIT = _get("SEARCH_LIMIT", yd, "search_limit",
                                 _DEFAULTS["search_limit"], cast=int)

        # Confidence thresholds
        conf = _section(yd, "confidence")
        self.CONFIDENCE_LOW = _get("CONFIDENCE_LOW", conf, "low",
                                   _DEFAULTS["confidence_low"], cast=float)
        self.CONFIDENCE_HIGH = _get("CONFIDENCE_HIGH", conf, "high",
                                    _DEFAULTS["confidence_high"], cast=float)

        # Completion service
        comp = _section(yd, "completion")
        self.COMPLETION_BASE_URL = _get("COMPLETION_BASE_URL", comp, "base_url",
                                        _DEFAULTS["completion_base_url"])
        self.COMPLETION_MODEL = _get("COMPLETION_MODEL", comp, "model",
                                     _DEFAULTS["completion_model"])
        self.COMPLETION_API_KEY = _get("COMPLETION_API_KEY", comp, "api_key",
                                       _DEFAULTS["completion_api_key"])
        self.COMPLETION_TIMEOUT = _get("COMPLETION_TIMEOUT", comp, "timeout",
                                       _DEFAULTS["completion_timeout"], cast=float)
        self.COMPLETION_MAX_TOKENS = _get(None, comp, "max_tokens",
                                          _DEFAULTS["completion_max_tokens"], cast=int)
        self.LLM_MAX_RETRIES = _get("LLM_MAX_RETRIES", yd, "llm_max_retries",
                                    _DEFAULTS["llm_max_retries"], cast=int)
        self.LLM_RETRY_DELAY = _get("LLM_RETRY_DELAY", yd, "llm_retry_delay",
                                    _DEFAULTS["llm_retry_delay"], cast=float)

        # Web search fallback
        web = _section(yd, "web_search")
        self.WEB_SEARCH_ENABLED = _get_bool("WEB_SEARCH_ENABLED", web, "enabled",
                                            _DEFAULTS["web_search_enabled"])
        self.WEB_SEARCH_PROVIDER = _get("WEB_SEARCH_PROVIDER", web, "provider",
                                        _DEFAULTS["web_search_provider"])
        self.WEB_SEARCH_API_KEY = _get("WEB_SEARCH_API_KEY", web, "api_key",
                                       _DEFAULTS["web_search_api_key"])
        self.WEB_SEARCH_MAX_RESULTS = _get(None, web, "max_results",
                                           _DEFAULTS["web_search_max_results"], cast=int)
        self.WEB_SEARCH_TIMEOUT = _get(None, web, "timeout",
                                       _DEFAULTS["web_search_timeout"], cast=float)
        self.WEB_CACHE_DIR = os.path.expanduser(
            _get("WEB_CACHE_DIR", web, "cache_dir", _DEFAULTS["web_cache_dir"]))
        self.WEB_CACHE_TTL_HOURS = _get("WEB_CACHE_TTL_HOURS", web, "cache_ttl_hours",
                                        _DEFAULTS["web_cache_ttl_hours"], cast=int)

        # Logging
        self.LOG_DIR = os.path.expanduser(
            _get("LOG_DIR", yd, "log_dir", _DEFAULTS["log_dir"]))

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
