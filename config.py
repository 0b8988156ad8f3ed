#!/usr/bin/env python3
"""
Configuration management for the feed enricher.

This module centralizes all configuration loading, validation, and management.
It handles environment variables, the optional secrets file, the feed source
list and prompt overrides, and provides a clean interface for accessing
configuration values throughout the application.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any, List, Optional
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv

# Built-in feed sources, used when feeds.yaml is missing or has no valid feeds
DEFAULT_FEED_SOURCES: Dict[str, str] = {
    "huggingface": "https://huggingface.co/blog/feed.xml",
    "openai": "https://openai.com/blog/rss.xml",
    "wandb": "https://wandb.ai/site/blog/rss.xml",
    "lilianweng": "https://lilianweng.github.io/index.xml",
    "arxiv-cs-lg": "https://arxiv.org/rss/cs.LG",
    "arxiv-cs-cl": "https://arxiv.org/rss/cs.CL",
    "arxiv-search-evals": (
        "https://export.arxiv.org/api/query?search_query=all:%22LLM%20evaluation%22"
        "&sortBy=submittedDate&sortOrder=descending&max_results=20"
    ),
}

REFRESH_MINUTES_MIN = 5
REFRESH_MINUTES_MAX = 24 * 60


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    All modules should use get_logger() to create module-specific loggers that inherit this configuration.
    """
    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"

    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True  # Force reconfiguration if already configured
    )

    # Line buffering for real-time container logs (stdout may be swapped by test runners)
    try:
        sys.stdout.reconfigure(line_buffering=True)
        sys.stderr.reconfigure(line_buffering=True)
    except AttributeError:
        pass

    # Reduce third-party verbosity unless explicitly overridden
    for name in ("azure", "azure.core", "azure.monitor", "httpx", "openai"):
        getLogger(name).setLevel(WARNING)

    return getLogger("FeedEnricher")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "summarizer", "aggregator")

    Returns:
        A logger named "FeedEnricher.{name}"
    """
    return getLogger(f"FeedEnricher.{name}")


logger = _setup_global_logger()


class Config:
    """Configuration manager for the feed enricher.

    Sources, in load order:
    1. Environment variables
    2. .env file (if present)
    3. YAML secrets file (if SECRETS_FILE environment variable is set)
    4. feeds.yaml (feed sources and optional track keyword overrides)

    Example secrets.yaml format:
    ```yaml
    OPENAI_API_KEY: "your-api-key"
    OPENAI_MODEL: "gpt-4o"
    ```
    """

    def __init__(self):
        """Initialize configuration with environment variables and validation."""
        self._load_environment()
        self._validate_and_set_config()
        self._load_feed_sources()

    def _load_environment(self):
        """Load environment variables from .env file and secrets file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")

        self._load_secrets_file()

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.1) -> float:
        """Validate and parse a positive float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        self.USER_AGENT = environ.get(
            "USER_AGENT", "Mozilla/5.0 (compatible; FeedEnricher/1.0; +https://github.com/feed-enricher)"
        )

        # Refresh cycle. The scheduler clamps REFRESH_MINUTES into a sane range.
        self.REFRESH_MINUTES = self._validate_positive_int("REFRESH_MINUTES", 60, 0)
        self.MAX_ITEMS = self._validate_positive_int("MAX_ITEMS", 25, 1)
        self.ENRICH_CONCURRENCY = self._validate_positive_int("ENRICH_CONCURRENCY", 2, 1)

        # Per-operation timeouts (seconds)
        self.FEED_TIMEOUT = self._validate_positive_float("FEED_TIMEOUT", 15.0, 1.0)
        self.PAGE_TIMEOUT = self._validate_positive_float("PAGE_TIMEOUT", 25.0, 1.0)
        self.AI_TIMEOUT = self._validate_positive_float("AI_TIMEOUT", 45.0, 1.0)

        # Retry configuration
        self.FEED_MAX_RETRIES = self._validate_positive_int("FEED_MAX_RETRIES", 1, 0)
        self.RETRY_DELAY_BASE = self._validate_positive_float("RETRY_DELAY_BASE", 1.0, 0.1)
        self.AI_MAX_RETRIES = self._validate_positive_int("AI_MAX_RETRIES", 1, 0)
        self.AI_RETRY_DELAY_BASE = self._validate_positive_float("AI_RETRY_DELAY_BASE", 1.0, 0.1)

        # Page fetch pacing (0 disables rate limiting)
        self.PAGE_REQUESTS_PER_MINUTE = self._validate_positive_int("PAGE_REQUESTS_PER_MINUTE", 0, 0)

        # Text size bounds
        self.EXTRACT_MAX_CHARS = self._validate_positive_int("EXTRACT_MAX_CHARS", 12000, 500)
        self.SUMMARY_INPUT_MAX_CHARS = self._validate_positive_int("SUMMARY_INPUT_MAX_CHARS", 6000, 500)
        self.SNIPPET_MAX_CHARS = self._validate_positive_int("SNIPPET_MAX_CHARS", 1500, 100)
        self.SUMMARY_FALLBACK_CHARS = self._validate_positive_int("SUMMARY_FALLBACK_CHARS", 600, 100)

        # AI service configuration
        self.OPENAI_API_KEY = environ.get("OPENAI_API_KEY") or None
        self.OPENAI_MODEL = environ.get("OPENAI_MODEL", "gpt-4o")
        self.OPENAI_BASE_URL = environ.get("OPENAI_BASE_URL") or None
        self.AZURE_ENDPOINT = environ.get("AZURE_ENDPOINT") or None
        # Normalize endpoint (strip scheme and trailing slashes) to avoid malformed URLs
        if self.AZURE_ENDPOINT:
            normalized = self.AZURE_ENDPOINT.strip()
            if normalized.lower().startswith("https://"):
                normalized = normalized[8:]
            elif normalized.lower().startswith("http://"):
                normalized = normalized[7:]
            normalized = normalized.strip("/")
            if normalized != self.AZURE_ENDPOINT:
                logger.info(f"Normalized AZURE_ENDPOINT to '{normalized}'")
            self.AZURE_ENDPOINT = normalized
        self.OPENAI_API_VERSION = environ.get("OPENAI_API_VERSION") or None
        self.SUMMARIZE = environ.get("SUMMARIZE", "true").lower() == "true"
        self.AI_TEMPERATURE = self._validate_positive_float("AI_TEMPERATURE", 0.2, 0.0)
        self.AI_MAX_TOKENS = self._validate_positive_int("AI_MAX_TOKENS", 220, 16)
        self.CHAT_MAX_TOKENS = self._validate_positive_int("CHAT_MAX_TOKENS", 800, 16)

        # HTTP API
        self.HOST = environ.get("HOST", "0.0.0.0")
        self.PORT = self._validate_positive_int("PORT", 3000, 1)

        # File paths
        base_dir = path.dirname(path.abspath(__file__))
        self.FEEDS_CONFIG_PATH = environ.get("FEEDS_CONFIG_PATH", path.join(base_dir, "feeds.yaml"))
        self.PROMPT_CONFIG_PATH = environ.get("PROMPT_CONFIG_PATH", path.join(base_dir, "prompt.yaml"))

    @property
    def HAS_AI_CREDENTIALS(self) -> bool:
        """Whether an AI service credential is configured."""
        return bool(self.OPENAI_API_KEY and self.OPENAI_API_KEY.strip())

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        Both a top-level mapping and a mapping nested under `environment` are accepted.
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            logger.debug("SECRETS_FILE not set; relying on environment/.env for secrets")
            return

        secrets_config = self._safe_read_yaml(secrets_file_path, 2 * 1024 * 1024, 'secrets')
        if not isinstance(secrets_config, dict):
            if secrets_config is not None:
                logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
            return

        env_vars = secrets_config.get('environment') if isinstance(secrets_config.get('environment'), dict) else secrets_config

        secrets_loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                secrets_loaded += 1
            else:
                logger.warning(f"Skipping invalid environment variable in secrets file: {key}")
        logger.info(f"Loaded {secrets_loaded} environment variables from secrets file {secrets_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Args:
            file_path: Path to the YAML file
            max_size: Maximum allowed file size in bytes
            kind: Short label for logging context (e.g. 'secrets', 'feeds')

        Returns:
            Parsed YAML (mapping/list/primitive) or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.warning(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def _load_feed_sources(self) -> None:
        """Populate FEED_SOURCES and TRACK_KEYWORDS from feeds.yaml.

        Any failure results in the built-in default source list and no keyword override.
        """
        feeds_path = self.FEEDS_CONFIG_PATH
        config_data = self._safe_read_yaml(feeds_path, 5 * 1024 * 1024, 'feeds')
        self.FEED_SOURCES = dict(DEFAULT_FEED_SOURCES)
        self.TRACK_KEYWORDS = None
        if not isinstance(config_data, dict):
            logger.info(f"Using {len(self.FEED_SOURCES)} built-in feed sources")
            return

        feeds_section = config_data.get('feeds')
        if isinstance(feeds_section, dict):
            new_sources: Dict[str, str] = {}
            for feed_slug, feed_cfg in feeds_section.items():
                if isinstance(feed_cfg, dict) and isinstance(feed_cfg.get('url'), str) and feed_cfg['url'].strip():
                    new_sources[str(feed_slug)] = feed_cfg['url'].strip()
                elif isinstance(feed_cfg, str) and feed_cfg.strip():
                    new_sources[str(feed_slug)] = feed_cfg.strip()
                else:
                    logger.warning(f"Skipping invalid feed configuration for '{feed_slug}': {feed_cfg}")
            if new_sources:
                self.FEED_SOURCES = new_sources
                logger.info(f"Loaded {len(self.FEED_SOURCES)} feeds from {feeds_path}")
            else:
                logger.warning(f"No valid feeds found in {feeds_path}; using built-in sources")
        else:
            logger.warning(f"No feeds section in {feeds_path}; using built-in sources")

        self.TRACK_KEYWORDS = self._parse_track_keywords(config_data.get('tracks'), feeds_path)

    def _parse_track_keywords(self, tracks_section: Any, feeds_path: str) -> Optional[Dict[str, List[str]]]:
        """Parse the optional ordered `tracks:` mapping (track label -> keyword list)."""
        if tracks_section is None:
            return None
        if not isinstance(tracks_section, dict):
            logger.warning(f"tracks section in {feeds_path} must be a mapping; ignoring")
            return None
        parsed: Dict[str, List[str]] = {}
        for label, keywords in tracks_section.items():
            if isinstance(keywords, list):
                words = [str(k).strip() for k in keywords if str(k).strip()]
                if words:
                    parsed[str(label)] = words
            else:
                logger.warning(f"Keywords for track '{label}' must be a list; ignoring")
        return parsed or None

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "refresh_minutes": self.REFRESH_MINUTES,
            "max_items": self.MAX_ITEMS,
            "enrich_concurrency": self.ENRICH_CONCURRENCY,
            "feed_timeout": self.FEED_TIMEOUT,
            "page_timeout": self.PAGE_TIMEOUT,
            "ai_timeout": self.AI_TIMEOUT,
            "feed_count": len(self.FEED_SOURCES),
            "summarize": self.SUMMARIZE,
            "model": self.OPENAI_MODEL,
            "has_openai_key": self.HAS_AI_CREDENTIALS,
            "azure": bool(self.AZURE_ENDPOINT and self.OPENAI_API_VERSION),
            "custom_tracks": bool(self.TRACK_KEYWORDS),
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
        }


# Global configuration instance
config = Config()
