"""
Configuration management for xhs-writer.

Environment-based configuration using python-dotenv for secure credential handling.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: str = "true") -> bool:
    """Read a boolean switch; anything other than 'false' counts as enabled."""
    return os.getenv(name, default).strip().lower() != "false"


class CredentialConfig:
    """Credential pool configuration."""

    # Environment prefixes for the two pools
    SEARCH_PREFIX: str = "XHS_COOKIE"
    DETAIL_PREFIX: str = "XHS_DETAIL_COOKIE"

    # Consecutive auth failures before a credential is quarantined
    MAX_FAILURES: int = int(os.getenv("CREDENTIAL_MAX_FAILURES", "3"))

    # Seconds an invalid credential waits before lazy reinstatement (10 minutes)
    COOLDOWN_SECONDS: float = float(os.getenv("CREDENTIAL_COOLDOWN_SECONDS", "600"))

    # Pause between probes when validating a whole pool
    VALIDATE_ALL_DELAY_SECONDS: float = float(os.getenv("CREDENTIAL_VALIDATE_DELAY", "1.0"))


class SearchConfig:
    """Content search API configuration."""

    SEARCH_URL: str = os.getenv(
        "XHS_SEARCH_URL", "https://edith.xiaohongshu.com/api/sns/web/v1/search/notes"
    )

    USER_AGENT: str = os.getenv(
        "XHS_USER_AGENT",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    )
    ORIGIN: str = "https://www.xiaohongshu.com"
    REFERER: str = "https://www.xiaohongshu.com/"

    # Request timeouts in seconds
    REQUEST_TIMEOUT: float = float(os.getenv("SEARCH_TIMEOUT", "15"))
    PROBE_TIMEOUT: float = float(os.getenv("PROBE_TIMEOUT", "10"))

    # Pagination
    TARGET_NOTES_COUNT: int = int(os.getenv("TARGET_NOTES_COUNT", "40"))
    MAX_PAGES: int = int(os.getenv("MAX_PAGES", "3"))
    PAGE_SIZE: int = int(os.getenv("PAGE_SIZE", "20"))

    # Credential/transport attempts for one logical fetch
    FETCH_MAX_ATTEMPTS: int = int(os.getenv("FETCH_MAX_ATTEMPTS", "3"))
    FETCH_BASE_DELAY: float = float(os.getenv("FETCH_BASE_DELAY", "1.0"))


class CacheConfig:
    """Cache directory and expiry configuration."""

    # Cache time-to-live in seconds (6 hours default)
    TTL_SECONDS: float = float(os.getenv("CACHE_TTL_HOURS", "6")) * 3600

    # Preferred cache root; may be read-only in serverless deployments
    CACHE_DIR: Path = Path(os.getenv("CACHE_DIR", str(Path.cwd() / "data" / "cache")))

    # Writable fallback used when CACHE_DIR cannot be created
    FALLBACK_CACHE_DIR: Path = (
        Path(os.getenv("TMPDIR") or tempfile.gettempdir()) / "xhs-writer" / "cache"
    )

    # Upper bound on files kept after a sweep
    MAX_ENTRIES: int = int(os.getenv("CACHE_MAX_ENTRIES", "100"))

    # Hours between scheduled sweeps
    SWEEP_INTERVAL_HOURS: int = int(os.getenv("CACHE_SWEEP_INTERVAL_HOURS", "1"))


class FeatureConfig:
    """Feature switches."""

    ENABLE_CACHE: bool = _env_flag("ENABLE_CACHE")
    ENABLE_SCRAPING: bool = _env_flag("ENABLE_SCRAPING")


class AIConfig:
    """Generation backend configuration."""

    API_URL: str = os.getenv("THIRD_PARTY_API_URL", "")
    API_KEY: str = os.getenv("THIRD_PARTY_API_KEY", "")

    # Comma-separated model identifiers, highest priority first
    MODEL_NAMES: str = os.getenv("AI_MODEL_NAME", "gemini-2.5-flash")

    TEMPERATURE: float = float(os.getenv("AI_TEMPERATURE", "0.4"))

    # Retry policy (per backend)
    MAX_RETRIES: int = int(os.getenv("AI_MAX_RETRIES", "3"))
    BASE_DELAY: float = float(os.getenv("AI_BASE_DELAY", "1.0"))
    MAX_DELAY: float = float(os.getenv("AI_MAX_DELAY", "10.0"))
    BACKOFF_MULTIPLIER: float = float(os.getenv("AI_BACKOFF_MULTIPLIER", "2.0"))

    # Per-attempt caps in seconds
    REQUEST_TIMEOUT: float = float(os.getenv("AI_REQUEST_TIMEOUT", "45"))
    STREAM_TIMEOUT: float = float(os.getenv("AI_STREAM_TIMEOUT", "120"))

    # Shared wall-clock budget for one logical request
    DEADLINE_SECONDS: float = float(os.getenv("AI_DEADLINE_SECONDS", "170"))
    SAFETY_MARGIN: float = float(os.getenv("AI_SAFETY_MARGIN", "5"))

    # Silence before a zero-length heartbeat chunk is emitted
    HEARTBEAT_SECONDS: float = float(os.getenv("STREAM_HEARTBEAT_SECONDS", "0.5"))

    @classmethod
    def get_backends(cls) -> list[str]:
        """Parse the backend priority list."""
        return [name.strip() for name in cls.MODEL_NAMES.split(",") if name.strip()]

    @classmethod
    def is_configured(cls) -> bool:
        """Check if the chat API endpoint and key are configured."""
        return bool(cls.API_URL and cls.API_KEY)


class LoggingConfig:
    """Logging configuration."""

    # Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Log directory
    LOG_DIR: Path = Path(os.getenv("LOG_DIR", "logs"))

    # Log file name
    LOG_FILE: str = os.getenv("LOG_FILE", "xhs_writer.log")

    # Log format
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Date format
    DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

    # Maximum log file size in bytes (10MB default)
    MAX_LOG_SIZE: int = int(os.getenv("MAX_LOG_SIZE", str(10 * 1024 * 1024)))

    # Number of backup log files to keep
    BACKUP_COUNT: int = int(os.getenv("BACKUP_COUNT", "5"))

    @classmethod
    def ensure_log_directory(cls) -> Optional[Path]:
        """
        Create log directory if possible.

        Returns:
            The directory, or None when it cannot be created (read-only deployments)
        """
        try:
            cls.LOG_DIR.mkdir(parents=True, exist_ok=True)
        except OSError:
            return None
        if not os.access(cls.LOG_DIR, os.W_OK):
            return None
        return cls.LOG_DIR

    @classmethod
    def get_log_file_path(cls) -> Path:
        """Get full path to log file."""
        return cls.LOG_DIR / cls.LOG_FILE


class AppConfig:
    """Main application configuration aggregating all config classes."""

    credentials = CredentialConfig
    search = SearchConfig
    cache = CacheConfig
    features = FeatureConfig
    ai = AIConfig
    logging = LoggingConfig

    # Application metadata
    APP_NAME: str = "xhs-writer"
    VERSION: str = "1.0.0"

    @classmethod
    def validate(cls) -> tuple[bool, list[str]]:
        """
        Validate configuration settings.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = []

        if not AIConfig.is_configured():
            errors.append("THIRD_PARTY_API_URL and THIRD_PARTY_API_KEY must be configured")

        if not AIConfig.get_backends():
            errors.append("AI_MODEL_NAME must list at least one model")

        if AIConfig.MAX_RETRIES < 0:
            errors.append("AI_MAX_RETRIES cannot be negative")

        if AIConfig.DEADLINE_SECONDS <= AIConfig.SAFETY_MARGIN:
            errors.append("AI_DEADLINE_SECONDS must exceed AI_SAFETY_MARGIN")

        if CredentialConfig.MAX_FAILURES < 1:
            errors.append("CREDENTIAL_MAX_FAILURES must be at least 1")

        if CacheConfig.TTL_SECONDS <= 0:
            errors.append("CACHE_TTL_HOURS must be greater than 0")

        if FeatureConfig.ENABLE_SCRAPING and not (
            os.getenv(CredentialConfig.SEARCH_PREFIX)
            or os.getenv(f"{CredentialConfig.SEARCH_PREFIX}_1")
        ):
            errors.append("XHS_COOKIE or XHS_COOKIE_1 is not configured")

        return (len(errors) == 0, errors)
