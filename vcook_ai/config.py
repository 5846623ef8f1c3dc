# vcook_ai/config.py
import os
from enum import Enum

class ModelProvider(str, Enum):
    CLAUDE = "anthropic"
    LLAMA = "meta"
    MISTRAL = "mistral"

class ConfigError(Exception):
    """Raised when a setting is present but out of range"""
    pass

def _env_number(name: str, default, cast):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a valid {cast.__name__}, got {raw!r}")

class ModelConfig:
    """Settings for the Bedrock completion model used as the translation fallback"""

    def __init__(self):
        self.model_provider = os.getenv("MODEL_PROVIDER", ModelProvider.CLAUDE)
        self.model_id = os.getenv("MODEL_ID", "anthropic.claude-3-haiku-20240307-v1:0")
        self.region = os.getenv("AWS_REGION", "us-east-1")
        self.max_tokens = _env_number("MAX_TOKENS", 150, int)
        self.temperature = _env_number("TEMP", 0.1, float)
        # Read timeout of one model call; a timed out call is not retried
        self.timeout_seconds = _env_number("AI_TIMEOUT_SECONDS", 20, float)
        # Attempts for throttled calls only
        self.max_attempts = _env_number("AI_MAX_ATTEMPTS", 3, int)
        self._validate_config()

    def _validate_config(self):
        if self.max_tokens <= 0:
            raise ConfigError("MAX_TOKENS must be greater than 0")
        if not 0 <= self.temperature <= 1:
            raise ConfigError("TEMP must be between 0 and 1")
        if self.timeout_seconds <= 0:
            raise ConfigError("AI_TIMEOUT_SECONDS must be greater than 0")
        if self.max_attempts < 1:
            raise ConfigError("AI_MAX_ATTEMPTS must be at least 1")

class StoreConfig:
    """Settings for the DynamoDB table holding the Dictionary and Translation Cache tiers"""

    def __init__(self):
        self.table_name = os.getenv("DYNAMODB_TABLE", "EveryoneCook")
        self.region = os.getenv("DYNAMODB_REGION") or os.getenv("AWS_REGION", "us-east-1")
        self.reverse_index_name = os.getenv("REVERSE_INDEX_NAME", "GSI5")
        self.cache_ttl_days = _env_number("TRANSLATION_CACHE_TTL_DAYS", 365, int)
        self.promotion_threshold = _env_number("PROMOTION_THRESHOLD", 100, int)
        self._validate_config()

    def _validate_config(self):
        if not self.table_name:
            raise ConfigError("DYNAMODB_TABLE must not be empty")
        if self.cache_ttl_days <= 0:
            raise ConfigError("TRANSLATION_CACHE_TTL_DAYS must be greater than 0")
        # A threshold of 1 would promote on insert, before any cache hit
        if self.promotion_threshold < 2:
            raise ConfigError("PROMOTION_THRESHOLD must be at least 2")

config = ModelConfig()
store_config = StoreConfig()
