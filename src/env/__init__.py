from env.env import (
    Environment,
    get_env,
    reset_env_caches,
    get_logging_env,
    ConfigError,
)

from env.paths import (
    PROJECT_ROOT,
    LOGS_DIR,
    PIPELINES_DIR,
    OUT_DIR,
    ARTIFACTS_DIR,
)

__all__ = [
    "Environment",
    "get_env",
    "reset_env_caches",
    "get_logging_env",
    "ConfigError",
    "PROJECT_ROOT",
    "LOGS_DIR",
    "PIPELINES_DIR",
    "OUT_DIR",
    "ARTIFACTS_DIR",
]
