"""Built-in default configuration for rulesync."""

CONFIG_FILENAME = "rulesync.jsonc"

# Default configuration that serves as the base for all other configs
DEFAULT_CONFIG = {
    "sources": [],
    "concurrency": 10,
}
