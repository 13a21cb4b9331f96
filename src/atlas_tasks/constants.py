"""Shared constants: path grammar, field bounds, and storage defaults."""

PATH_SEPARATOR = "/"

DEFAULT_MAX_PATH_DEPTH = 8
DEFAULT_MAX_SEGMENT_LENGTH = 50
DEFAULT_MAX_PATH_LENGTH = DEFAULT_MAX_PATH_DEPTH * DEFAULT_MAX_SEGMENT_LENGTH

NAME_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000
NOTE_MAX_LENGTH = 1000
REASONING_MAX_LENGTH = 2000
METADATA_STRING_MAX_LENGTH = 1000
MAX_DEPENDENCIES = 50
MAX_NOTES = 25
MAX_ARRAY_ITEMS = 100

DEFAULT_STORAGE_BACKEND = "sqlite"
DEFAULT_STORAGE_DIR = "~/.atlas-tasks/storage"
DEFAULT_STORAGE_NAME = "atlas-tasks"
DEFAULT_CACHE_SIZE = 2000
DEFAULT_BUSY_TIMEOUT = 5.0  # seconds
STORAGE_BACKENDS = ("sqlite", "yaml", "memory")

CONFIG_FILE = "config.yaml"
YAML_STORE_SUFFIX = ".yaml"
SQLITE_STORE_SUFFIX = ".sqlite3"
LOCK_SUFFIX = ".lock"
WINDOWS_LOCK_BYTES = 4096

# Footprint computation retries before giving up on a stable lock set.
MAX_LOCK_ATTEMPTS = 5
