"""Runtime configuration for the memory engine.

Architectural role:
    Centralizes state-root resolution, source/index directory layout, embedding
    model selection and ranking/debounce tunables for `mnemo.core.engine` and the
    indexing/retrieval layers.

Resolution rules:
    - Scalar tunables are read from the process environment at import time
      (after `load_dotenv()`), mirroring the provider settings module.
    - Directory getters resolve fresh on every call so a changed `MNEMO_ROOT`
      or config file takes effect without restarting the host process. The
      engine relies on this to invalidate its memoised vector stores.

Directory layout under the state root::

    <root>/
        journal/<YYYY-MM-DD>.jsonl
        entities/<kind>/<name>.md
        .index/
            vectors/                 memory index (journal + entities)
            conversations/           conversation exchange index
            memory-state.json
            conversations-state.json
        .mnemo.log
"""

import json
import logging
import os

from dotenv import load_dotenv

load_dotenv()


DEFAULT_ROOT = os.path.join(os.path.expanduser("~"), ".config", "mnemo")
CONFIG_FILE = os.path.join(DEFAULT_ROOT, "config.json")
DEFAULT_TRANSCRIPTS_DIR = os.path.join(os.path.expanduser("~"), ".claude", "projects")

# Embedding model used by `mnemo.memory.embedding_model.EmbeddingGateway`.
EMBED_MODEL = os.getenv("MNEMO_EMBED_MODEL", "sentence-transformers/all-MiniLM-L6-v2")
EMBED_BATCH_SIZE = int(os.getenv("MNEMO_EMBED_BATCH_SIZE", "32"))
MIN_FREE_VRAM_MB = int(os.getenv("MNEMO_MIN_FREE_VRAM_MB", "800"))

# Candidate oversampling before reranking. Values below 3 are raised to 3.
OVERSAMPLE_FACTOR = max(3, int(os.getenv("MNEMO_OVERSAMPLE", "3")))

# Quiet window for file-change debouncing, in seconds.
DEBOUNCE_SECONDS = float(os.getenv("MNEMO_DEBOUNCE_SECONDS", "1.0"))

DEFAULT_SEARCH_LIMIT = 5
MAX_ITEM_CHARS = 4000
MAX_USER_PROMPT_CHARS = 1000
MAX_ASSISTANT_SUMMARY_CHARS = 500
MIN_USER_PROMPT_CHARS = 10

LOG_LEVEL = os.getenv("MNEMO_LOG_LEVEL", "INFO")
LOG_FILE_NAME = ".mnemo.log"


def _normalize(path):
    return os.path.abspath(os.path.expanduser(path))


def get_state_root():
    """Resolve the memory state root directory.

    Resolution order:
        1. `MNEMO_ROOT` environment variable.
        2. `"root"` key in `~/.config/mnemo/config.json`.
        3. `~/.config/mnemo`.

    Returns:
        Absolute path string. Not created here.

    Edge cases:
        - Unreadable or malformed config file falls through to the default.
    """
    env_root = os.getenv("MNEMO_ROOT")
    if env_root:
        return _normalize(env_root)

    if os.path.exists(CONFIG_FILE):
        try:
            with open(CONFIG_FILE, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict) and data.get("root"):
                return _normalize(str(data["root"]))
        except (OSError, json.JSONDecodeError):
            pass

    return DEFAULT_ROOT


def get_journal_dir():
    return os.path.join(get_state_root(), "journal")


def get_entities_dir():
    return os.path.join(get_state_root(), "entities")


def get_index_dir():
    return os.path.join(get_state_root(), ".index")


def get_transcripts_dir():
    """Return the directory holding per-project transcript logs."""
    return _normalize(os.getenv("MNEMO_TRANSCRIPTS_DIR") or DEFAULT_TRANSCRIPTS_DIR)


def configure_logging(level=None):
    """Attach a file handler under the state root and set the package log level.

    Args:
        level: Optional level name overriding `MNEMO_LOG_LEVEL`.

    Returns:
        Path of the log file.

    Side effects:
        Creates the state root when missing. Repeated calls do not stack
        duplicate handlers for the same file.
    """
    root = get_state_root()
    os.makedirs(root, exist_ok=True)
    log_path = os.path.join(root, LOG_FILE_NAME)

    package_logger = logging.getLogger("mnemo")
    package_logger.setLevel((level or LOG_LEVEL).upper())

    target = os.path.abspath(log_path)
    for handler in package_logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            return log_path

    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    package_logger.addHandler(handler)
    return log_path
