"""Small filesystem helpers shared across tvsync."""

import os
from pathlib import Path


def get_tvsync_home() -> Path:
    """Return the tvsync data directory.

    Uses ``TVSYNC_DATA_DIR`` when set, otherwise ``~/.tvsync``. The
    directory is not created here.
    """
    override = os.environ.get("TVSYNC_DATA_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".tvsync"
