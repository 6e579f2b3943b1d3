from __future__ import annotations

import os
import sys
from pathlib import Path


def get_config_dir() -> Path:
    """Return a config directory Path.

    Strategy:
    - If LEETCODE_MCP_HOME is set, use it.
    - If running under PyInstaller, use cwd/.config
    - Else, use ~/.leetcode-mcp.
    """
    override = os.environ.get("LEETCODE_MCP_HOME")
    if override:
        conf_dir = Path(override).expanduser()
    elif getattr(sys, "frozen", False) and hasattr(sys, "_MEIPASS"):
        # Running in PyInstaller bundle
        conf_dir = Path.cwd() / ".config"
    else:
        conf_dir = Path.home() / ".leetcode-mcp"
    conf_dir.mkdir(parents=True, exist_ok=True)
    return conf_dir
