"""External tool discovery (ffmpeg / ffprobe).

Search order:
1. ``tools/`` directory inside the cache root (sandboxed installs)
2. System PATH
3. Platform-specific standard install locations
"""

import os
import shutil
import sys
from pathlib import Path
from typing import List, Optional


def _is_windows() -> bool:
    """Check if running on Windows."""
    return sys.platform == "win32"


def _exe(tool_name: str) -> str:
    return f"{tool_name}.exe" if _is_windows() else tool_name


def _local_tool_paths(tool_name: str, tools_dir: Path) -> List[Path]:
    """Cache-local tool paths (highest priority)."""
    tool_dir = tools_dir / tool_name
    return [
        tool_dir / _exe(tool_name),
        tool_dir / "bin" / _exe(tool_name),
        tools_dir / "ffmpeg" / "bin" / _exe(tool_name),
    ]


def _system_tool_paths(tool_name: str) -> List[Path]:
    """Standard install locations for the FFmpeg suite."""
    if _is_windows():
        programfiles = Path(os.environ.get("PROGRAMFILES", "C:/Program Files"))
        programfiles_x86 = Path(os.environ.get("PROGRAMFILES(X86)", "C:/Program Files (x86)"))
        return [
            programfiles / "FFmpeg" / "bin" / _exe(tool_name),
            programfiles_x86 / "FFmpeg" / "bin" / _exe(tool_name),
            Path("C:/ffmpeg/bin") / _exe(tool_name),
        ]
    return [
        Path("/usr/local/bin") / tool_name,
        Path("/usr/bin") / tool_name,
        Path("/opt/homebrew/bin") / tool_name,
    ]


def find_tool(tool_name: str, tools_dir: Optional[Path] = None) -> Optional[Path]:
    """Find a tool executable with cross-platform path search.

    Args:
        tool_name: Name of the tool ('ffmpeg', 'ffprobe')
        tools_dir: Optional sandboxed tools directory searched first

    Returns:
        Path to the executable if found, None otherwise.
    """
    if tools_dir is not None:
        for path in _local_tool_paths(tool_name, tools_dir):
            if path.exists():
                return path

    path_result = shutil.which(tool_name)
    if path_result:
        return Path(path_result)

    for path in _system_tool_paths(tool_name):
        if path.exists():
            return path

    return None
