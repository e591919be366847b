"""Log capture and rotation for clipcache commands.

Everything printed while a command runs (job commands, cache
invalidations, job outcomes) is teed from stdout/stderr into a
timestamped file under ``<cache root>/logs``; only the newest
``max_logs`` files are kept.

Usage:
    from clipcache.log_manager import LogCapture

    with LogCapture(config.cache_dir / "logs") as log:
        run_command()
"""

import platform
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional, TextIO

DEFAULT_MAX_LOGS = 10


class TeeWriter:
    """Write to multiple streams simultaneously (tee-like behavior).

    A failing stream never stops the others; the first stream (the
    terminal) is written first.
    """

    def __init__(self, *streams: TextIO):
        self.streams = streams

    def write(self, data: str) -> None:
        if not isinstance(data, str):
            data = str(data)

        for stream in self.streams:
            try:
                stream.write(data)
                stream.flush()
            except (OSError, ValueError):
                continue

    def flush(self) -> None:
        for stream in self.streams:
            try:
                stream.flush()
            except (OSError, ValueError):
                continue

    def isatty(self) -> bool:
        """Delegates to the first stream."""
        if self.streams:
            try:
                return self.streams[0].isatty()
            except (AttributeError, ValueError):
                return False
        return False


class LogCapture:
    """Context manager teeing terminal output into a rotated log file.

    If the log file cannot be created (permissions, disk space) logging
    is disabled and the wrapped command runs normally.

    Attributes:
        log_dir: Directory where logs are stored
        max_logs: Maximum number of logs to keep (clamped to 1..100)
    """

    def __init__(self, log_dir: Path, max_logs: int = DEFAULT_MAX_LOGS, command: Optional[str] = None):
        self.log_dir = Path(log_dir)
        self.max_logs = max(1, min(max_logs, 100))
        self.command = command
        self.log_file: Optional[Path] = None
        self.log_handle: Optional[TextIO] = None
        self._logging_enabled = False

        self._original_stdout = sys.stdout if sys.stdout is not None else sys.__stdout__
        self._original_stderr = sys.stderr if sys.stderr is not None else sys.__stderr__

    def __enter__(self):
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.log_file = self._generate_log_filename()
            self.log_handle = open(self.log_file, 'w', encoding='utf-8')
            self._write_log_header()
        except OSError as e:
            print(f"Warning: log capture disabled: {e}", file=self._original_stderr)
            if self.log_handle:
                self.log_handle.close()
            self.log_handle = None
            self.log_file = None
            return self

        sys.stdout = TeeWriter(self._original_stdout, self.log_handle)
        sys.stderr = TeeWriter(self._original_stderr, self.log_handle)
        self._logging_enabled = True
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Restore stdout/stderr and rotate. Never suppresses the exception."""
        sys.stdout = self._original_stdout
        sys.stderr = self._original_stderr

        if not self._logging_enabled:
            return False

        try:
            if exc_type is not None:
                self.log_handle.write(f"\n{'='*80}\n")
                self.log_handle.write(f"FATAL ERROR: {exc_type.__name__}: {exc_val}\n")
                self.log_handle.write(f"{'='*80}\n")
            self.log_handle.close()
            self._rotate_logs()
        except OSError as e:
            print(f"Warning: could not finalize log: {e}", file=self._original_stderr)

        return False

    def _generate_log_filename(self) -> Path:
        """Format: YYYYMMDD_HHMMSS_microseconds_<osname>.log

        Microseconds keep names unique within one second.
        """
        now = datetime.now()
        timestamp = now.strftime("%Y%m%d_%H%M%S")
        os_name = platform.system().lower() or "unknown"
        return self.log_dir / f"{timestamp}_{now.microsecond:06d}_{os_name}.log"

    def _write_log_header(self) -> None:
        command_str = self.command or ' '.join(str(arg) for arg in sys.argv)

        header = f"""{'='*80}
clipcache Log
{'='*80}
Timestamp:       {datetime.now().strftime("%Y-%m-%d %H:%M:%S")}
Python Version:  {sys.version.split()[0]}
Platform:        {platform.platform()}
Command:         {command_str}
{'='*80}

"""
        self.log_handle.write(header)
        self.log_handle.flush()

    def _rotate_logs(self) -> None:
        """Keep only the newest max_logs log files."""
        for old_log in get_recent_logs(self.log_dir, count=None)[self.max_logs:]:
            old_log.unlink()
            print(f"Rotated old log: {old_log.name}", file=self._original_stdout)

    def get_log_path(self) -> Optional[Path]:
        return self.log_file


def get_recent_logs(log_dir: Path, count: Optional[int] = DEFAULT_MAX_LOGS) -> List[Path]:
    """Log files in log_dir, newest first."""
    log_dir = Path(log_dir)
    if not log_dir.is_dir():
        return []

    log_files = sorted(
        log_dir.glob("*.log"),
        key=lambda p: (p.stat().st_mtime, p.name),
        reverse=True
    )
    return log_files if count is None else log_files[:count]
