"""
Progress reporting for CLI operations.
"""

import sys


class ProgressReporter:
    """
    Progress line on stderr for long-running scans.

    ``report`` has the progress_callback(message, current, total) signature
    taken by DuplicateFinder, so an instance's bound method can be passed
    straight through.
    """

    def __init__(self,
                 total: int = 0,
                 desc: str = "Scanning",
                 show_progress: bool = True,
                 file=None):
        """
        Initialize progress reporter.

        Args:
            total: Total number of items to process
            desc: Description of the operation
            show_progress: Whether to show progress output
            file: Output file (default: sys.stderr)
        """
        self.total = total
        self.desc = desc
        self.show_progress = show_progress
        self.file = file or sys.stderr
        self.current = 0
        self._last_percent = -1
        self._written = False

    def report(self, message: str, current: int, total: int) -> None:
        """Move the bar to ``current`` of ``total``."""
        self.total = total
        self.current = current
        if not self.show_progress:
            return
        if total > 0:
            percent = int(100 * current / total)
            if percent == self._last_percent:
                return
            self._last_percent = percent
            bar_len = 30
            filled = int(bar_len * current / total)
            bar = '=' * filled + '-' * (bar_len - filled)
            print(f"\r{self.desc}: [{bar}] {percent}% {message}",
                  end='', file=self.file, flush=True)
        else:
            print(f"\r{self.desc}: {message}", end='', file=self.file, flush=True)
        self._written = True

    def finish(self, message: str = "Done"):
        """Mark progress as complete."""
        if self.show_progress and self._written:
            print(f"\r{self.desc}: {message}" + " " * 40, file=self.file)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.finish()


class NullProgress:
    """No-op progress reporter for silent operation."""

    def __init__(self, *args, **kwargs):
        pass

    def report(self, message: str, current: int, total: int) -> None:
        pass

    def finish(self, message: str = "Done"):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        pass
