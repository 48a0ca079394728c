"""
Logging setup.

Every record carries the id of the page being processed (``-`` outside a
page), so interleaved logs from concurrent pages can be told apart. Files
rotate by day and by size: app_2026-01-12.log, app_2026-01-12_01.log, ...
"""

import glob
import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timedelta
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterator, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(page_id)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_current_page: ContextVar[str] = ContextVar("mangaflow_page_id", default="-")


@contextmanager
def page_context(page_id: str) -> Iterator[None]:
    """Tag records logged inside the block (and in threads started from it) with ``page_id``."""
    token = _current_page.set(page_id)
    try:
        yield
    finally:
        _current_page.reset(token)


class PageContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.page_id = _current_page.get()
        return True


class DailyRotatingFileHandler(RotatingFileHandler):
    """
    One file per day per ``base_name``; past ``max_bytes`` the day continues
    in numbered files. Files older than ``backup_days`` are removed on start.
    """

    def __init__(
        self,
        log_dir: str,
        base_name: str = "app",
        max_bytes: int = 50 * 1024 * 1024,
        backup_count: int = 10,
        backup_days: int = 30,
        encoding: str = "utf-8",
    ):
        self.log_dir = Path(log_dir)
        self.base_name = base_name
        self.backup_days = backup_days
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._current_date = self._today()
        super().__init__(
            filename=str(self._dated_path(self._current_date)),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding=encoding,
        )
        self._cleanup_old_logs()

    @staticmethod
    def _today() -> str:
        return datetime.now().strftime("%Y-%m-%d")

    def _dated_path(self, day: str) -> Path:
        return self.log_dir / f"{self.base_name}_{day}.log"

    def shouldRollover(self, record):
        return self._current_date != self._today() or super().shouldRollover(record)

    def doRollover(self):
        today = self._today()
        if self._current_date == today:
            super().doRollover()
            return
        # new day: switch files instead of numbering
        if self.stream:
            self.stream.close()
            self.stream = None
        self._current_date = today
        self.baseFilename = str(self._dated_path(today))
        self.stream = self._open()

    def rotation_filename(self, default_name):
        """app_2026-01-12.log.1 -> app_2026-01-12_01.log"""
        if ".log." in default_name:
            base, num = default_name.rsplit(".log.", 1)
            return f"{base}_{num.zfill(2)}.log"
        return default_name

    def _cleanup_old_logs(self):
        cutoff = datetime.now() - timedelta(days=self.backup_days)
        prefix = f"{self.base_name}_"
        for log_file in glob.glob(str(self.log_dir / f"{prefix}*.log")):
            stem = os.path.basename(log_file)[len(prefix):-len(".log")]
            try:
                file_date = datetime.strptime(stem.split("_")[0], "%Y-%m-%d")
            except ValueError:
                continue
            if file_date >= cutoff:
                continue
            try:
                os.remove(log_file)
                logging.debug(f"Removed old log file: {log_file}")
            except OSError as e:
                logging.warning(f"Could not remove old log file {log_file}: {e}")


def setup_logging(
    log_dir: Optional[str] = "logs",
    log_level: str = "INFO",
    max_bytes: int = 50 * 1024 * 1024,
    backup_count: int = 10,
    backup_days: int = 30,
) -> None:
    """
    Configure the root logger: console, plus ``app`` and ``error`` files when
    ``log_dir`` is set.

    Args:
        log_dir: Directory for log files; None logs to the console only
        log_level: DEBUG/INFO/WARNING/ERROR
        max_bytes: Size limit of a single log file in bytes
        backup_count: Maximum numbered files per day
        backup_days: Days of history to keep
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    page_filter = PageContextFilter()

    def attach(handler: logging.Handler, level: int) -> None:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        handler.addFilter(page_filter)
        root_logger.addHandler(handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    # repeated setup must not duplicate handlers
    root_logger.handlers.clear()

    attach(logging.StreamHandler(), logging.INFO)
    if log_dir:
        for base_name, level in (("app", logging.DEBUG), ("error", logging.ERROR)):
            attach(
                DailyRotatingFileHandler(
                    log_dir=log_dir,
                    base_name=base_name,
                    max_bytes=max_bytes,
                    backup_count=backup_count,
                    backup_days=backup_days,
                ),
                level,
            )

    for name in ("httpx", "httpcore", "uvicorn.access", "PIL"):
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_dir:
        logging.info(
            f"Logging initialised, directory: {Path(log_dir).absolute()}, "
            f"max file size: {max_bytes // 1024 // 1024}MB"
        )
    else:
        logging.info("Logging initialised (console only)")
