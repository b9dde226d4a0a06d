"""Log rotation and handler management for the quota monitor."""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Dict, Optional

from ..config import LoggingConfig


class RotatingFileHandler(logging.handlers.RotatingFileHandler):
    """Rotating file handler that creates its directory and survives failed rollovers."""

    def __init__(self, filename: str, mode: str = 'a', maxBytes: int = 0,
                 backupCount: int = 0, encoding: Optional[str] = None, delay: bool = False):
        Path(filename).parent.mkdir(parents=True, exist_ok=True)
        super().__init__(filename, mode, maxBytes, backupCount, encoding, delay)

    def doRollover(self):
        try:
            super().doRollover()
        except OSError:
            # If rollover fails, keep logging to the main file
            self.handleError(None)


class LogManager:
    """Installs console and per-tenant file handlers on the root logger.

    structlog renders the final line, so handlers only print ``%(message)s``.
    """

    def __init__(self, config: LoggingConfig, log_dir: Path):
        self.config = config
        self.log_dir = Path(log_dir)
        self.handlers: Dict[str, logging.Handler] = {}
        self._setup_complete = False

    def setup_logging(self, tenant: Optional[str] = None) -> None:
        if self._setup_complete:
            return

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, self.config.level))
        root_logger.handlers.clear()

        self._setup_console_handler()
        if tenant:
            self._setup_tenant_file_handler(tenant)

        # Third-party chatter
        logging.getLogger("watchfiles").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)

        self._setup_complete = True
        logging.getLogger(__name__).debug(
            f"Logging initialized - Level: {self.config.level}, Format: {self.config.format}"
        )

    def _setup_console_handler(self) -> None:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter('%(message)s'))
        logging.getLogger().addHandler(console_handler)
        self.handlers['console'] = console_handler

    def _setup_tenant_file_handler(self, tenant: str) -> None:
        log_file = self.log_dir / f"{tenant}_quota_monitor.log"
        try:
            file_handler = RotatingFileHandler(
                filename=str(log_file),
                maxBytes=self.config.file_max_size * 1024 * 1024,
                backupCount=self.config.file_backup_count,
                encoding='utf-8'
            )
        except OSError as e:
            logging.getLogger(__name__).warning(f"Cannot open log file {log_file}: {e}")
            return

        file_handler.setFormatter(logging.Formatter('%(message)s'))
        logging.getLogger().addHandler(file_handler)
        self.handlers['tenant_file'] = file_handler

    def close(self) -> None:
        root_logger = logging.getLogger()
        for handler in self.handlers.values():
            root_logger.removeHandler(handler)
            handler.close()
        self.handlers.clear()
        self._setup_complete = False
