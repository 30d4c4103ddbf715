"""
Logging setup for the LDAP bridge.

File logging with daily rotation and retention, optional console output, and
a filter that masks credentials before anything reaches a handler.
"""

import os
import re
import glob
import logging
import logging.handlers
from datetime import datetime, timedelta
from typing import Dict, Any, List


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub credentials from log messages."""

    SENSITIVE_KEYWORDS = [
        'userPassword', 'bind_password', 'password', 'passwd', 'secret', 'token', 'credential'
    ]

    def __init__(self, name: str = ''):
        super().__init__(name)
        keywords = '|'.join(self.SENSITIVE_KEYWORDS)
        # key=value and key: value
        self._assignment = re.compile(rf'\b({keywords})(\s*[=:]\s*)[^\s,;\'"]+', re.IGNORECASE)
        # "key": "value" and 'key': 'value'
        self._quoted = re.compile(rf'(["\'])({keywords})\1(\s*:\s*)(["\'])[^"\']*\4', re.IGNORECASE)

    def filter(self, record):
        """Mask sensitive values in the formatted message."""
        if record.args:
            try:
                record.msg = record.getMessage()
                record.args = None
            except (TypeError, ValueError):
                return True

        msg = str(record.msg)
        msg = self._quoted.sub(lambda m: f"{m.group(1)}{m.group(2)}{m.group(1)}{m.group(3)}{m.group(4)}****{m.group(4)}", msg)
        msg = self._assignment.sub(r'\1\2****', msg)
        record.msg = msg
        return True


class LoggingManager:
    """
    Manages logging configuration for the LDAP bridge.

    Provides file-based logging with rotation, retention policies, and
    console output.
    """

    LOG_FILE = 'ldap_bridge.log'

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: Logging configuration dictionary
        """
        if self.configured:
            return

        logging_config = config or {}

        log_level = str(logging_config.get('level', 'INFO')).upper()
        self.log_dir = logging_config.get('log_dir', 'logs')
        rotation = logging_config.get('rotation', 'daily')
        self.retention_days = logging_config.get('retention_days', 7)
        console_enabled = logging_config.get('console_output', True)
        console_level = str(logging_config.get('console_level', 'WARNING')).upper()

        self._ensure_log_directory()

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level, logging.INFO))
        root_logger.handlers.clear()

        detailed_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%H:%M:%S'
        )
        sensitive_filter = SensitiveDataFilter()

        file_handler = self._create_file_handler(rotation)
        file_handler.setLevel(getattr(logging, log_level, logging.INFO))
        file_handler.setFormatter(detailed_formatter)
        file_handler.addFilter(sensitive_filter)
        root_logger.addHandler(file_handler)

        if console_enabled:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(getattr(logging, console_level, logging.WARNING))
            console_handler.setFormatter(console_formatter)
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        self._cleanup_old_logs()
        self.configured = True

        logging.getLogger(__name__).info(
            f"Logging configured: level={log_level}, dir={self.log_dir}, "
            f"retention={self.retention_days} days, console={console_enabled}"
        )

    def reset(self) -> None:
        """Drop the handlers installed by setup_logging."""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        self.configured = False

    def _ensure_log_directory(self) -> None:
        """Ensure the log directory exists, falling back to the working directory."""
        if self.log_dir and not os.path.exists(self.log_dir):
            try:
                os.makedirs(self.log_dir, exist_ok=True)
            except OSError as e:
                logging.getLogger(__name__).warning(
                    f"Could not create log directory {self.log_dir}: {e}; using current directory"
                )
                self.log_dir = '.'

    def _create_file_handler(self, rotation: str) -> logging.Handler:
        """
        Create appropriate file handler based on rotation setting.

        Args:
            rotation: Rotation setting ('daily', 'midnight', or 'none')
        """
        log_file = os.path.join(self.log_dir, self.LOG_FILE)

        if str(rotation).lower() in ['daily', 'midnight']:
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=log_file,
                when='midnight',
                interval=1,
                backupCount=self.retention_days,
                encoding='utf-8'
            )
            handler.suffix = '%Y-%m-%d'
        else:
            handler = logging.FileHandler(log_file, encoding='utf-8')

        return handler

    def _cleanup_old_logs(self) -> None:
        """Remove rotated log files older than the retention period."""
        if not self.log_dir or self.retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=self.retention_days)
        for log_file in self.get_log_files():
            if log_file.endswith(self.LOG_FILE):
                continue
            try:
                if datetime.fromtimestamp(os.path.getmtime(log_file)) < cutoff_date:
                    os.remove(log_file)
            except OSError as e:
                logging.getLogger(__name__).warning(f"Could not remove old log file {log_file}: {e}")

    def get_log_files(self) -> List[str]:
        if not self.log_dir:
            return []
        return sorted(glob.glob(os.path.join(self.log_dir, self.LOG_FILE + '*')))


# Global logging manager instance
_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)


class SecurityAuditLogger:
    """Audit trail for changes made to local accounts and directory entries."""

    def __init__(self):
        self.logger = logging.getLogger('security')

    def log_user_sync(self, username: str, dn: str, success: bool, roles=None):
        status = "SUCCESS" if success else "FAILURE"
        message = f"User sync {status}: user={username} dn={dn}"
        if roles:
            message += f" roles={sorted(map(str, roles))}"
        self.logger.info(message)

    def log_user_export(self, username: str, dn: str, success: bool):
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"User export {status}: user={username} dn={dn}")

    def log_configuration_change(self, description: str):
        self.logger.info(f"Configuration change: {description}")


# Global security logger instance
security_logger = SecurityAuditLogger()
