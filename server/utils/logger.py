"""
Server logging module.

This module handles server-side logging functionality.
"""

import logging
from datetime import datetime
from pathlib import Path

from common.constants import LOG_DIR, CHAT_LOG_FILE, AI_LOG_FILE


class ServerLogger:
    """Server logging class."""

    def __init__(self, logs_dir: str = LOG_DIR, log_level: int = logging.INFO):
        self.logs_dir = Path(logs_dir)
        self.logs_dir.mkdir(exist_ok=True)

        # Set up main logger
        self.logger = logging.getLogger('chat_relay')
        self.logger.setLevel(log_level)

        # Remove existing handlers
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)

        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler.setFormatter(formatter)

        self.logger.addHandler(console_handler)

        # Set up file paths
        self.chat_log_path = self.logs_dir / CHAT_LOG_FILE
        self.ai_log_path = self.logs_dir / AI_LOG_FILE

    def set_level(self, log_level: int):
        """Change the console log level."""
        self.logger.setLevel(log_level)
        for handler in self.logger.handlers:
            handler.setLevel(log_level)

    def info(self, message: str):
        """Log info message."""
        self.logger.info(message)

    def error(self, message: str):
        """Log error message."""
        self.logger.error(message)

    def warning(self, message: str):
        """Log warning message."""
        self.logger.warning(message)

    def debug(self, message: str):
        """Log debug message."""
        self.logger.debug(message)

    def log_connection(self, addr: str, uid: int):
        """Log client connection."""
        self.info(f"New connection from {addr}, assigned uid={uid} (pending identification)")

    def log_login(self, username: str, uid: int):
        """Log successful username claim."""
        self.info(f"Client uid={uid} identified as '{username}'")

    def log_rejected_claim(self, proposed: str, uid: int, kind: str):
        """Log a refused username claim."""
        self.warning(f"Username claim {proposed!r} from uid={uid} rejected: {kind}")

    def log_disconnect(self, username: str, uid: int):
        """Log user disconnect."""
        self.info(f"User {username} (uid={uid}) disconnected")

    def log_chat(self, username: str, uid: int, message: str):
        """Log chat message."""
        self.info(f"Chat from {username} (uid={uid}): {message}")
        self._write_to_file(self.chat_log_path, f"{datetime.now().isoformat()} | {username} (uid={uid}) | {message}")

    def log_action(self, username: str, uid: int, text: str):
        """Log an action (/me) message."""
        self.info(f"Action from {username} (uid={uid}): {text}")
        self._write_to_file(self.chat_log_path, f"{datetime.now().isoformat()} | [ACTION] {username} (uid={uid}) | {text}")

    def log_ai_exchange(self, username: str, query: str, reply: str):
        """Log a completed AI round-trip."""
        self.info(f"AI replied to {username}: {reply!r}")
        self._write_to_file(self.ai_log_path, f"{datetime.now().isoformat()} | {username} | Q: {query} | A: {reply}")

    def log_eviction(self, username: str, uid: int, reason: str):
        """Log a liveness eviction."""
        self.warning(f"Evicting {username or '(unidentified)'} (uid={uid}): {reason}")

    def log_error(self, operation: str, error: Exception):
        """Log error with operation context."""
        self.error(f"Error in {operation}: {error}")

    def _write_to_file(self, file_path: Path, content: str):
        """Write content to log file."""
        try:
            with open(file_path, 'a', encoding='utf-8') as f:
                f.write(content + '\n')
        except OSError as e:
            self.error(f"Failed to write to log file {file_path}: {e}")


# Global logger instance
logger = ServerLogger()
