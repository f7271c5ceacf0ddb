"""
Server configuration module.

This module handles server-side configuration settings.
"""

import os
from typing import Optional

from common.constants import (
    DEFAULT_SERVER_HOST, DEFAULT_PORT, DATA_DIR, PING_INTERVAL,
    IDLE_TIMEOUT, CLOSE_TIMEOUT, MAX_MESSAGE_SIZE, DEFAULT_AI_MODEL,
    AI_MAX_TOKENS, AI_MAX_REPLY_CHARS
)


class ServerConfig:
    """Server configuration class."""

    def __init__(self, host: str = DEFAULT_SERVER_HOST, port: int = DEFAULT_PORT, data_dir: str = DATA_DIR,
                 ping_interval: float = PING_INTERVAL, idle_timeout: float = IDLE_TIMEOUT):
        self.host = host
        self.port = port
        self.data_dir = data_dir

        # Connection settings
        self.ping_interval = ping_interval
        self.idle_timeout = idle_timeout
        self.close_timeout = CLOSE_TIMEOUT
        self.max_message_size = MAX_MESSAGE_SIZE

        # AI participant settings, secrets come from the environment
        self.openai_api_key: Optional[str] = os.getenv('OPENAI_API_KEY') or None
        self.openai_base_url: Optional[str] = os.getenv('OPENAI_BASE_URL') or None
        self.ai_model = os.getenv('CHAT_AI_MODEL', DEFAULT_AI_MODEL)
        self.ai_classifier_model = os.getenv('CHAT_AI_CLASSIFIER_MODEL', self.ai_model)
        self.ai_max_tokens = int(os.getenv('CHAT_AI_MAX_TOKENS', str(AI_MAX_TOKENS)))
        self.ai_max_reply_chars = AI_MAX_REPLY_CHARS
        self.ai_timeout = float(os.getenv('CHAT_AI_TIMEOUT', '30'))

    @property
    def ai_enabled(self) -> bool:
        """The virtual participant answers only when an API key is configured."""
        return bool(self.openai_api_key)

    def get_connection_info(self):
        """Get connection information."""
        return {
            'host': self.host,
            'port': self.port
        }

    def get_liveness_settings(self):
        """Get heartbeat and idle settings."""
        return {
            'ping_interval': self.ping_interval,
            'idle_timeout': self.idle_timeout
        }

    def get_ai_settings(self):
        """Get AI participant settings (without the key)."""
        return {
            'enabled': self.ai_enabled,
            'model': self.ai_model,
            'classifier_model': self.ai_classifier_model,
            'max_tokens': self.ai_max_tokens,
            'timeout': self.ai_timeout
        }
