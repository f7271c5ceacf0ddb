"""
Shared constants for the Group Chat Relay.

This module contains all constants used across client and server components.
"""

# Network Configuration
DEFAULT_HOST = 'localhost'
DEFAULT_SERVER_HOST = '0.0.0.0'
DEFAULT_PORT = 8086

# Limits
MAX_MESSAGE_SIZE = 1024 * 1024  # 1MB per inbound frame

# Timeouts
PING_INTERVAL = 30  # seconds between liveness probes
IDLE_TIMEOUT = 30 * 60  # absolute idle ceiling in seconds
CLOSE_TIMEOUT = 10  # seconds to wait for a close handshake

# Storage
DATA_DIR = 'data'
HISTORY_KEY = 'history'
MEMORY_KEY_PREFIX = 'memory'

# Logging
LOG_DIR = 'logs'
CHAT_LOG_FILE = 'chat_history.log'
AI_LOG_FILE = 'ai_exchanges.log'

# Virtual participant
AI_USERNAME = 'AI'
AI_MEMORY_SIZE = 5
AI_ACTION_MARKER = '/me '
AI_MAX_REPLY_CHARS = 400
AI_MAX_TOKENS = 200
DEFAULT_AI_MODEL = 'gpt-4o-mini'

# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_POLICY_VIOLATION = 1008


# Message Types
class MessageTypes:
    # Client to Server
    SET_USERNAME = 'setUsername'
    MESSAGE = 'message'
    COMMAND = 'command'

    # Server to Client
    SYSTEM = 'system'
    PRIVATE_SYSTEM = 'privateSystem'
    ACTION = 'action'
    USER_LIST = 'userList'
    CHAT_HISTORY = 'chatHistory'


# Commands
class Commands:
    ME = 'me'
    QUIT = 'quit'
    WHOIS = 'whois'


# Private error kinds
class ErrorKinds:
    PROTOCOL = 'ProtocolError'
    INVALID_NAME = 'InvalidName'
    NAME_TAKEN = 'NameTaken'
    NAME_RESERVED = 'NameReserved'
    COMMAND = 'CommandError'
