"""
Protocol definitions for the Group Chat Relay.

This module defines the envelope structures exchanged between client and
server over the WebSocket connection. Every outbound envelope carries a
``timestamp``.
"""

from typing import Dict, Any, Optional, List
from dataclasses import dataclass
from datetime import datetime

from common.constants import MessageTypes, AI_USERNAME


@dataclass(frozen=True)
class Identity:
    """A username bound to exactly one live connection."""
    username: str
    remote_address: str


@dataclass(frozen=True)
class MemoryPair:
    """One remembered exchange with the virtual participant."""
    prompt: str
    response: str

    def to_dict(self) -> Dict[str, str]:
        return {"prompt": self.prompt, "response": self.response}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['MemoryPair']:
        prompt = data.get('prompt') if isinstance(data, dict) else None
        response = data.get('response') if isinstance(data, dict) else None
        if not isinstance(prompt, str) or not isinstance(response, str):
            return None
        return cls(prompt, response)


def _now() -> str:
    return datetime.now().isoformat()


# Client to server

def create_set_username_message(username: str) -> Dict[str, Any]:
    """Create an identity claim message."""
    return {
        "type": MessageTypes.SET_USERNAME,
        "username": username
    }


def create_chat_message(text: str) -> Dict[str, Any]:
    """Create a chat message."""
    return {
        "type": MessageTypes.MESSAGE,
        "text": text
    }


def create_command_message(command: str, args: str = '') -> Dict[str, Any]:
    """Create a command message."""
    message = {
        "type": MessageTypes.COMMAND,
        "command": command
    }
    if args:
        message["args"] = args
    return message


# Server to client

def create_system_message(text: str) -> Dict[str, Any]:
    """Create a public system notice (joins, leaves)."""
    return {
        "type": MessageTypes.SYSTEM,
        "text": text,
        "timestamp": _now()
    }


def create_private_system_message(text: str, error: Optional[str] = None) -> Dict[str, Any]:
    """Create a notice addressed to a single connection."""
    message = {
        "type": MessageTypes.PRIVATE_SYSTEM,
        "text": text,
        "timestamp": _now()
    }
    if error:
        message["error"] = error
    return message


def create_error_message(error: str, text: str) -> Dict[str, Any]:
    """Create a private error message."""
    return create_private_system_message(f"Error: {text}", error=error)


def create_message_envelope(username: str, text: str) -> Dict[str, Any]:
    """Create a chat envelope from a participant."""
    return {
        "type": MessageTypes.MESSAGE,
        "username": username,
        "text": text,
        "timestamp": _now()
    }


def create_action_message(username: str, text: str) -> Dict[str, Any]:
    """Create an action envelope, rendered as ``* user text *``."""
    return {
        "type": MessageTypes.ACTION,
        "username": username,
        "text": f"* {username} {text} *",
        "timestamp": _now()
    }


def create_user_list_message(users: List[str]) -> Dict[str, Any]:
    """Create a presence snapshot message."""
    return {
        "type": MessageTypes.USER_LIST,
        "users": list(users),
        "timestamp": _now()
    }


def create_history_message(history: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Create a history replay message."""
    return {
        "type": MessageTypes.CHAT_HISTORY,
        "history": list(history),
        "timestamp": _now()
    }


def create_user_joined_message(username: str) -> Dict[str, Any]:
    """Create a user joined notice."""
    return create_system_message(f"{username} has joined the chat.")


def create_user_left_message(username: str, reason: Optional[str] = None) -> Dict[str, Any]:
    """Create a user left notice."""
    if reason:
        return create_system_message(f"{username} has left the chat ({reason}).")
    return create_system_message(f"{username} has left the chat.")


def create_connected_message(username: str) -> Dict[str, Any]:
    """Create the private confirmation sent after a successful claim."""
    return create_private_system_message(f"You are connected as {username}.")


def create_ai_message(text: str) -> Dict[str, Any]:
    """Create a chat envelope from the virtual participant."""
    return create_message_envelope(AI_USERNAME, text)


def create_ai_action_message(text: str) -> Dict[str, Any]:
    """Create an action envelope from the virtual participant."""
    return create_action_message(AI_USERNAME, text)
