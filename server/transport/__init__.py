"""
Transport module.

Adapts WebSocket connections to the relay's connection interface.
"""
