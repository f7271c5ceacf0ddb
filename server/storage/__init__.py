"""
Storage module for durable server state.

Handles:
- Shared chat history log
- Per-user AI memory
"""
