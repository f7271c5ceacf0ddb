"""
Chat module for server-side messaging functionality.

Handles:
- Identity claims and connection records
- Message routing and commands
- Chat history persistence and replay
- User presence tracking
"""
