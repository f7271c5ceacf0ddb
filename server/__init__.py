"""
Server package for the Group Chat Relay.

This package contains all server-side functionality including:
- Identity claims and presence
- Message routing and commands
- Durable chat history
- The AI participant's turn-taking engine
- Connection liveness supervision
- Configuration and utilities
"""
