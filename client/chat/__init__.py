"""
Chat module for client-side messaging functionality.

Handles:
- Turning typed lines into chat and command envelopes
- Rendering inbound envelopes
"""
