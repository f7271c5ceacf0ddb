"""
AI module for the virtual chat participant.

Handles:
- Address detection
- Turn-taking decisions and follow-up tracking
- Per-user conversational memory
- Generation and classification calls
"""
