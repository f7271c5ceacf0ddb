"""
Client package for the Group Chat Relay.

This package contains the terminal chat client.
"""
