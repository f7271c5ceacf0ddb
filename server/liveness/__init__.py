"""
Liveness module.

Heartbeats connections and evicts the unresponsive or idle ones.
"""
