"""
Transport clients for carrier messages.

Retrieves raw status messages from the router's SMS inbox.
"""

from .mikrotik_client import MikroTikClient, TransportFailure

__all__ = ["MikroTikClient", "TransportFailure"]
