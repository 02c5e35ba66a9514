"""Peer transport session abstractions.

The aiortc implementation lives in ``src.mesh.transport.aiortc_transport``
and is imported explicitly so the core client does not load aiortc.
"""

from src.mesh.transport.base import PeerTransport, PeerTransportFactory, SessionCallbacks

__all__ = ["PeerTransport", "PeerTransportFactory", "SessionCallbacks"]
