"""
SSDP discovery for upnp-scout.

Listens for UPnP announcements, sends M-SEARCH requests and keeps a live
view of the services currently advertised on the network.
"""

from .errors import (
    DiscoveryError,
    DiscoveryTransportError,
    DiscoveryUsageError,
    ServiceAlreadyStartedError,
    ServiceNotStartedError,
)
from .message import (
    DiscoveryMessage,
    Header,
    decode_datagram,
    is_admissible,
    parse_message,
)
from .service import (
    SSDP_ALL,
    DiscoveryService,
    ServiceState,
    build_search_request,
    get_discovery_service,
    init_discovery,
    run_discovery_search,
    shutdown_discovery,
)
from .store import MessageStore

__all__ = [
    "DiscoveryError",
    "DiscoveryTransportError",
    "DiscoveryUsageError",
    "ServiceAlreadyStartedError",
    "ServiceNotStartedError",
    "DiscoveryMessage",
    "Header",
    "decode_datagram",
    "is_admissible",
    "parse_message",
    "SSDP_ALL",
    "DiscoveryService",
    "ServiceState",
    "build_search_request",
    "get_discovery_service",
    "init_discovery",
    "run_discovery_search",
    "shutdown_discovery",
    "MessageStore",
]
