"""
Discovery Service - owns the SSDP multicast socket.

Listens on the discovery port, feeds every announcement and search response
into the message store, and sends M-SEARCH requests on demand. Responses to a
search arrive through the same receive path as unsolicited announcements.
"""

import asyncio
import ipaddress
import logging
import platform
import socket
import struct
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from ..config import DiscoveryConfig, settings
from .errors import (
    DiscoveryTransportError,
    ServiceAlreadyStartedError,
    ServiceNotStartedError,
)
from .message import Address, DiscoveryMessage, decode_datagram, parse_message
from .store import MessageStore

logger = logging.getLogger("upnp_scout.discovery.service")

SSDP_ALL = "ssdp:all"
UPNP_ROOT_DEVICE = "upnp:rootdevice"
UPNP_VERSION_TOKEN = "UPnP/1.1"

# M-SEARCH request template
MSEARCH_TEMPLATE = (
    "M-SEARCH * HTTP/1.1\r\n"
    "HOST: {addr}:{port}\r\n"
    "MAN: \"ssdp:discover\"\r\n"
    "MX: {mx}\r\n"
    "ST: {st}\r\n"
    "USER-AGENT: {user_agent}\r\n"
    "\r\n"
)

ErrorCallback = Callable[[Exception], None]


class ServiceState(str, Enum):
    UNSTARTED = "unstarted"
    LISTENING = "listening"
    STOPPED = "stopped"
    FAILED = "failed"


def default_user_agent(product: str, version: str) -> str:
    """USER-AGENT value: ``<os>/<release> UPnP/1.1 <product>/<version>``."""
    return f"{platform.system()}/{platform.release()} {UPNP_VERSION_TOKEN} {product}/{version}"


def build_search_request(
    target: str,
    mx: int,
    multicast_address: str,
    port: int,
    user_agent: str,
) -> bytes:
    """Build an M-SEARCH datagram."""
    return MSEARCH_TEMPLATE.format(
        addr=multicast_address,
        port=port,
        mx=mx,
        st=target,
        user_agent=user_agent,
    ).encode()


def _is_multicast(address: str) -> bool:
    try:
        return ipaddress.ip_address(address).is_multicast
    except ValueError:
        return False


class _DiscoveryProtocol(asyncio.DatagramProtocol):
    """Forwards socket events to the owning DiscoveryService."""

    def __init__(self, service: "DiscoveryService"):
        self._service = service

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self._service._handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._service._handle_error(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            self._service._handle_error(exc)


class DiscoveryService:
    """
    SSDP discovery service.

    Lifecycle: UNSTARTED -> LISTENING -> STOPPED or FAILED. A service can be
    started once; after stopping or failing, create a new instance.

    All store updates happen on the event loop thread, in the order datagrams
    arrive on the socket.
    """

    def __init__(
        self,
        config: Optional[DiscoveryConfig] = None,
        store: Optional[MessageStore] = None,
    ):
        self._config = config or settings.discovery
        self._store = store if store is not None else MessageStore()
        self._state = ServiceState.UNSTARTED
        self._start_requested = False
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._protocol: Optional[_DiscoveryProtocol] = None
        self._local_address: Optional[Address] = None
        self._on_error: Optional[ErrorCallback] = None
        # Set while start_search hands a datagram to the transport
        self._sending = False
        self._send_error: Optional[Exception] = None
        self._user_agent = default_user_agent(
            self._config.product,
            self._config.product_version,
        )

    @property
    def config(self) -> DiscoveryConfig:
        return self._config

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def local_address(self) -> Optional[Address]:
        return self._local_address

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @property
    def message_store(self) -> MessageStore:
        """
        The live message store.

        This is the store the receive path writes to, not a copy; clearing
        it from outside drops services until they announce again.
        """
        return self._store

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self, on_error: Optional[ErrorCallback] = None) -> Address:
        """
        Bind the discovery socket and start receiving.

        Args:
            on_error: Called with the exception if the socket fails while
                listening; the service is FAILED by the time it runs.

        Returns:
            The bound local (host, port)

        Raises:
            ServiceAlreadyStartedError: start() was already called
            DiscoveryTransportError: The socket could not be bound or joined
        """
        if self._start_requested:
            raise ServiceAlreadyStartedError(self._state.value)
        self._start_requested = True
        self._on_error = on_error

        loop = asyncio.get_running_loop()
        try:
            sock = self._open_socket()
        except OSError as e:
            self._state = ServiceState.FAILED
            logger.error(
                "Failed to bind discovery socket on port %d: %s",
                self._config.port,
                e,
            )
            raise DiscoveryTransportError(f"Failed to bind discovery socket: {e}") from e

        try:
            transport, protocol = await loop.create_datagram_endpoint(
                lambda: _DiscoveryProtocol(self),
                sock=sock,
            )
        except OSError as e:
            sock.close()
            self._state = ServiceState.FAILED
            logger.error("Failed to start discovery endpoint: %s", e)
            raise DiscoveryTransportError(f"Failed to start discovery endpoint: {e}") from e

        self._transport = transport
        self._protocol = protocol
        sockname = transport.get_extra_info("sockname")
        self._local_address = (sockname[0], sockname[1])
        self._state = ServiceState.LISTENING
        logger.info(
            "Discovery service listening on %s:%d",
            self._local_address[0],
            self._local_address[1],
        )
        return self._local_address

    def _open_socket(self) -> socket.socket:
        """Create, bind and (for a multicast group) join the discovery socket."""
        cfg = self._config
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                except OSError as e:
                    logger.debug("SO_REUSEPORT not supported: %s", e)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, cfg.receive_buffer_size)
            sock.bind((cfg.bind_address, cfg.port))

            if _is_multicast(cfg.multicast_address):
                mreq = struct.pack(
                    "4s4s",
                    socket.inet_aton(cfg.multicast_address),
                    socket.inet_aton(cfg.interface_address),
                )
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, cfg.multicast_ttl)
                logger.debug(
                    "Joined multicast group %s on %s",
                    cfg.multicast_address,
                    cfg.interface_address,
                )

            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return sock

    async def stop(self) -> None:
        """Close the socket. Only a listening service changes state."""
        if self._state is not ServiceState.LISTENING:
            return

        self._state = ServiceState.STOPPED
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        logger.info("Discovery service stopped")

    # ------------------------------------------------------------------ #
    # Receive path
    # ------------------------------------------------------------------ #

    def _handle_datagram(self, data: bytes, addr: tuple) -> None:
        timestamp = datetime.now(timezone.utc)
        remote = (addr[0], addr[1])
        message = parse_message(remote, timestamp, decode_datagram(data))

        if self._config.log_messages:
            logger.info(
                "Message from %s:%d at %s\n%s",
                remote[0],
                remote[1],
                timestamp.isoformat(),
                data.decode("utf-8", errors="replace"),
            )
        else:
            logger.debug(
                "Message from %s:%d: %s",
                remote[0],
                remote[1],
                " ".join(message.status_line),
            )

        if message.is_notify or message.is_search_response:
            self._store.update(message)
        else:
            logger.debug("Discarding non-discovery message from %s", remote[0])

    def _handle_error(self, exc: Exception) -> None:
        if self._state is not ServiceState.LISTENING:
            return

        # A failed M-SEARCH send belongs to the start_search caller
        if self._sending:
            self._send_error = exc
            return

        logger.error("Discovery socket error: %s", exc)
        self._state = ServiceState.FAILED
        if self._transport is not None:
            self._transport.close()
            self._transport = None

        if self._on_error is not None:
            self._on_error(exc)

    # ------------------------------------------------------------------ #
    # Search and queries
    # ------------------------------------------------------------------ #

    def start_search(self, target: Optional[str] = None) -> None:
        """
        Clear the store and multicast one M-SEARCH request.

        Returns as soon as the datagram is handed to the socket. Responses are
        matched into the store by USN as they arrive; nothing here waits for
        them, so callers wanting a search window should read the store after
        roughly MX seconds.

        Args:
            target: Search target (ST); defaults to the configured target

        Raises:
            ServiceNotStartedError: The service is not listening
            DiscoveryTransportError: The datagram could not be sent
        """
        if self._state is not ServiceState.LISTENING or self._transport is None:
            raise ServiceNotStartedError()

        cfg = self._config
        st = target if target is not None else cfg.search_target
        self._store.clear()

        request = build_search_request(
            target=st,
            mx=cfg.mx,
            multicast_address=cfg.multicast_address,
            port=cfg.port,
            user_agent=self._user_agent,
        )
        # The selector transport reports send failures through
        # error_received instead of raising; either way the socket stays open.
        self._send_error = None
        self._sending = True
        try:
            self._transport.sendto(request, (cfg.multicast_address, cfg.port))
        except OSError as e:
            self._send_error = e
        finally:
            self._sending = False

        if self._send_error is not None:
            error, self._send_error = self._send_error, None
            logger.error("Failed to send M-SEARCH for %s: %s", st, error)
            raise DiscoveryTransportError(f"Failed to send M-SEARCH: {error}") from error

        logger.info("Sent M-SEARCH for %s", st)

    def get_locations(self) -> set[str]:
        """Distinct LOCATION values across live store entries."""
        locations: set[str] = set()
        for message in self._store.evict_expired_and_list():
            locations.update(message.locations)
        return locations

    def find_by_service_type(self, st: str) -> list[DiscoveryMessage]:
        """Live search responses for a service type; see MessageStore.find_by_service_type."""
        return self._store.find_by_service_type(st)


# Global service instance
_discovery_service: Optional[DiscoveryService] = None


def get_discovery_service() -> DiscoveryService:
    """Get or create the global discovery service."""
    global _discovery_service
    if _discovery_service is None:
        _discovery_service = DiscoveryService()
    return _discovery_service


async def init_discovery() -> Optional[Address]:
    """Start the global discovery service if it has not been started."""
    service = get_discovery_service()
    if service.state is ServiceState.UNSTARTED:
        return await service.start()
    return service.local_address


async def shutdown_discovery() -> None:
    """Stop and forget the global discovery service."""
    global _discovery_service
    if _discovery_service is None:
        return
    await _discovery_service.stop()
    _discovery_service = None


async def run_discovery_search(
    target: Optional[str] = None,
    wait: Optional[float] = None,
) -> set[str]:
    """
    Search with the global service and return the known locations.

    Args:
        target: Search target (defaults to the configured target)
        wait: Seconds to collect responses (defaults to MX + 1)

    Returns:
        LOCATION values known after the wait
    """
    service = get_discovery_service()
    if service.state is ServiceState.UNSTARTED:
        await service.start()

    service.start_search(target)
    await asyncio.sleep(wait if wait is not None else service.config.mx + 1)
    return service.get_locations()
