"""
UPnP device description retrieval.

Fetches the description document behind every LOCATION the discovery service
knows about and maps it onto plain dicts. Nothing here issues a search: the
caller is expected to have searched (or listened) long enough beforehand.
"""

import asyncio
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Protocol

import httpx

from ..config import settings
from .simplexml import XmlObject, parse_object_from_xml

logger = logging.getLogger("upnp_scout.description.fetcher")


class LocationSource(Protocol):
    """Anything that knows description locations (e.g. DiscoveryService)."""

    user_agent: str

    def get_locations(self) -> set[str]:
        ...


@dataclass
class DescriptionError:
    """A description that could not be obtained."""

    location: str
    error: str


@dataclass
class DeviceDescription:
    """A device description document parsed with parse_object_from_xml."""

    location: str
    description: XmlObject

    @property
    def device(self) -> Optional[dict[str, Any]]:
        if isinstance(self.description, dict):
            device = self.description.get("device")
            if isinstance(device, dict):
                return device
        return None


@dataclass
class DeviceServiceDescription:
    """A service entry from a device description."""

    location: str
    friendly_device_name: Optional[str]
    service: dict[str, Any]


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def iter_devices(device: dict[str, Any]) -> Iterator[dict[str, Any]]:
    """Yield a device and its embedded devices, depth first."""
    yield device
    device_list = device.get("deviceList")
    if isinstance(device_list, dict):
        for embedded in _as_list(device_list.get("device")):
            if isinstance(embedded, dict):
                yield from iter_devices(embedded)


async def fetch_description(
    client: httpx.AsyncClient,
    location: str,
    user_agent: Optional[str] = None,
) -> DeviceDescription | DescriptionError:
    """GET and parse one description; failures come back as DescriptionError."""
    headers = {"user-agent": user_agent} if user_agent else None
    try:
        response = await client.get(location, headers=headers)
    except httpx.HTTPError as e:
        logger.warning("Description fetch from %s failed: %s", location, e)
        return DescriptionError(location, str(e))

    if response.status_code != 200:
        logger.warning("Description fetch from %s returned %d", location, response.status_code)
        return DescriptionError(
            location,
            f"statusCode: {response.status_code} body: {response.text}",
        )

    try:
        description = parse_object_from_xml(response.content)
    except (ET.ParseError, ValueError) as e:
        logger.warning("Malformed description at %s: %s", location, e)
        return DescriptionError(location, f"Malformed description: {e}")

    logger.debug("Fetched description from %s", location)
    return DeviceDescription(location, description)


async def find_all_device_descriptions(
    discovery_service: LocationSource,
    client: Optional[httpx.AsyncClient] = None,
) -> tuple[list[DescriptionError], list[DeviceDescription]]:
    """
    Fetch the description behind every known location.

    Args:
        discovery_service: Source of locations and the USER-AGENT to send
        client: HTTP client to use (a temporary one is created if omitted)

    Returns:
        (errors, descriptions)
    """
    locations = sorted(discovery_service.get_locations())
    if not locations:
        return [], []

    if client is None:
        async with httpx.AsyncClient(timeout=settings.description.timeout) as owned:
            return await _fetch_all(owned, locations, discovery_service.user_agent)
    return await _fetch_all(client, locations, discovery_service.user_agent)


async def _fetch_all(
    client: httpx.AsyncClient,
    locations: list[str],
    user_agent: str,
) -> tuple[list[DescriptionError], list[DeviceDescription]]:
    semaphore = asyncio.Semaphore(settings.description.max_concurrency)

    async def _bounded(location: str) -> DeviceDescription | DescriptionError:
        async with semaphore:
            return await fetch_description(client, location, user_agent)

    results = await asyncio.gather(*(_bounded(location) for location in locations))

    errors = [r for r in results if isinstance(r, DescriptionError)]
    descriptions = [r for r in results if isinstance(r, DeviceDescription)]
    logger.info(
        "Fetched %d descriptions (%d errors) from %d locations",
        len(descriptions),
        len(errors),
        len(locations),
    )
    return errors, descriptions


async def find_device_services(
    discovery_service: LocationSource,
    device_type: str,
    service_type: str,
    client: Optional[httpx.AsyncClient] = None,
) -> tuple[list[DescriptionError], list[DeviceServiceDescription]]:
    """
    Find services of a given type on devices of a given type.

    Embedded devices are searched as well as root devices.

    Returns:
        (errors, matching services)
    """
    errors, descriptions = await find_all_device_descriptions(discovery_service, client)

    matching: list[DeviceServiceDescription] = []
    for description in descriptions:
        root = description.device
        if root is None:
            continue
        for device in iter_devices(root):
            if device.get("deviceType") != device_type:
                continue
            service_list = device.get("serviceList")
            if not isinstance(service_list, dict):
                continue
            for service in _as_list(service_list.get("service")):
                if isinstance(service, dict) and service.get("serviceType") == service_type:
                    matching.append(DeviceServiceDescription(
                        location=description.location,
                        friendly_device_name=device.get("friendlyName"),
                        service=service,
                    ))
    return errors, matching
