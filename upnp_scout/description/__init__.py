"""
Device description retrieval for discovered UPnP devices.
"""

from .fetcher import (
    DescriptionError,
    DeviceDescription,
    DeviceServiceDescription,
    fetch_description,
    find_all_device_descriptions,
    find_device_services,
)
from .simplexml import parse_object_from_element, parse_object_from_xml

__all__ = [
    "DescriptionError",
    "DeviceDescription",
    "DeviceServiceDescription",
    "fetch_description",
    "find_all_device_descriptions",
    "find_device_services",
    "parse_object_from_element",
    "parse_object_from_xml",
]
