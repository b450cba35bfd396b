"""
upnp-scout - UPnP device and service discovery over SSDP.
"""

__version__ = "1.0.0"
