"""
Command line front end for upnp-scout.

Usage:
    python -m upnp_scout listen                       # log every datagram until Ctrl-C
    python -m upnp_scout search                       # search ssdp:all, print services
    python -m upnp_scout search --target upnp:rootdevice --wait 5
    python -m upnp_scout describe \\
        --device-type urn:schemas-upnp-org:device:MediaServer:1 \\
        --service-type urn:schemas-upnp-org:service:ContentDirectory:1
"""

# Load .env file FIRST, before any other imports
from pathlib import Path
from dotenv import load_dotenv
load_dotenv(Path.cwd() / ".env")

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from .config import settings
from .description import find_all_device_descriptions, find_device_services
from .discovery import DiscoveryError, DiscoveryService

logger = logging.getLogger("upnp_scout.cli")


def _on_socket_error(stop_event: asyncio.Event):
    def _callback(exc: Exception) -> None:
        logger.error("Discovery service failed: %s", exc)
        stop_event.set()
    return _callback


async def listen() -> int:
    stop_event = asyncio.Event()
    config = settings.discovery.model_copy(update={"log_messages": True})
    service = DiscoveryService(config)
    await service.start(on_error=_on_socket_error(stop_event))
    try:
        await stop_event.wait()
    finally:
        await service.stop()
    return 1


async def search(target: Optional[str], wait: float) -> int:
    stop_event = asyncio.Event()
    service = DiscoveryService()
    await service.start(on_error=_on_socket_error(stop_event))
    try:
        service.start_search(target)
        await asyncio.sleep(wait)

        for message in service.message_store.evict_expired_and_list():
            print(f"{message.usn}\n    LOCATION: {message.location}")
            if message.st:
                print(f"    ST: {message.st}")
            elif message.nt:
                print(f"    NT: {message.nt}")
        print(f"{len(service.get_locations())} locations")
    finally:
        await service.stop()
    return 0 if not stop_event.is_set() else 1


async def describe(
    target: Optional[str],
    wait: float,
    device_type: Optional[str],
    service_type: Optional[str],
) -> int:
    stop_event = asyncio.Event()
    service = DiscoveryService()
    await service.start(on_error=_on_socket_error(stop_event))
    try:
        service.start_search(target)
        await asyncio.sleep(wait)

        if device_type and service_type:
            errors, results = await find_device_services(service, device_type, service_type)
            payload = [
                {
                    "location": r.location,
                    "friendly_device_name": r.friendly_device_name,
                    "service": r.service,
                }
                for r in results
            ]
        else:
            errors, descriptions = await find_all_device_descriptions(service)
            payload = [
                {"location": d.location, "description": d.description}
                for d in descriptions
            ]
    finally:
        await service.stop()

    for error in errors:
        logger.warning("%s: %s", error.location, error.error)
    print(json.dumps(payload, indent=2))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="upnp_scout", description="SSDP/UPnP discovery")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("listen", help="Log announcements until interrupted")

    search_parser = sub.add_parser("search", help="Send M-SEARCH and list services")
    search_parser.add_argument("--target", default=None, help="Search target (ST)")
    search_parser.add_argument("--wait", type=float, default=settings.discovery.mx + 1,
                               help="Seconds to collect responses")

    describe_parser = sub.add_parser("describe", help="Search, then fetch device descriptions")
    describe_parser.add_argument("--target", default=None, help="Search target (ST)")
    describe_parser.add_argument("--wait", type=float, default=settings.discovery.mx + 1,
                                 help="Seconds to collect responses")
    describe_parser.add_argument("--device-type", default=None)
    describe_parser.add_argument("--service-type", default=None)

    args = parser.parse_args(argv)
    if args.command == "describe" and bool(args.device_type) != bool(args.service_type):
        describe_parser.error("--device-type and --service-type must be given together")

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        if args.command == "listen":
            return asyncio.run(listen())
        if args.command == "search":
            return asyncio.run(search(args.target, args.wait))
        return asyncio.run(describe(args.target, args.wait, args.device_type, args.service_type))
    except DiscoveryError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
