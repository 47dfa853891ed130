#!/usr/bin/env python3
"""
Onionet CLI - Run and inspect onionet components.

Commands:
  onionet registry start              Start the registry
  onionet router start --node-id N    Start onion router N
  onionet user start --user-id N      Start user N
  onionet network start               Start registry, routers and users at once
  onionet send                        Ask a running user to send a message
  onionet status                      Check whether a component is live

Examples:
  # Local network with 5 routers and 2 users
  onionet network start --nodes 5 --users 2

  # User 0 sends to user 1
  onionet send --user-id 0 --to 1 --message "hello"

  # Check onion router 3
  onionet status router --id 3
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import signal
import sys
from collections.abc import Awaitable, Callable

import aiohttp

from onionet.core.exceptions import ConfigException, OnionetException
from onionet.core.logging import configure_logging
from onionet.network.config import NetworkConfig
from onionet.network.launch import launch_network
from onionet.network.messages import SendMessageBody
from onionet.network.registry import RegistryNode
from onionet.network.router import OnionRouter
from onionet.network.user import User

logger = logging.getLogger(__name__)

CLIENT_TIMEOUT_SECONDS = 5


def _network_config(args: argparse.Namespace) -> NetworkConfig:
    """Environment config, with any port given on the command line applied."""
    config = NetworkConfig.from_settings()
    if getattr(args, "registry_port", None) is not None:
        config = dataclasses.replace(config, registry_port=args.registry_port)
    return config


async def _serve(
    start: Callable[[], Awaitable[None]],
    stop: Callable[[], Awaitable[None]],
    banner: str,
    args: argparse.Namespace,
) -> int:
    """Start a component, wait for SIGINT/SIGTERM, then stop it."""
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await start()

        if args.json:
            print(json.dumps({"status": "started", "detail": banner}))
        else:
            print(banner)
            print("Press Ctrl+C to stop")

        await shutdown_event.wait()

    except (OnionetException, OSError) as e:
        logger.error(f"Startup failed: {e}")
        return 1

    finally:
        await stop()
        if not args.json:
            print("Stopped")

    return 0


async def cmd_registry_start(args: argparse.Namespace) -> int:
    """Start the registry."""
    registry = RegistryNode(config=_network_config(args))
    return await _serve(
        registry.start,
        registry.stop,
        f"Registry started on port {registry.port}",
        args,
    )


async def cmd_router_start(args: argparse.Namespace) -> int:
    """Start one onion router."""
    config = _network_config(args)
    router = await asyncio.to_thread(OnionRouter, node_id=args.node_id, config=config)
    return await _serve(
        router.start,
        router.stop,
        f"Onion router {router.node_id} started on port {router.port}",
        args,
    )


async def cmd_user_start(args: argparse.Namespace) -> int:
    """Start one user."""
    user = User(user_id=args.user_id, config=_network_config(args))
    return await _serve(
        user.start,
        user.stop,
        f"User {user.user_id} started on port {user.port}",
        args,
    )


async def cmd_network_start(args: argparse.Namespace) -> int:
    """Start a registry, ``--nodes`` routers and ``--users`` users."""
    config = _network_config(args)
    handles = []

    async def start() -> None:
        handles.append(await launch_network(args.nodes, args.users, config))

    async def stop() -> None:
        for handle in handles:
            await handle.close()

    return await _serve(
        start,
        stop,
        f"Network started: registry on port {config.registry_port}, "
        f"{args.nodes} onion routers from port {config.router_port(0)}, "
        f"{args.users} users from port {config.user_port(0)}",
        args,
    )


async def cmd_send(args: argparse.Namespace) -> int:
    """Ask a running user to send a message."""
    config = _network_config(args)
    url = f"{config.url_for_port(config.user_port(args.user_id))}/sendMessage"
    body = SendMessageBody(message=args.message, destination_user_id=args.to)

    try:
        timeout = aiohttp.ClientTimeout(total=config.circuit_timeout_seconds + CLIENT_TIMEOUT_SECONDS)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(url, json=body.to_dict()) as response:
                text = await response.text()
                if response.status == 200:
                    if args.json:
                        print(json.dumps({"status": "sent", "from": args.user_id, "to": args.to}))
                    else:
                        print(f"✅ User {args.user_id} sent message to user {args.to}")
                    return 0
                print(f"❌ Error: HTTP {response.status}: {text}", file=sys.stderr)
                return 1

    except aiohttp.ClientConnectorError:
        print(f"❌ Cannot connect to user {args.user_id} at {url}", file=sys.stderr)
        return 1
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1


async def cmd_status(args: argparse.Namespace) -> int:
    """Check whether a component answers ``/status``."""
    config = _network_config(args)
    if args.component == "registry":
        port = config.registry_port
        name = "registry"
    else:
        if args.id is None:
            print(f"❌ --id is required for {args.component}", file=sys.stderr)
            return 2
        if args.component == "router":
            port = config.router_port(args.id)
        else:
            port = config.user_port(args.id)
        name = f"{args.component} {args.id}"

    url = f"{config.url_for_port(port)}/status"

    try:
        timeout = aiohttp.ClientTimeout(total=CLIENT_TIMEOUT_SECONDS)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as response:
                text = await response.text()
                live = response.status == 200 and text == "live"

    except (aiohttp.ClientError, asyncio.TimeoutError):
        live = False

    if args.json:
        print(json.dumps({"component": name, "port": port, "live": live}))
    else:
        icon = "🟢" if live else "🔴"
        print(f"{icon} {name} on port {port}: {'live' if live else 'unreachable'}")
    return 0 if live else 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="onionet",
        description="Onionet - minimal onion-routing overlay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Local network with 5 routers and 2 users
  onionet network start --nodes 5 --users 2

  # User 0 sends to user 1
  onionet send --user-id 0 --to 1 --message "hello"

  # Check onion router 3
  onionet status router --id 3

Environment Variables:
  ONIONET_HOST                     Host used to reach components (default: localhost)
  ONIONET_BIND_HOST                Address servers bind to (default: 127.0.0.1)
  ONIONET_REGISTRY_PORT            Registry port (default: 8080)
  ONIONET_BASE_ONION_ROUTER_PORT   Router N listens on base + N (default: 4000)
  ONIONET_BASE_USER_PORT           User N listens on base + N (default: 3000)
  ONIONET_LOG_LEVEL                Log level (default: INFO)
        """,
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument(
        "--registry-port",
        type=int,
        default=None,
        help="Registry port (default: ONIONET_REGISTRY_PORT or 8080)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # registry
    registry_parser = subparsers.add_parser("registry", help="Registry commands")
    registry_sub = registry_parser.add_subparsers(dest="action")
    registry_sub.add_parser(
        "start",
        help="Start the registry",
        description="Start the registry that onion routers register with.",
    )

    # router
    router_parser = subparsers.add_parser("router", help="Onion router commands")
    router_sub = router_parser.add_subparsers(dest="action")
    router_start = router_sub.add_parser(
        "start",
        help="Start an onion router",
        description="Start an onion router; it registers with the registry on startup.",
    )
    router_start.add_argument(
        "--node-id",
        "-n",
        type=int,
        required=True,
        help="Node id; the router listens on the base router port + id",
    )

    # user
    user_parser = subparsers.add_parser("user", help="User commands")
    user_sub = user_parser.add_subparsers(dest="action")
    user_start = user_sub.add_parser(
        "start",
        help="Start a user",
        description="Start a user endpoint that can send and receive messages.",
    )
    user_start.add_argument(
        "--user-id",
        "-u",
        type=int,
        required=True,
        help="User id; the user listens on the base user port + id",
    )

    # network
    network_parser = subparsers.add_parser("network", help="Whole-network commands")
    network_sub = network_parser.add_subparsers(dest="action")
    network_start = network_sub.add_parser(
        "start",
        help="Start registry, routers and users in one process",
    )
    network_start.add_argument(
        "--nodes",
        type=int,
        default=3,
        help="Number of onion routers (default: 3)",
    )
    network_start.add_argument(
        "--users",
        type=int,
        default=2,
        help="Number of users (default: 2)",
    )

    # send
    send_parser = subparsers.add_parser(
        "send",
        help="Ask a running user to send a message",
    )
    send_parser.add_argument(
        "--user-id",
        "-u",
        type=int,
        required=True,
        help="Sending user id",
    )
    send_parser.add_argument(
        "--to",
        "-t",
        type=int,
        required=True,
        help="Receiving user id",
    )
    send_parser.add_argument(
        "--message",
        "-m",
        required=True,
        help="Message text",
    )

    # status
    status_parser = subparsers.add_parser(
        "status",
        help="Check whether a component is live",
    )
    status_parser.add_argument(
        "component",
        choices=["registry", "router", "user"],
        help="Component type",
    )
    status_parser.add_argument(
        "--id",
        type=int,
        default=None,
        help="Router or user id",
    )

    return parser


COMMANDS = {
    ("registry", "start"): cmd_registry_start,
    ("router", "start"): cmd_router_start,
    ("user", "start"): cmd_user_start,
    ("network", "start"): cmd_network_start,
    ("send", None): cmd_send,
    ("status", None): cmd_status,
}


async def async_main(args: argparse.Namespace) -> int:
    """Async main entry point."""
    configure_logging(level="DEBUG" if args.verbose else None)

    handler = COMMANDS.get((args.command, getattr(args, "action", None)))
    if handler is None:
        create_parser().print_help()
        return 0
    try:
        return await handler(args)
    except ConfigException as e:
        print(f"❌ Configuration error: {e.message}", file=sys.stderr)
        return 2


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    return asyncio.run(async_main(args))


if __name__ == "__main__":
    sys.exit(main())
