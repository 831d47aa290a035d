"""
CLI Module

Architectural Intent:
- Command-line interface for vigil
- Entry point for reservation workers and ad-hoc node operations
- Delegates to application use cases via composition root
- Supports --verbose/--debug flags for log level control
"""

import argparse
import asyncio
import logging
import sys
import traceback
from typing import Optional

from vigil.composition_root import VigilContainer, create_container, create_worker
from vigil.infrastructure.config import load_config
from vigil.infrastructure.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="vigil: reservation lifecycle controller"
    )
    parser.add_argument(
        "--config", "-c", default=None, help="Path to JSON config (default: vigil.json)"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose output"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug output with tracebacks"
    )
    parser.add_argument(
        "--json-logs", action="store_true", help="Emit structured JSON logs"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    process_parser = subparsers.add_parser(
        "process", help="Run the reserved phase for one or more reservations"
    )
    process_parser.add_argument(
        "reservation_ids", nargs="+", type=int, help="Reservation IDs"
    )

    response_parser = subparsers.add_parser(
        "wait-for-response", help="Wait for a freshly provisioned node to answer commands"
    )
    response_parser.add_argument("node", help="Node name")
    response_parser.add_argument(
        "--initial-delay", type=float, default=None, help="Seconds to wait before polling"
    )
    response_parser.add_argument(
        "--timeout", type=float, default=None, help="Seconds to poll for a response"
    )

    reboot_parser = subparsers.add_parser(
        "wait-for-reboot", help="Wait for a node to go down and come back"
    )
    reboot_parser.add_argument("node", help="Node name")
    reboot_parser.add_argument(
        "--total-wait", type=float, default=None, help="Seconds allowed per attempt"
    )
    reboot_parser.add_argument(
        "--attempt-limit", type=int, default=None,
        help="Attempts, power resetting between them",
    )

    connect_parser = subparsers.add_parser(
        "apply-connect-methods", help="Open the connect methods of a reservation"
    )
    connect_parser.add_argument("reservation_id", type=int, help="Reservation ID")
    connect_parser.add_argument(
        "--overwrite", action="store_true",
        help="Replace rules for the same ports opened for other addresses",
    )

    address_parser = subparsers.add_parser(
        "update-public-address", help="Refresh or push the public IP of a reservation's node"
    )
    address_parser.add_argument("reservation_id", type=int, help="Reservation ID")

    return parser


def _log_level(args: argparse.Namespace, default: str) -> int:
    if args.debug:
        return logging.DEBUG
    if args.verbose:
        return logging.INFO
    level = logging.getLevelName(default.upper())
    return level if isinstance(level, int) else logging.WARNING


async def _process(container: VigilContainer, reservation_ids: list[int], verbose: bool) -> int:
    async def run_one(reservation_id: int):
        context = container.store.get_reservation_context(reservation_id)
        worker = create_worker(container, context)
        try:
            return await worker.process()
        finally:
            await worker.close()

    results = await asyncio.gather(
        *(run_one(reservation_id) for reservation_id in reservation_ids),
        return_exceptions=True,
    )

    exit_code = 0
    for reservation_id, result in zip(reservation_ids, results):
        if isinstance(result, Exception):
            print(f"[-] Reservation {reservation_id}: {result}")
            if verbose:
                traceback.print_exception(result)
            exit_code = 1
        elif result is None:
            print(f"[*] Reservation {reservation_id}: abandoned without an outcome")
        else:
            print(f"[+] Reservation {reservation_id}: {result}")
    return exit_code


async def _wait_for_response(container: VigilContainer, args: argparse.Namespace) -> int:
    polling = container.config.polling
    executor = container.create_executor()
    poller = container.create_poller(args.node, executor)
    try:
        print(f"[*] Waiting for {args.node} to respond...")
        ready = await poller.wait_for_response(
            initial_delay_seconds=(
                args.initial_delay if args.initial_delay is not None
                else polling.initial_delay_seconds
            ),
            response_timeout_seconds=(
                args.timeout if args.timeout is not None else polling.response_timeout_seconds
            ),
            attempt_delay_seconds=polling.attempt_delay_seconds,
        )
    finally:
        await executor.close()
    print(f"[+] {args.node} is responding." if ready else f"[-] {args.node} did not respond.")
    return 0 if ready else 1


async def _wait_for_reboot(container: VigilContainer, args: argparse.Namespace) -> int:
    polling = container.config.polling
    executor = container.create_executor()
    poller = container.create_poller(args.node, executor)
    try:
        print(f"[*] Waiting for {args.node} to reboot...")
        rebooted = await poller.wait_for_reboot(
            total_wait_seconds=(
                args.total_wait if args.total_wait is not None else polling.max_wait_seconds
            ),
            attempt_delay_seconds=polling.attempt_delay_seconds,
            attempt_limit=(
                args.attempt_limit if args.attempt_limit is not None
                else polling.reboot_attempt_limit
            ),
        )
    finally:
        await executor.close()
    print(f"[+] {args.node} rebooted." if rebooted else f"[-] {args.node} did not reboot.")
    return 0 if rebooted else 1


async def _apply_connect_methods(container: VigilContainer, args: argparse.Namespace) -> int:
    context = container.store.get_reservation_context(args.reservation_id)
    worker = create_worker(container, context)
    try:
        print(f"[*] Applying connect methods on {context.computer.node_name}...")
        applied = await worker.provisioner.apply(
            context.reservation_id,
            context.connect_methods,
            context.reservation.remote_ip,
            nat_host=worker.nat_host,
            request_state=context.request.state,
            overwrite=args.overwrite,
        )
    finally:
        await worker.close()
    print("[+] Connect methods applied." if applied else "[-] Failed to apply connect methods.")
    return 0 if applied else 1


async def _update_public_address(container: VigilContainer, args: argparse.Namespace) -> int:
    context = container.store.get_reservation_context(args.reservation_id)
    worker = create_worker(container, context)
    try:
        print(f"[*] Updating public address of {context.computer.node_name}...")
        updated = await worker.public_address.update_public_ip_address(context)
        if updated:
            updated = await worker.public_address.set_fixed_ip(context)
    finally:
        await worker.close()
    if updated:
        print(f"[+] Public address of {context.computer.node_name}: {context.computer.public_ip}")
        return 0
    print("[-] Failed to update public address.")
    return 1


_COMMANDS = {
    "wait-for-response": _wait_for_response,
    "wait-for-reboot": _wait_for_reboot,
    "apply-connect-methods": _apply_connect_methods,
    "update-public-address": _update_public_address,
}


async def async_main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    config = load_config(args.config)
    configure_logging(level=_log_level(args, config.log_level), json_format=args.json_logs)
    verbose = args.verbose or args.debug

    container = create_container(config)
    try:
        await container.start()
        if args.command == "process":
            return await _process(container, args.reservation_ids, verbose)
        return await _COMMANDS[args.command](container, args)
    except KeyboardInterrupt:
        print("\n[*] Interrupted.")
        return 130
    except LookupError as e:
        print(f"[-] {e}")
        return 1
    except Exception as e:
        print(f"[-] {args.command} failed: {e}")
        if verbose:
            traceback.print_exc()
        return 1
    finally:
        await container.close()


def main():
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
