import argparse
import json
import logging
import sys

from wax_unit import ChainSession, HarnessError, TimeTravelRequest, load_config
from wax_unit.models import NodeHandle, Reachable
from wax_unit.readiness import address_candidates, resolve_address
from wax_unit.time_travel import read_clock_offset


def attach(session: ChainSession) -> ChainSession:
    """
    Bind to an already running chain without restarting it.

    The session clock resumes from the offset already written to the container.
    """
    resolution = resolve_address(session.rpc, address_candidates(session.controller, session.config))
    if not isinstance(resolution, Reachable):
        raise HarnessError("No running chain answered: " + "; ".join(resolution.reasons))
    session.handle = NodeHandle(session.config.container_name, resolution.address, ready=True)
    session.chain_clock.resume(read_clock_offset(session.controller))
    return session


def cmd_up(session: ChainSession, args) -> int:
    session.setup()
    info = session.get_info()
    logging.info("Chain ready at %s, head block %d (%s)",
                 session.handle.address, info.head_block_num, info.head_block_time.isoformat())
    return 0


def cmd_down(session: ChainSession, args) -> int:
    session.teardown()
    return 0


def cmd_info(session: ChainSession, args) -> int:
    attach(session)
    print(json.dumps(session.get_info().raw, indent=2))
    return 0


def cmd_add_time(session: ChainSession, args) -> int:
    request = TimeTravelRequest(seconds=args.seconds, anchor=args.anchor)
    attach(session)
    applied = session.add_time(request.seconds, request.anchor)
    print(json.dumps({
        "applied_ms": applied,
        "cumulative_offset_seconds": session.chain_clock.cumulative_offset_seconds,
    }))
    return 0


def main():
    parser = argparse.ArgumentParser(description="Manage the ephemeral WAX test chain")
    parser.add_argument("--config", type=str, help="Harness YAML config (defaults to $WAX_UNIT_CONFIG)")
    parser.add_argument("--noLogin", action="store_true", help="Skip registry login before pulling the image")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level (DEBUG, INFO, ...)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    up = subparsers.add_parser("up", help="Start or restart the chain and wait until it produces blocks")
    up.set_defaults(func=cmd_up)

    down = subparsers.add_parser("down", help="Stop and remove the chain container")
    down.set_defaults(func=cmd_down)

    info = subparsers.add_parser("info", help="Print get_info from the running chain")
    info.set_defaults(func=cmd_info)

    add_time = subparsers.add_parser("add-time", help="Advance chain time")
    add_time.add_argument("seconds", type=float, help="Seconds to add")
    add_time.add_argument("--anchor", type=str, help="Ledger timestamp to measure from")
    add_time.set_defaults(func=cmd_add_time)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger().setLevel(args.log_level.upper())

    config = load_config(args.config)
    if args.noLogin:
        config.skip_registry_login = True

    session = ChainSession(config)
    try:
        return args.func(session, args)
    except HarnessError as e:
        logging.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
