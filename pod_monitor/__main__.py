import argparse
import asyncio
import logging
import os
import sys

# Allows running the package directory directly (e.g. `python pod_monitor`)
# by putting the project root on the path before the absolute imports below.
if __package__ is None or __package__ == '':
    script_dir = os.path.dirname(os.path.abspath(__file__))
    sys.path.insert(0, os.path.dirname(script_dir))

from pod_monitor import config, server
from pod_monitor.collector import Collector
from pod_monitor.persistence import Persistence
from pod_monitor.rpc_client import PodRPCClient

log = logging.getLogger("PodMonitor")


async def collect_once(db_path: str):
    """Run a single collection cycle against every network, then exit."""
    persistence = Persistence(db_path)
    await persistence.connect()
    client = PodRPCClient(config.NETWORK_RPC_ENDPOINTS)
    await client.start()
    try:
        collector = Collector(client, persistence)
        results = await collector.collect_all_networks()
    finally:
        await client.stop()
        await persistence.close()

    for network, snapshot in results.items():
        if snapshot is None:
            log.warning(f"[{network}] no data collected")
        else:
            log.info(f"[{network}] {snapshot.online_nodes}/{snapshot.sampled_count} online ({snapshot.online_ratio}%)")
    return results


def main():
    parser = argparse.ArgumentParser(
        description="Pod Monitor - collects fleet telemetry across networks and serves its history",
        epilog="""
Examples:
  # Run the collector, HTTP API and (if TELEGRAM_BOT_TOKEN is set) the Telegram bot
  %(prog)s --port 3001

  # One collection cycle, written to the database, then exit
  %(prog)s --once

Networks are read from POD_MONITOR_NETWORKS as 'name=url,name=url'.
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--host', default=config.SERVER_HOST, help="Interface to bind the HTTP server to.")
    parser.add_argument('--port', type=int, default=config.SERVER_PORT, help="HTTP server port.")
    parser.add_argument('--once', action='store_true', help="Run a single collection cycle and exit.")
    parser.add_argument('--debug', action='store_true', help="Enable debug logging.")
    args = parser.parse_args()

    log_level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level=log_level, format='%(asctime)s [%(levelname)s] [%(name)s] %(message)s',
                        datefmt='%Y-%m-%d %H:%M:%S')

    if args.once:
        results = asyncio.run(collect_once(config.DATABASE_FILE))
        sys.exit(0 if any(results.values()) else 1)

    server.run_server(args.host, args.port)


if __name__ == "__main__":
    main()
