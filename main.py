import argparse
import asyncio
import signal
import sys

from tabcast import config
from tabcast.errors import LaunchError
from tabcast.logger import log
from tabcast.profile import LaunchOptions
from tabcast.session_manager import SessionManager


def mcp_endpoint(ws_url: str) -> str:
    # Host form the MCP server is given
    return ws_url.replace("127.0.0.1", "localhost")


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Launch a browser and hand its debugging endpoint to an MCP server.")
    p.add_argument("--port", type=int, default=config.CDP_PORT, help="remote debugging port")
    p.add_argument("--mcp-port", type=int, default=config.MCP_PORT)
    p.add_argument("--headed", action="store_true", help="show the browser window")
    p.add_argument("--no-mcp", action="store_true", help="only keep the browser alive")
    return p.parse_args(argv)


async def run(args) -> int:
    sm = SessionManager()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        session = await sm.create(LaunchOptions(port=args.port, headless=not args.headed, duration_sec=0))
    except LaunchError as e:
        log("ERROR", "wrapper_launch_failed", "Unable to obtain CDP URL", error=str(e), error_type=type(e).__name__)
        return 1

    endpoint = mcp_endpoint(session.debug_endpoint)
    log("INFO", "wrapper_endpoint", "CDP endpoint found", endpoint=endpoint, session_id=session.id)
    print(endpoint, flush=True)

    child = None
    try:
        if args.no_mcp:
            await stop.wait()
            return 0

        child = await asyncio.create_subprocess_exec(
            "npx", "@playwright/mcp", "--cdp-endpoint", endpoint, "--port", str(args.mcp_port),
        )
        log("INFO", "wrapper_mcp_started", "MCP server started", pid=child.pid, port=args.mcp_port)
        waiter = asyncio.create_task(child.wait())
        stopper = asyncio.create_task(stop.wait())
        done, pending = await asyncio.wait([waiter, stopper], return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        if waiter in done:
            log("WARN", "wrapper_mcp_exited", "MCP server terminated", returncode=child.returncode)
            return child.returncode or 0
        return 0
    except OSError as e:
        log("ERROR", "wrapper_mcp_failed", "Could not start MCP server", error=str(e))
        return 1
    finally:
        if child is not None and child.returncode is None:
            child.terminate()
            await child.wait()
        await sm.destroy_all()


def main(argv=None) -> int:
    return asyncio.run(run(parse_args(argv)))


if __name__ == "__main__":
    sys.exit(main())
