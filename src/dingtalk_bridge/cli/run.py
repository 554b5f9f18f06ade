"""CLI: dingtalk-bridge run"""

import asyncio
import signal
from typing import Optional

import click
from rich.console import Console

from dingtalk_bridge.errors import BridgeError

console = Console()


def _get_config(config_path: Optional[str]):
    from dingtalk_bridge.cli.main import _get_config
    return _get_config(config_path)


def _setup_logging(debug: bool) -> None:
    from dingtalk_bridge.cli.main import _setup_logging
    _setup_logging(debug)


def _run(coro):
    from dingtalk_bridge.cli.main import _run
    return _run(coro)


@click.command("run")
@click.option("-c", "--config", "config_path", default=None, help="Path to config JSON")
@click.option("--debug", is_flag=True, help="Verbose logging")
def run_cmd(config_path: Optional[str], debug: bool):
    """Run the bridge until interrupted."""
    cfg = _get_config(config_path)
    _setup_logging(debug or cfg.debug)

    async def _serve():
        from dingtalk_bridge.bridge import monitor
        from dingtalk_bridge.gateway import OpenClawGateway

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        gateway = OpenClawGateway(cfg.gateway.url, token=cfg.gateway.token, password=cfg.gateway.password)
        console.print(f"[cyan]Bridging DingTalk to {cfg.gateway.url} (Ctrl+C to stop)[/cyan]")
        try:
            await monitor(cfg, gateway, stop)
        finally:
            await gateway.close()

    try:
        _run(_serve())
    except BridgeError as e:
        console.print(f"[red]Bridge failed to start: {e}[/red]")
        raise SystemExit(1)
