"""
DingTalk bridge CLI: `dingtalk-bridge` command.

Commands:
  dingtalk-bridge run              Run the bridge until Ctrl+C
  dingtalk-bridge probe            Check credentials and connectivity
  dingtalk-bridge send <to> <msg>  Send a one-shot message
  dingtalk-bridge config show      Print the effective config
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

try:
    import click
    from dotenv import load_dotenv
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install dingtalk-stream-bridge[cli]")

from dingtalk_bridge.config import BridgeConfig, load_config
from dingtalk_bridge.errors import ConfigError

console = Console()


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _get_config(config_path: Optional[str]) -> BridgeConfig:
    load_dotenv(Path.cwd() / ".env")
    try:
        return load_config(Path(config_path) if config_path else None)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option("0.1.0")
def main():
    """DingTalk bridge: stream robot messages to an AI agent."""


# Register subcommands from separate modules
from dingtalk_bridge.cli.config import config  # noqa: E402
from dingtalk_bridge.cli.probe import probe_cmd  # noqa: E402
from dingtalk_bridge.cli.run import run_cmd  # noqa: E402
from dingtalk_bridge.cli.send import send_cmd  # noqa: E402

main.add_command(run_cmd)
main.add_command(probe_cmd)
main.add_command(send_cmd)
main.add_command(config)


if __name__ == "__main__":
    main()
