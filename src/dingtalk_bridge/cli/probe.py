"""CLI: dingtalk-bridge probe"""

import json
from typing import Optional

import click
from rich.console import Console

console = Console()


def _get_config(config_path: Optional[str]):
    from dingtalk_bridge.cli.main import _get_config
    return _get_config(config_path)


def _run(coro):
    from dingtalk_bridge.cli.main import _run
    return _run(coro)


@click.command("probe")
@click.option("-c", "--config", "config_path", default=None, help="Path to config JSON")
@click.option("--bot-info", is_flag=True, help="Also read the robot's info")
@click.option("--json-output", "--json", is_flag=True)
def probe_cmd(config_path: Optional[str], bot_info: bool, json_output: bool):
    """Verify credentials and API reachability."""
    from dingtalk_bridge.probe import probe

    cfg = _get_config(config_path)
    with console.status("Probing DingTalk..."):
        result = _run(probe(cfg, fetch_bot_info=bot_info))

    if json_output:
        click.echo(json.dumps(result.model_dump(exclude_none=True)))
    elif result.ok:
        name = f" as {result.bot_name}" if result.bot_name else ""
        console.print(f"[green]OK[/green] appKey {result.app_key}{name}")
    else:
        console.print(f"[red]Probe failed:[/red] {result.error}")
    if not result.ok:
        raise SystemExit(1)
