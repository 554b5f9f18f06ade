"""CLI: dingtalk-bridge config show"""

import json
from typing import Optional

import click
from rich.console import Console

console = Console()


def _get_config(config_path: Optional[str]):
    from dingtalk_bridge.cli.main import _get_config
    return _get_config(config_path)


@click.group()
def config():
    """Configuration commands."""


@config.command("show")
@click.option("-c", "--config", "config_path", default=None, help="Path to config JSON")
def config_show(config_path: Optional[str]):
    """Print the effective config with secrets masked."""
    cfg = _get_config(config_path)
    console.print_json(json.dumps(cfg.masked(), ensure_ascii=False))
