"""CLI: dingtalk-bridge send"""

from typing import Optional

import click
from rich.console import Console

from dingtalk_bridge.errors import BridgeError

console = Console()


def _get_config(config_path: Optional[str]):
    from dingtalk_bridge.cli.main import _get_config
    return _get_config(config_path)


def _run(coro):
    from dingtalk_bridge.cli.main import _run
    return _run(coro)


@click.command("send")
@click.argument("target")
@click.argument("message")
@click.option("-g", "--group", is_flag=True, help="Target is a group conversation")
@click.option("--markdown", "markdown_title", default=None, help="Send as markdown with this title")
@click.option("-c", "--config", "config_path", default=None, help="Path to config JSON")
def send_cmd(target: str, message: str, group: bool, markdown_title: Optional[str], config_path: Optional[str]):
    """Send a one-shot message to a conversation or user."""
    from dingtalk_bridge.client import DingTalkClient
    from dingtalk_bridge.outbound import OutboundTarget
    from dingtalk_bridge.targets import normalize_target

    cfg = _get_config(config_path)
    to = OutboundTarget(conversation_id=normalize_target(target), is_group=group)

    async def _send():
        client = DingTalkClient(cfg)
        try:
            if markdown_title:
                return await client.send(to, markdown={"title": markdown_title, "text": message})
            return await client.send(to, text=message)
        finally:
            await client.close()

    try:
        result = _run(_send())
    except BridgeError as e:
        console.print(f"[red]Send failed: {e}[/red]")
        raise SystemExit(1)
    console.print(f"[green]Sent[/green] to {result.conversation_id} [dim]{result.msg_id}[/dim]")
