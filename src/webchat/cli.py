"""
Webchat console — drive a webchat channel from the terminal.

Plain line output via Rich, async prompt_toolkit input. Useful for poking at
a channel while developing against the protocol.

Usage: webchat --socket-url websocket.weni.ai --channel <uuid> [--host https://flows.weni.ai]

Commands:
    /quit            exit
    /clear           clear the local message list
    /qr <n>          send quick reply n (1-based) from the last bot message
    /field key=value set a contact custom field
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import replace

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markup import escape
from rich.text import Text

from webchat.client import ConnectionManager
from webchat.core.config import WebChatConfig
from webchat.core.logging import setup_logging
from webchat.errors import ConfigError
from webchat.models import Message, MessageType, Sender

STATUS_STYLES = {
    "connecting": "yellow",
    "connected": "green",
    "disconnected": "dim",
    "error": "bold red",
}


class WebChatConsole:
    """Terminal front-end over a ConnectionManager."""

    def __init__(self, config: WebChatConfig):
        self.console = Console()
        self.manager = ConnectionManager(
            config,
            on_message=self._print_message,
            on_error=lambda e: self.console.print(f"[bold red]Error:[/bold red] {escape(str(e))}"),
        )
        self._last_status = None
        self.manager.subscribe(self._on_state)

    def _on_state(self, state) -> None:
        status = state.connection_status.value
        if status != self._last_status:
            self._last_status = status
            style = STATUS_STYLES.get(status, "dim")
            self.console.print(f"[{style}]● {status}[/{style}]")

    def _print_message(self, message: Message) -> None:
        if message.sender != Sender.BOT:
            return
        if message.text:
            self.console.print(Text(message.text, style="cyan"))

        if message.type == MessageType.QUICK_REPLY:
            for i, reply in enumerate(message.quick_replies, 1):
                self.console.print(f"  [magenta]{i}.[/magenta] {escape(reply.title)}")
        elif message.type == MessageType.CAROUSEL:
            for product in message.products:
                price = escape(product.price)
                if product.original_price:
                    price = f"{price} [dim](was {escape(product.original_price)})[/dim]"
                self.console.print(f"  [bold]{escape(product.name)}[/bold] · {price}")
                if product.product_link:
                    self.console.print(f"    [dim]{escape(product.product_link)}[/dim]")
        elif message.type != MessageType.TEXT:
            url = next(iter(message.metadata.values()), "")
            self.console.print(f"  [dim]{message.type.value}: {escape(str(url))}[/dim]")

    def _last_quick_replies(self):
        for message in reversed(self.manager.messages):
            if message.sender == Sender.BOT:
                return message.quick_replies
        return []

    async def _handle_command(self, line: str) -> bool:
        """Run a slash command. Returns False to exit."""
        command, _, arg = line.partition(" ")
        if command in ("/quit", "/exit", "/q"):
            return False
        if command == "/clear":
            self.manager.clear_messages()
            self.console.print("[dim]Messages cleared.[/dim]")
        elif command == "/qr":
            replies = self._last_quick_replies()
            try:
                reply = replies[int(arg) - 1]
            except (ValueError, IndexError):
                self.console.print("[yellow]No such quick reply.[/yellow]")
                return True
            await self.manager.send_quick_reply(reply.payload, reply.title)
        elif command == "/field":
            key, sep, value = arg.partition("=")
            if not sep:
                self.console.print("[yellow]Usage: /field key=value[/yellow]")
                return True
            await self.manager.set_custom_field(key.strip(), value.strip())
        else:
            self.console.print(f"[yellow]Unknown command {escape(command)}[/yellow]")
        return True

    async def run(self) -> None:
        await self.manager.connect()
        if not await self.manager.wait_until_ready(timeout=15):
            self.console.print("[bold red]Server did not become ready.[/bold red]")

        session: PromptSession = PromptSession(history=InMemoryHistory())
        try:
            while True:
                try:
                    with patch_stdout():
                        line = await session.prompt_async("you → ")
                except (EOFError, KeyboardInterrupt):
                    break

                line = line.strip()
                if not line:
                    continue
                if line.startswith("/"):
                    if not await self._handle_command(line):
                        break
                    continue
                if await self.manager.send_message(line) is None:
                    self.console.print("[yellow]Not connected, message not sent.[/yellow]")
        finally:
            await self.manager.close()
            self.console.print("\n[dim]Goodbye.[/dim]")


def main() -> None:
    setup_logging()
    defaults = WebChatConfig.from_env()

    parser = argparse.ArgumentParser(description="Webchat console client")
    parser.add_argument("--socket-url", default=defaults.socket_url, help="WebSocket host")
    parser.add_argument("--host", default=defaults.host, help="Flows host for the callback URL")
    parser.add_argument("--channel", default=defaults.channel_uuid, help="Channel UUID")
    parser.add_argument("--session-id", default=defaults.session_id, help="Explicit session id")
    parser.add_argument("--init-payload", default=defaults.init_payload, help="Trigger sent after registration")
    args = parser.parse_args()

    config = replace(
        defaults,
        socket_url=args.socket_url,
        host=args.host,
        channel_uuid=args.channel,
        session_id=args.session_id,
        init_payload=args.init_payload,
    )
    try:
        config.validate()
    except ConfigError as e:
        parser.error(str(e))

    try:
        asyncio.run(WebChatConsole(config).run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
