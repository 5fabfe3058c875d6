"""
CLI entrypoint for the chat sync engine.
"""
import sys
import typer
import asyncio
from loguru import logger

from chat_sync.client.controller import ChatController
from chat_sync.client.visualizer import Visualizer
from chat_sync.shared.config import settings

app = typer.Typer(help="Realtime chat presence and conversation sync")


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


@app.command()
def watch(
    user: str = typer.Option(..., help="Username to announce on the link"),
    duration: float = typer.Option(300.0, help="How long to keep the dashboard open, in seconds"),
):
    """Open a chat session and show the live dashboard."""
    # The dashboard owns the terminal; keep log noise to warnings and above
    _configure_logging("WARNING")
    controller = ChatController(user, settings)
    try:
        asyncio.run(Visualizer(controller).run(duration))
    except KeyboardInterrupt:
        pass


@app.command()
def send(
    user: str = typer.Option(..., help="Sender username"),
    conversation: str = typer.Option(..., help="Conversation id"),
    text: str = typer.Argument(..., help="Message text"),
):
    """Send one message (REST first, then the echo frame) and exit."""
    _configure_logging(settings.LOG_LEVEL)

    async def _send() -> bool:
        controller = ChatController(user, settings)
        notices = []
        controller.notices.subscribe(notices.append)
        try:
            await controller.open()
            await controller.conversations.load_conversations()
            message = await controller.send_message(conversation, text)
        finally:
            await controller.aclose()
        for notice in notices:
            typer.echo(f"{notice.title}: {notice.detail}", err=True)
        if message:
            typer.echo(f"sent id={message.id}")
        return message is not None

    if not asyncio.run(_send()):
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
