"""
MODULE OVERVIEW:
The Rich Terminal Dashboard for a live chat session.

WHAT IS HAPPENING HERE:
We subscribe to the controller's single feed, keep a short timeline of what
happened, and redraw a Layout four times a second: link state in the header,
conversations with their unread badges on the left, presence and pending
friend requests on the right.
"""

from rich.live import Live
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from collections import deque
from datetime import datetime
import asyncio

from chat_sync.client.controller import ChatController
from chat_sync.client.transport_link import LinkState


class Visualizer:
    def __init__(self, controller: ChatController):
        self.controller = controller
        self.timeline = deque(maxlen=8)

    def on_update(self, topic: str, payload) -> None:
        ts = datetime.now().strftime("%H:%M:%S")
        if topic == "link":
            suffix = " (gave up)" if payload.exhausted else ""
            self.timeline.appendleft(f"[{ts}] link {payload.state.value} attempt={payload.attempt}{suffix}")
        elif topic == "notice":
            self.timeline.appendleft(f"[{ts}] {payload.level}: {payload.title} {payload.detail}".rstrip())
        elif topic == "unread":
            self.timeline.appendleft(f"[{ts}] unread {sum(payload.values())}")
        elif topic == "friend_requests_unread":
            self.timeline.appendleft(f"[{ts}] friend requests {payload}")

    def generate_layout(self) -> Layout:
        c = self.controller
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="left", ratio=2),
            Layout(name="right", ratio=1)
        )
        layout["right"].split_column(
            Layout(name="presence"),
            Layout(name="requests"),
            Layout(name="timeline")
        )

        # Header
        snap = c.connection
        if snap.state is LinkState.CONNECTED:
            color = "green"
        elif snap.state is LinkState.CONNECTING:
            color = "yellow"
        else:
            color = "red"
        status = "DISCONNECTED (retries exhausted)" if snap.exhausted else snap.state.value.upper()
        layout["header"].update(Panel(
            f"[{color} bold]User: {c.username} | Link: {status} | Unread: {c.total_unread}[/]", style=color
        ))

        # Conversations
        table = Table(title="Conversations", expand=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Participants", style="magenta")
        table.add_column("Last message", style="green")
        table.add_column("Unread", justify="right", style="bold red")
        for conv in c.conversations.conversations:
            last = conv.last_message.content if conv.last_message else ""
            last = last[:40] + "..." if len(last) > 40 else last
            unread = c.conversations.unread_for(conv.id)
            people = ", ".join(c.display_name(p) for p in conv.participants)
            table.add_row(conv.name or conv.id, people, last, str(unread) if unread else "")
        layout["left"].update(Panel(table, title="Chat"))

        # Presence
        online = c.presence.online_users()
        layout["presence"].update(Panel("\n".join(online) or "nobody online", title=f"Online ({len(online)})"))

        # Friend requests
        pending = c.friends.pending_requests
        lines = [f"{r.from_user}: {r.message or ''}" for r in pending]
        layout["requests"].update(Panel("\n".join(lines) or "none", title=f"Friend requests ({len(pending)})"))

        # Timeline
        layout["timeline"].update(Panel("\n".join(self.timeline), title="Timeline"))

        return layout

    async def run(self, duration_s: float):
        unsubscribe = self.controller.subscribe(self.on_update)
        await self.controller.open()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration_s
        try:
            with Live(self.generate_layout(), refresh_per_second=4) as live:
                while loop.time() < deadline:
                    live.update(self.generate_layout())
                    await asyncio.sleep(0.25)
        finally:
            unsubscribe()
            await self.controller.aclose()
