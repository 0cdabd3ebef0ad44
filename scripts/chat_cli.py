#!/usr/bin/env python3
"""Interactive chat CLI for testing the TaskFlow AI service."""

import base64
import json
import mimetypes
import sys
from pathlib import Path

import httpx
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table


class ChatCLI:
    """Interactive chat interface for the TaskFlow AI service.

    The conversation history lives here and is sent in full with every message.
    """

    def __init__(self, base_url: str = "http://localhost:8000", model: str | None = None):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.model = model
        self.history: list[dict] = []
        self.pending_files: list[dict] = []
        self.console = Console()
        self.client = httpx.Client(timeout=httpx.Timeout(10.0, read=300.0))

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]✅ TaskFlow AI - Interactive Chat[/bold blue]\n"
                "Type your messages to manage tasks with the AI assistant.\n"
                "Commands: /image <path>, /tasks, /help, /clear, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]❌ Cannot connect to the service at {self.base_url}. Is it running?[/red]")
            return

        self.console.print("[green]✅ Connected to TaskFlow AI[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")
                command = user_input.strip().lower()

                if command in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif command == "/help":
                    self._show_help()
                    continue
                elif command == "/clear":
                    self.history = []
                    self.pending_files = []
                    self.console.print("[yellow]🔄 Conversation cleared[/yellow]")
                    continue
                elif command == "/tasks":
                    self._show_tasks()
                    continue
                elif command.startswith("/image"):
                    self._attach_image(user_input.strip()[len("/image") :].strip())
                    continue
                elif command == "":
                    continue

                self._send_message(user_input)

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _attach_image(self, path_arg: str) -> None:
        """Queue a local image to be sent with the next message."""
        path = Path(path_arg).expanduser()
        if not path_arg or not path.is_file():
            self.console.print(f"[red]❌ No such file: {path_arg or '(missing path)'}[/red]")
            return

        media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        if not media_type.startswith("image/"):
            self.console.print(f"[red]❌ Not an image: {path.name} ({media_type})[/red]")
            return

        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
        self.pending_files.append(
            {
                "type": "file",
                "media_type": media_type,
                "url": f"data:{media_type};base64,{encoded}",
                "filename": path.name,
            }
        )
        self.console.print(f"[green]📎 {path.name} will be sent with your next message[/green]")

    def _send_message(self, message: str) -> None:
        """Send the conversation to the service and render the streamed turn."""
        user_message = {"role": "user", "parts": [*self.pending_files, {"type": "text", "text": message}]}
        payload: dict = {"messages": [*self.history, user_message]}
        if self.model:
            payload["model"] = self.model

        streamed_text = ""
        try:
            with self.client.stream("POST", f"{self.base_url}/chat", json=payload) as response:
                if response.status_code != 200:
                    response.read()
                    self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")
                    return

                for line in response.iter_lines():
                    if not line:
                        continue
                    event = json.loads(line)
                    kind = event["type"]

                    if kind == "text_delta":
                        streamed_text += event["text"]
                    elif kind == "function_call":
                        streamed_text = self._flush_text(streamed_text)
                        args = json.dumps(event["arguments"])
                        self.console.print(f"[dim]🔧 {event['name']}({args})[/dim]")
                    elif kind == "function_result":
                        self._display_result(event)
                    elif kind == "done":
                        self._flush_text(streamed_text)
                        self.history.append(user_message)
                        self.history.extend(event["messages"])
                        self.pending_files = []
                        if event["stop_reason"] != "end_turn":
                            self.console.print(f"[dim]({event['stop_reason']} after {event['rounds']} rounds)[/dim]")
                    elif kind == "error":
                        self._flush_text(streamed_text)
                        self.console.print(f"[red]❌ {event['message']}[/red]")

        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")

    def _flush_text(self, text: str) -> str:
        """Display accumulated assistant text; returns the emptied buffer."""
        if text.strip():
            self.console.print(
                Panel(
                    Markdown(text),
                    title="[bold green]🤖 TaskFlow AI[/bold green]",
                    border_style="green",
                    padding=(1, 2),
                )
            )
        return ""

    def _display_result(self, event: dict) -> None:
        output = event["output"]
        if event["is_error"] or output.get("success") is False:
            self.console.print(f"[yellow]⚠️  {event['name']}: {output.get('error', 'failed')}[/yellow]")
        else:
            note = f" - {output['note']}" if output.get("note") else ""
            self.console.print(f"[dim]✔ {event['name']} succeeded{note}[/dim]")

        for index, image in enumerate(event.get("images", []), start=1):
            self.console.print(f"[magenta]🖼️  Generated image {index} ({len(image)} bytes as data URL)[/magenta]")

    def _show_tasks(self) -> None:
        """Show the current task list."""
        try:
            response = self.client.get(f"{self.base_url}/tasks")
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Could not load tasks: {e}[/red]")
            return

        tasks = response.json()["tasks"]
        if not tasks:
            self.console.print("[dim]No tasks yet.[/dim]")
            return

        table = Table(title="Tasks")
        table.add_column("Title", style="bold")
        table.add_column("Status")
        table.add_column("Priority")
        table.add_column("Due")
        table.add_column("Images", justify="right")
        for task in tasks:
            table.add_row(
                task["title"],
                task["status"],
                task["priority"],
                task["due_date"] or "",
                str(len(task["attachments"])),
            )
        self.console.print(table)

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /image <path> - Attach a local image to your next message
• /tasks - Show the current tasks
• /help - Show this help message
• /clear - Clear the conversation and start over
• /quit or /exit - Exit the chat

[bold]Example Conversation:[/bold]
1. "Add buy milk, call mom and file taxes, taxes are high priority due friday"
2. "What's overdue?"
3. "Draw a logo for my bakery"
4. "Save that logo to a task called Bakery branding"

[bold]Tips:[/bold]
• Use /image before a message like "Fix this logo" to attach the picture to a task
• Due dates accept YYYY-MM-DD, today, tomorrow, next week or a weekday name
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
    model = sys.argv[2] if len(sys.argv) > 2 else None

    chat = ChatCLI(base_url, model)
    chat.start()


if __name__ == "__main__":
    main()
