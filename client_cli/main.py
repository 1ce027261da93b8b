from __future__ import annotations

from typing import Optional
from pathlib import Path
import json
import os

import typer
from rich.console import Console
import httpx


app = typer.Typer()
console = Console()
trace_console = Console(stderr=True)


def build_request(
    city: str,
    days: int = 1,
    budget: str = "any",
    mood: Optional[str] = None,
    right_now: bool = False,
    dietary: Optional[list[str]] = None,
    accessible: bool = False,
    date_night: bool = False,
    current_hour: Optional[int] = None,
) -> dict:
    body: dict = {"city": city, "days": days, "budget": budget}
    if mood:
        body["mood"] = mood
    if right_now:
        body["rightNow"] = True
    if dietary:
        body["dietary"] = dietary
    if accessible:
        body["accessible"] = True
    if date_night:
        body["dateNight"] = True
    if current_hour is not None:
        body["currentHour"] = current_hour
    return body


def parse_event(raw_line) -> Optional[dict]:
    line = raw_line.decode("utf-8") if isinstance(raw_line, (bytes, bytearray)) else raw_line
    line = line.strip()
    if not line.startswith("data:"):
        return None
    try:
        payload = json.loads(line[len("data:"):].strip())
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def stream_plan(url: str, body: dict, timeout: float = 90.0) -> tuple[str, Optional[str]]:
    """Stream one plan, printing prose to stdout and progress to stderr.

    Returns the collected Markdown and the error message, if the stream ended in one.
    """
    markdown_output = ""
    error: Optional[str] = None
    with httpx.stream(
        "POST",
        url,
        json=body,
        headers={"Accept": "text/event-stream", "Content-Type": "application/json"},
        timeout=timeout,
    ) as resp:
        resp.raise_for_status()
        for raw_line in resp.iter_lines():
            payload = parse_event(raw_line)
            if payload is None:
                continue
            ptype = payload.get("type")
            if ptype == "content_chunk":
                content = payload.get("content", "")
                console.print(content, end="")
                markdown_output += content
            elif ptype == "city_resolved":
                trace_console.print(f"[city] {payload.get('content')}", style="dim")
            elif ptype == "thinking_chunk":
                trace_console.print(f"[thinking] {payload.get('thinking')}", style="dim")
            elif ptype == "tool_call_start":
                trace_console.print(f"[tool] {payload.get('tool')} -> pending", style="dim")
            elif ptype == "tool_call_result":
                result = payload.get("result") or {}
                if result.get("success"):
                    trace_console.print(f"[tool] {payload.get('tool')} -> ok", style="dim")
                else:
                    trace_console.print(f"[tool] {payload.get('tool')} -> failed: {result.get('error')}", style="yellow")
            elif ptype == "error":
                error = payload.get("error", "Unknown error")
                trace_console.print(error, style="bold red")
                break
            elif ptype == "done":
                break
    return markdown_output, error


@app.command()
def cli(
    city: str = typer.Argument(..., help="Destination city (e.g. 'Kyoto')."),
    days: int = typer.Option(1, "--days", "-d", min=1, max=7, help="Number of itinerary days."),
    budget: str = typer.Option("any", "--budget", "-b", help="any, free, low, medium or high."),
    mood: Optional[str] = typer.Option(None, "--mood", "-m", help="How you're feeling today."),
    right_now: bool = typer.Option(False, "--right-now", help="Only plan the next couple of hours."),
    dietary: Optional[list[str]] = typer.Option(None, "--diet", help="Dietary restriction (repeatable)."),
    accessible: bool = typer.Option(False, "--accessible", help="Wheelchair accessible venues only."),
    date_night: bool = typer.Option(False, "--date-night", help="Romantic plan for two."),
    output_file: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Save Markdown to file."
    ),
) -> None:
    orchestrator_url = os.getenv("ORCHESTRATOR_URL", "http://localhost:3002")
    url = f"{orchestrator_url.rstrip('/')}/api/plan"
    body = build_request(
        city,
        days=days,
        budget=budget,
        mood=mood,
        right_now=right_now,
        dietary=dietary,
        accessible=accessible,
        date_night=date_night,
    )

    with console.status(f"Planning your day in {city}..."):
        try:
            md, error = stream_plan(url, body)
        except httpx.HTTPError as e:
            trace_console.print(f"Request failed: {e}", style="bold red")
            raise typer.Exit(code=1)

    if error:
        raise typer.Exit(code=1)

    if output_file and md:
        try:
            output_file.parent.mkdir(parents=True, exist_ok=True)
            output_file.write_text(md, encoding="utf-8")
            console.print(f"\nSaved itinerary to {output_file}", style="green")
        except OSError as e:
            trace_console.print(f"Failed to write file: {e}", style="bold red")
            raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
