#!/usr/bin/env python3
"""
Dispatcher Chat - Rich-based CLI for the semantic dispatcher.

Usage:
    python talkto_dispatcher.py                          # Interactive session
    python talkto_dispatcher.py --headless "set a 5m timer"   # One-shot dispatch
    python talkto_dispatcher.py --catalog data/catalog.json --config dispatch.json

Tools run against an in-memory task list and timer table so dispatch decisions
can be exercised end to end without side effects. After each utterance, give
feedback with /confirm, /deny or /correct and apply it with /train.
"""

import argparse
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from clients.embeddings.cached_provider import CachingEmbeddingProvider
from clients.embeddings.sentence_transformers import MiniLMEmbeddingProvider
from clients.reasoning_client import OpenAICompatibleReasoningClient
from config.config import AppConfig, load_config
from dispatch.core.event import Event
from dispatch.core.exceptions import AttentionConflictError, InvalidCorrectionError
from dispatch.core.feedback import Feedback
from dispatch.core.result import DispatchResult
from dispatch.factory import DispatcherFactory
from dispatch.infrastructure.catalog import load_catalog
from tools.base import AmbiguousEntityError, EntityNotFoundError, ToolOutcome

console = Console()


# ─────────────────────────────────────────────────────────────────────────────
# In-memory tools
# ─────────────────────────────────────────────────────────────────────────────

class DemoWorkspace:
    """Task list and timers backing the catalog's tools."""

    def __init__(self):
        self.tasks: List[Dict[str, Any]] = []
        self.timers: List[Dict[str, Any]] = []

    def _find_task(self, title: str) -> Dict[str, Any]:
        matches = [t for t in self.tasks if not t["done"] and title.lower() in t["title"].lower()]
        if not matches:
            raise EntityNotFoundError(f"No open task matches '{title}'", slot_name="title")
        if len(matches) > 1:
            raise AmbiguousEntityError(
                f"'{title}' matches {len(matches)} tasks",
                slot_name="title",
                candidates=[t["title"] for t in matches],
            )
        return matches[0]

    def create_task(self, params: Dict[str, Any]) -> ToolOutcome:
        task = {
            "title": params["title"],
            "priority": params.get("priority", 3),
            "due": params.get("due"),
            "done": False,
        }
        self.tasks.append(task)
        return ToolOutcome.ok({"created": task["title"]})

    def complete_task(self, params: Dict[str, Any]) -> ToolOutcome:
        task = self._find_task(params["title"])
        task["done"] = True
        return ToolOutcome.ok({"completed": task["title"]})

    def list_tasks(self, params: Dict[str, Any]) -> ToolOutcome:
        return ToolOutcome.ok({"tasks": [t["title"] for t in self.tasks if not t["done"]]})

    def set_timer(self, params: Dict[str, Any]) -> ToolOutcome:
        label = params.get("label") or f"timer {len(self.timers) + 1}"
        self.timers.append({"label": label, "duration": params["duration"]})
        return ToolOutcome.ok({"label": label, "duration": params["duration"]})

    def cancel_timer(self, params: Dict[str, Any]) -> ToolOutcome:
        label = params.get("label")
        if not self.timers:
            return ToolOutcome.fail("No timer is running")
        if label is None:
            if len(self.timers) > 1:
                raise AmbiguousEntityError(
                    "Several timers are running", slot_name="label",
                    candidates=[t["label"] for t in self.timers],
                )
            cancelled = self.timers.pop()
        else:
            matches = [t for t in self.timers if t["label"] == label]
            if not matches:
                raise EntityNotFoundError(f"No timer labelled '{label}'", slot_name="label")
            cancelled = matches[0]
            self.timers.remove(cancelled)
        return ToolOutcome.ok({"cancelled": cancelled["label"]})

    def handlers(self) -> Dict[str, Any]:
        return {
            "task.create": self.create_task,
            "task.complete": self.complete_task,
            "task.list": self.list_tasks,
            "timer.set": self.set_timer,
            "timer.cancel": self.cancel_timer,
        }

    def context_providers(self) -> Dict[str, Any]:
        return {
            "task": lambda: {"tasks": [
                {"title": t["title"], "priority": t["priority"], "due": t["due"]}
                for t in self.tasks if not t["done"]
            ]},
            "timer": lambda: {"timers": [dict(t) for t in self.timers]},
        }


# ─────────────────────────────────────────────────────────────────────────────
# Setup
# ─────────────────────────────────────────────────────────────────────────────

def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
    )


def build_factory(config: AppConfig, catalog_path: str, workspace: DemoWorkspace) -> DispatcherFactory:
    embeddings = CachingEmbeddingProvider(
        MiniLMEmbeddingProvider(config.embeddings),
        max_entries=config.embeddings.cache_size,
    )
    catalog = load_catalog(catalog_path, embeddings)
    reasoning = OpenAICompatibleReasoningClient(config.reasoning)
    return DispatcherFactory.in_memory(
        config,
        catalog,
        embeddings,
        reasoning,
        handlers=workspace.handlers(),
        context_providers=workspace.context_providers(),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Rendering
# ─────────────────────────────────────────────────────────────────────────────

def render_result(result: DispatchResult, scores: Optional[Dict[str, float]] = None) -> None:
    if result.has_error:
        body = f"[bold]{result.error_type}[/bold]: {result.error}"
        if result.selected_namespace:
            body += f"\nnamespace: {result.selected_namespace}"
    else:
        body = result.llm_response or "(no response)"
        body += f"\n\n[dim]namespace: {result.selected_namespace}  turns: {result.turns}  " \
                f"confidence: {result.confidence:.3f}[/dim]"

    for call, tool_result in zip(result.tool_calls, result.tool_results):
        status = "[green]ok[/green]" if tool_result.success else \
            f"[red]{tool_result.failure.type.value}[/red]"
        body += f"\n  {call.tool_name}({json.dumps(call.params)}) -> {status}"

    if scores:
        ranked = ", ".join(f"{name}={score:.3f}" for name, score in scores.items())
        body += f"\n[dim]namespace scores: {ranked}[/dim]"

    console.print(Panel(body, border_style="red" if result.has_error else "magenta", padding=(0, 1)))


def render_state(state: Dict[str, Any]) -> None:
    table = Table(title=f"Attention state (version {state['version']}, "
                        f"{state['training_sample_count']} training samples)")
    table.add_column("target")
    table.add_column("threshold", justify="right")
    table.add_column("success rate", justify="right")
    table.add_column("keyword weights")

    targets = sorted(set(state["thresholds"]) | set(state["tool_success_rates"])
                     | set(state["tool_keyword_weights"]))
    for target in targets:
        threshold = state["thresholds"].get(target)
        rate = state["tool_success_rates"].get(target)
        weights = state["tool_keyword_weights"].get(target, {})
        table.add_row(
            target,
            f"{threshold:.3f}" if threshold is not None else "-",
            f"{rate:.3f}" if rate is not None else "-",
            ", ".join(f"{kw}={w:.2f}" for kw, w in weights.items()) or "-",
        )
    console.print(table)

    stats = state.get("execution_stats", {})
    if stats:
        console.print("[dim]execution: " + ", ".join(
            f"{tool} {s['successes']}ok/{s['failures']}fail" for tool, s in stats.items()
        ) + "[/dim]")


HELP_TEXT = (
    "/confirm             the last dispatch was right\n"
    "/deny                the last dispatch was wrong\n"
    "/correct ns [tool]   it should have been this namespace / tool\n"
    "/train               apply feedback of the last turn\n"
    "/state               show learned thresholds and rates\n"
    "quit, exit, bye"
)


# ─────────────────────────────────────────────────────────────────────────────
# Session
# ─────────────────────────────────────────────────────────────────────────────

def give_feedback(factory: DispatcherFactory, last: Dict[str, Any], action: str,
                  arg: Optional[str]) -> None:
    if not last:
        console.print("[red]Nothing dispatched yet[/red]")
        return

    corrected = None
    if action == "correct":
        if not arg:
            console.print("[red]Usage: /correct <namespace> [tool][/red]")
            return
        parts = arg.split()
        corrected = {"namespace": parts[0]}
        if len(parts) > 1:
            corrected["tool"] = parts[1]

    try:
        feedback = Feedback.create(last["invocation_id"], last["turn_id"], action, corrected)
    except InvalidCorrectionError as e:
        console.print(f"[red]{e}[/red]")
        return

    factory.feedback.save(feedback)
    console.print(f"[dim]Recorded {action} for turn {last['turn_id'][:8]}[/dim]")


def chat_loop(factory: DispatcherFactory) -> None:
    last: Dict[str, Any] = {}
    console.print(Panel(HELP_TEXT, title="Semantic dispatcher", border_style="cyan", padding=(0, 1)))

    while True:
        try:
            user_input = console.input("[cyan]>[/cyan] ").strip()
        except (KeyboardInterrupt, EOFError):
            console.print("\n[dim]Goodbye![/dim]")
            break

        if not user_input:
            continue
        if user_input.lower() in ("quit", "exit", "bye"):
            console.print("[dim]Goodbye![/dim]")
            break

        if user_input.startswith("/"):
            parts = user_input[1:].split(maxsplit=1)
            cmd = parts[0].lower() if parts else ""
            arg = parts[1].lower() if len(parts) > 1 else None

            if cmd == "help":
                console.print(Panel(HELP_TEXT, border_style="cyan", padding=(0, 1)))
            elif cmd in ("confirm", "deny", "correct"):
                give_feedback(factory, last, cmd, arg)
            elif cmd == "train":
                if not last:
                    console.print("[red]Nothing dispatched yet[/red]")
                    continue
                try:
                    report = factory.trainer.train_from_feedback(last["turn_id"])
                except AttentionConflictError as e:
                    console.print(f"[red]{e}[/red]")
                    continue
                console.print(Panel("\n".join(report.to_dict()["adjustments"]) or "no feedback for this turn",
                                    title="Training", border_style="green", padding=(0, 1)))
            elif cmd == "state":
                personality = factory.personalities.get_active()
                if personality is None:
                    console.print("[red]No active personality[/red]")
                    continue
                render_state(factory.trainer.get_adaptation_state(personality.id))
            else:
                console.print(f"[red]Unknown: /{cmd}[/red]")
            continue

        turn_id = str(uuid.uuid4())
        with console.status("dispatching..."):
            result = factory.dispatcher.handle_event(Event.create(user_input, source="cli", turn_id=turn_id))

        invocation = factory.invocations.get(result.invocation_id) if result.invocation_id else None
        render_result(result, dict(invocation.namespace_scores) if invocation else None)
        last = {"turn_id": turn_id, "invocation_id": result.invocation_id}


def one_shot(factory: DispatcherFactory, message: str) -> None:
    result = factory.dispatcher.handle_event(Event.create(message, source="cli"))
    print(json.dumps(result.to_dict(), indent=2, default=str))
    if result.has_error:
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(description="Semantic dispatcher chat")
    parser.add_argument("--headless", type=str, help="One-shot utterance; prints the result as JSON")
    parser.add_argument("--catalog", type=str, help="Catalog JSON (default from config)")
    parser.add_argument("--config", type=str, help="Config JSON file")
    args = parser.parse_args()

    config = load_config(args.config)
    configure_logging(config.log_level)

    workspace = DemoWorkspace()
    try:
        factory = build_factory(config, args.catalog or config.catalog_path, workspace)
    except Exception as e:
        console.print(f"[red]Failed to start dispatcher: {e}[/red]")
        sys.exit(1)

    try:
        if args.headless:
            one_shot(factory, args.headless)
        else:
            chat_loop(factory)
    finally:
        factory.cleanup()


if __name__ == "__main__":
    main()
