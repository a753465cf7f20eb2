"""Render documents and policy state to the terminal (Rich) or as JSON."""
from __future__ import annotations

import json
from typing import Iterable, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import Attachment, Effect, ManagedPolicy, PolicyDocument, Statement


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------

class TextFormatter:
    """Renders documents and policies using Rich for terminal output."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console(highlight=False)

    def render_document(self, document: PolicyDocument, title: Optional[str] = None) -> None:
        c = self.console

        if title:
            c.print(f"[bold]Policy:[/bold] {escape(title)}")
        c.print(f"[bold]Version:[/bold]    {document.version}")
        c.print(f"[bold]Statements:[/bold] {len(document.statements)}")
        c.print(f"[bold]Size:[/bold]       {document.size_bytes} bytes")
        c.print()

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("#", style="dim")
        table.add_column("Sid")
        table.add_column("Effect")
        table.add_column("Action")
        table.add_column("Resource / Principal")
        table.add_column("Condition", style="dim")
        for i, stmt in enumerate(document.statements):
            table.add_row(
                str(i),
                Text(stmt.sid or ""),
                Text(stmt.effect.value, style=_effect_style(stmt.effect)),
                Text(_actions_text(stmt)),
                Text(_target_text(stmt)),
                Text(", ".join(stmt.condition) if stmt.condition else ""),
            )
        c.print(table)

    def render_policy(
        self,
        policy: ManagedPolicy,
        arn: Optional[str] = None,
        attachments: Iterable[Attachment] = (),
    ) -> None:
        c = self.console

        c.print(f"[bold]Policy:[/bold] {escape(arn or policy.path + policy.name)}")
        if policy.description:
            c.print(f"[bold]Description:[/bold] {escape(policy.description)}")
        c.print()

        table = Table(
            title="Versions",
            show_header=True,
            header_style="bold",
            box=None,
            padding=(0, 2),
        )
        table.add_column("Version")
        table.add_column("Default")
        table.add_column("Statements")
        table.add_column("Created", style="dim")
        for version in policy.versions:
            table.add_row(
                version.version_id,
                Text("yes", style="bold green") if version.is_default else Text("no", style="dim"),
                str(len(version.document.statements)),
                version.created_at.isoformat(timespec="seconds"),
            )
        c.print(table)

        attachments = list(attachments)
        c.print()
        if not attachments:
            c.print("[bold]Attached to:[/bold] [dim](none)[/dim]")
            return
        lines = [f"{a.principal_kind.value}/{a.principal_name}" for a in attachments]
        c.print(Panel(Text("\n".join(lines)), title="[bold]Attached to[/bold]", expand=False))


class JsonFormatter:
    """Renders documents and policies as JSON to stdout."""

    def __init__(self, indent: int = 2) -> None:
        self.indent = indent

    def render_document(self, document: PolicyDocument, title: Optional[str] = None) -> None:
        print(document.to_json(indent=self.indent))

    def render_policy(
        self,
        policy: ManagedPolicy,
        arn: Optional[str] = None,
        attachments: Iterable[Attachment] = (),
    ) -> None:
        data = _policy_to_dict(policy, arn, attachments)
        print(json.dumps(data, indent=self.indent, default=str))


def get_formatter(
    output: str, console: Optional[Console] = None
) -> TextFormatter | JsonFormatter:
    """Factory: ``'text'`` → TextFormatter, ``'json'`` → JsonFormatter."""
    if output == "json":
        return JsonFormatter()
    return TextFormatter(console=console)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _effect_style(effect: Effect) -> str:
    return "green" if effect == Effect.ALLOW else "red"


def _actions_text(stmt: Statement) -> str:
    if stmt.not_actions:
        return "NOT " + ", ".join(stmt.not_actions)
    return ", ".join(stmt.actions)


def _target_text(stmt: Statement) -> str:
    parts: list[str] = []
    if stmt.resources:
        parts.append(", ".join(stmt.resources))
    if stmt.not_resources:
        parts.append("NOT " + ", ".join(stmt.not_resources))
    for label, principal in (("", stmt.principal), ("NOT ", stmt.not_principal)):
        if principal is None:
            continue
        if isinstance(principal, str):
            parts.append(f"{label}{principal}")
        else:
            for kind, ids in principal.items():
                parts.append(f"{label}{kind}: {', '.join(ids)}")
    return "\n".join(parts)


def _policy_to_dict(
    policy: ManagedPolicy,
    arn: Optional[str],
    attachments: Iterable[Attachment],
) -> dict:
    return {
        "arn": arn,
        "name": policy.name,
        "path": policy.path,
        "description": policy.description,
        "default_version_id": policy.default_version_id,
        "versions": [
            {
                "version_id": v.version_id,
                "is_default": v.is_default,
                "created_at": v.created_at.isoformat(),
                "document": v.document.to_dict(),
            }
            for v in policy.versions
        ],
        "attachments": [
            {"kind": a.principal_kind.value, "name": a.principal_name}
            for a in attachments
        ],
    }
