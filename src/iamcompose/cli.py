"""iamcompose CLI entry point."""

from __future__ import annotations

import logging
import sys

import boto3
import botocore.exceptions
import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from .composer import compose_policy
from .errors import PolicyError, ProvisioningError
from .formatters import get_formatter
from .manager import AttachmentRegistry
from .models import DEFAULT_LIMITS, Limits, PrincipalKind
from .roles import account_trust, assemble_trust_policy, federated_trust, service_trust
from .sync import apply_policy, load_attachments, sync_attachments

_OUTPUT_OPTION = click.option(
    "--output",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
    help="Output format.",
)


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v, -vv).")
def main(verbose: int) -> None:
    """Compose, validate and version AWS IAM policy documents.

    Exit code is 0 on success, 2 on validation or AWS errors.
    """
    _setup_logging(verbose)


@main.command()
@click.argument("name")
@click.argument("sources", nargs=-1, required=True, type=click.File("rb"))
@click.option("--path", default="/", show_default=True, help="IAM path for the policy.")
@click.option("--description", default="", help="Policy description.")
@click.option(
    "--max-size",
    type=click.IntRange(min=1),
    default=DEFAULT_LIMITS.max_policy_bytes,
    show_default=True,
    envvar="IAMCOMPOSE_MAX_POLICY_SIZE",
    help="Maximum serialized document size in bytes.",
)
@_OUTPUT_OPTION
def compose(name, sources, path, description, max_size, output) -> None:
    """Merge SOURCES (JSON files, '-' for stdin) into one policy NAME.

    Statements are concatenated in the order the files are given.
    """
    err = Console(stderr=True, highlight=False)
    limits = Limits(max_policy_bytes=max_size)
    try:
        document = compose_policy(
            name,
            path,
            description,
            [f.read() for f in sources],
            limits=limits,
            labels=[f.name for f in sources],
        )
    except PolicyError as exc:
        _print_policy_error(exc, err)
        sys.exit(2)

    formatter = get_formatter(output, console=Console(highlight=False))
    formatter.render_document(document, title=f"{path}{name}")


@main.command()
@click.option("--service", "services", multiple=True, help="Trusted service principal (repeatable).")
@click.option("--account", "accounts", multiple=True, help="Trusted account id or ARN (repeatable).")
@click.option("--external-id", default=None, help="Required sts:ExternalId for account principals.")
@click.option("--require-mfa", is_flag=True, help="Require MFA for account principals.")
@click.option("--federated", "providers", multiple=True, help="Trusted identity provider ARN (repeatable).")
@_OUTPUT_OPTION
def trust(services, accounts, external_id, require_mfa, providers, output) -> None:
    """Build a role trust (assume-role) policy document."""
    err = Console(stderr=True, highlight=False)
    sources: list[dict] = []
    if services:
        sources.append(service_trust(*services))
    if accounts:
        sources.append(
            account_trust(*accounts, external_id=external_id, require_mfa=require_mfa)
        )
    for provider in providers:
        sources.append(federated_trust(provider))

    try:
        document = assemble_trust_policy(sources)
    except PolicyError as exc:
        _print_policy_error(exc, err)
        sys.exit(2)

    formatter = get_formatter(output, console=Console(highlight=False))
    formatter.render_document(document, title="trust policy")


@main.command()
@click.argument("name")
@click.argument("sources", nargs=-1, required=True, type=click.File("rb"))
@click.option("--path", default="/", show_default=True, help="IAM path for the policy.")
@click.option("--description", default="", help="Policy description.")
@click.option("--attach-role", "roles", multiple=True, help="Role to attach to (repeatable).")
@click.option("--attach-user", "users", multiple=True, help="User to attach to (repeatable).")
@click.option("--attach-group", "groups", multiple=True, help="Group to attach to (repeatable).")
@click.option(
    "--exclusive/--no-exclusive",
    default=True,
    show_default=True,
    help="Detach principals not listed when any --attach-* option is given.",
)
@click.option(
    "--profile",
    default=None,
    envvar="AWS_PROFILE",
    help="AWS credentials profile name.",
)
@click.option(
    "--region",
    default=None,
    envvar="AWS_DEFAULT_REGION",
    help="AWS region.",
)
@_OUTPUT_OPTION
def apply(
    name, sources, path, description, roles, users, groups, exclusive, profile, region, output
) -> None:
    """Compose SOURCES and push them as the default version of policy NAME."""
    err = Console(stderr=True, highlight=False)

    # 1. Compose locally; nothing is sent unless the document validates
    try:
        document = compose_policy(
            name,
            path,
            description,
            [f.read() for f in sources],
            labels=[f.name for f in sources],
        )
    except PolicyError as exc:
        _print_policy_error(exc, err)
        sys.exit(2)

    # 2. Build boto3 session
    try:
        session = boto3.Session(profile_name=profile, region_name=region)
        iam = session.client("iam")
    except botocore.exceptions.ProfileNotFound as exc:
        err.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(2)

    # 3. Push the document and reconcile attachments
    desired = (
        [(PrincipalKind.ROLE, r) for r in roles]
        + [(PrincipalKind.USER, u) for u in users]
        + [(PrincipalKind.GROUP, g) for g in groups]
    )
    registry = AttachmentRegistry()
    try:
        policy, arn = apply_policy(
            name, document, iam, path=path, description=description
        )
        load_attachments(policy.name, arn, iam, registry)
        if desired:
            sync_attachments(policy, arn, desired, registry, iam, exclusive=exclusive)
    except PolicyError as exc:
        _print_policy_error(exc, err)
        sys.exit(2)
    except ProvisioningError as exc:
        _print_provisioning_error(exc, err)
        sys.exit(2)

    formatter = get_formatter(output, console=Console(highlight=False))
    formatter.render_policy(policy, arn=arn, attachments=registry.attachments(policy))


def _setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _print_policy_error(exc: PolicyError, console: Console) -> None:
    console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")


def _print_provisioning_error(exc: ProvisioningError, console: Console) -> None:
    if exc.error_code == "AccessDenied":
        console.print(f"[bold red]Access denied:[/bold red] {escape(str(exc))}")
        console.print(
            "[dim]iamcompose apply requires iam:CreatePolicy, iam:CreatePolicyVersion, "
            "iam:DeletePolicyVersion and iam:Attach*Policy permissions.[/dim]"
        )
    elif exc.error_code == "NoSuchEntity":
        console.print(f"[bold red]Not found:[/bold red] {escape(str(exc))}")
    else:
        console.print(f"[bold red]AWS error ({exc.error_code}):[/bold red] {escape(str(exc))}")
