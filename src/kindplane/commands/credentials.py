"""Provider credential commands.

Implements `kindplane credentials configure` and `kindplane credentials list`.
When run in a terminal without ``--source``, configure asks for the source
and any missing secret fields interactively.
"""

from __future__ import annotations

import sys

import click
import questionary

from ..bootstrap import BootstrapContext
from ..bootstrap.credentials import BACKENDS, CredentialBackend, get_backend, source_for
from ..decorators import get_config, handle_errors, is_json
from ..errors import MalformedOverrideError
from ..formatters import print_credential_record, print_credentials, print_json

# Material sources each backend accepts, default first
BACKEND_SOURCES = {
    "aws": ("env", "profile", "explicit"),
    "azure": ("env", "explicit"),
    "kubernetes": ("kubeconfig", "incluster", "explicit"),
}

ALL_SOURCES = ("env", "profile", "explicit", "kubeconfig", "incluster")


def _is_interactive() -> bool:
    return sys.stdin.isatty()


def parse_fields(pairs: tuple[str, ...]) -> dict[str, str]:
    """Parse ``--set KEY=VALUE`` credential fields.

    Raises:
        MalformedOverrideError: A pair has no ``=`` or an empty key.
    """
    fields = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise MalformedOverrideError(pair, "expected key=value")
        if not key.strip():
            raise MalformedOverrideError(pair, "empty key")
        fields[key.strip()] = value
    return fields


def _prompt_source(backend: CredentialBackend) -> str:
    source = questionary.select(
        f"Where should {backend.name} credentials come from?",
        choices=list(BACKEND_SOURCES[backend.name]),
    ).ask()
    if source is None:
        raise click.Abort()
    return source


def _prompt_missing_fields(backend: CredentialBackend, fields: dict[str, str]) -> dict[str, str]:
    for name in backend.required_fields:
        if fields.get(name):
            continue
        value = questionary.password(f"{name}:").ask()
        if value is None:
            raise click.Abort()
        fields[name] = value
    return fields


@click.group()
def credentials() -> None:
    """Manage provider credentials."""
    pass


@credentials.command("configure")
@click.argument("backend", type=click.Choice(sorted(BACKENDS)))
@click.option("--source", type=click.Choice(ALL_SOURCES), default=None, help="Where to read the credentials from")
@click.option("--profile", default=None, help="AWS profile (profile source)")
@click.option("--path", "file_path", type=click.Path(), default=None, help="Credentials or kubeconfig file")
@click.option("--set", "fields", multiple=True, help="Credential field KEY=VALUE (explicit source)")
@click.pass_context
@handle_errors
def credentials_configure(
    ctx: click.Context,
    backend: str,
    source: str | None,
    profile: str | None,
    file_path: str | None,
    fields: tuple[str, ...],
) -> None:
    """Create or update the Secret and ProviderConfig for BACKEND.

    Examples:

        # AWS keys from AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY
        kindplane credentials configure aws --source env

        # A named profile from ~/.aws/credentials
        kindplane credentials configure aws --source profile --profile dev

        # provider-kubernetes using its own service account
        kindplane credentials configure kubernetes --source incluster
    """
    config = get_config(ctx)
    spec = get_backend(backend)
    values = parse_fields(fields)

    if source is None:
        if values:
            source = "explicit"
        elif _is_interactive() and not is_json(ctx):
            source = _prompt_source(spec)
        else:
            source = config.credentials.configured_backends().get(backend) or BACKEND_SOURCES[backend][0]

    if source not in BACKEND_SOURCES[backend]:
        raise click.BadParameter(
            f"{source!r} is not a source for {backend} (choose from {', '.join(BACKEND_SOURCES[backend])})",
            param_hint="--source",
        )

    if source == "explicit" and _is_interactive() and not is_json(ctx):
        values = _prompt_missing_fields(spec, values)
    if source == "profile" and profile is None:
        profile = config.credentials.aws_profile

    material = source_for(source, profile=profile, values=values, path=file_path)
    record = BootstrapContext.for_config(config).credentials.configure(spec, material)

    if is_json(ctx):
        print_json(record.to_dict())
    else:
        print_credential_record(record)


@credentials.command("list")
@click.argument("backend", type=click.Choice(sorted(BACKENDS)), required=False)
@click.pass_context
@handle_errors
def credentials_list(ctx: click.Context, backend: str | None) -> None:
    """Show which credentials are configured on the cluster."""
    config = get_config(ctx)
    records = BootstrapContext.for_config(config).credentials.list_credentials(backend)

    if is_json(ctx):
        print_json([r.to_dict() for r in records])
    else:
        print_credentials(records)
