"""keystone-sync commands.

Commands:
    keystone-sync apply <manifest.yaml> [--dry-run]
    keystone-sync plan <manifest.yaml>
    keystone-sync expand <manifest.yaml>
    keystone-sync list <kind>
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer

from keystone_sync.cache import LISTINGS, InstanceCache
from keystone_sync.credentials import Credentials, resolve_credentials
from keystone_sync.errors import (
    AuthError,
    ConfigError,
    ExitCode,
    KeystoneSyncError,
    as_exit_code,
)
from keystone_sync.executor import CommandExecutor
from keystone_sync.logs import configure_logging
from keystone_sync.manifest import Manifest
from keystone_sync.models import canonical_kind
from keystone_sync.reconcile import SECRET_ATTRIBUTES, Catalog, Reconciler, build_catalog

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="keystone-sync",
    help="Reconcile OpenStack identity objects with a declared manifest",
    add_completion=False,
)


# Shared options
ManifestArg = Annotated[
    Path,
    typer.Argument(
        help="Path to the manifest YAML file",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
]
AuthUrlOpt = Annotated[
    Optional[str], typer.Option("--os-auth-url", help="Identity service URL")
]
UsernameOpt = Annotated[
    Optional[str], typer.Option("--os-username", help="Admin user name")
]
PasswordOpt = Annotated[
    Optional[str], typer.Option("--os-password", help="Admin user password")
]
ProjectOpt = Annotated[
    Optional[str], typer.Option("--os-project-name", help="Project to scope to")
]
UserDomainOpt = Annotated[
    Optional[str], typer.Option("--os-user-domain-name", help="Domain of the admin user")
]
ProjectDomainOpt = Annotated[
    Optional[str], typer.Option("--os-project-domain-name", help="Domain of the scope project")
]
ApiVersionOpt = Annotated[
    Optional[str],
    typer.Option("--os-identity-api-version", help="Force identity API version (2 or 3)"),
]
RcFileOpt = Annotated[
    Optional[Path],
    typer.Option("--rc-file", help="openrc file used for settings still unset"),
]
VerboseOpt = Annotated[
    bool, typer.Option("--verbose", "-v", help="Enable verbose output")
]


def _configure_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    configure_logging("DEBUG" if verbose else None)


def _fail(message: str, exc: BaseException) -> typer.Exit:
    typer.secho(f"{message}: {exc}", fg=typer.colors.RED, err=True)
    return typer.Exit(as_exit_code(exc))


def _build_credentials(
    auth_url: str | None,
    username: str | None,
    password: str | None,
    project_name: str | None,
    user_domain_name: str | None,
    project_domain_name: str | None,
    identity_api_version: str | None,
    rc_file: Path | None,
) -> Credentials:
    """Build credentials from CLI overrides, the environment and an openrc file."""
    try:
        return resolve_credentials(
            overrides={
                "auth_url": auth_url,
                "username": username,
                "password": password,
                "project_name": project_name,
                "user_domain_name": user_domain_name,
                "project_domain_name": project_domain_name,
                "identity_api_version": identity_api_version,
            },
            rc_file=rc_file,
        )
    except ConfigError as e:
        raise _fail("Credential error", e)


def _load_catalog(manifest_path: Path) -> Catalog:
    try:
        manifest = Manifest.from_yaml(manifest_path)
        catalog = build_catalog(manifest)
    except ConfigError as e:
        raise _fail("Error loading manifest", e)

    for address, message in catalog.rejected:
        typer.secho(f"Rejected {address}: {message}", fg=typer.colors.YELLOW, err=True)
    return catalog


def _reconcile(catalog: Catalog, credentials: Credentials, dry_run: bool) -> None:
    executor = CommandExecutor(credentials)
    cache = InstanceCache(executor)

    typer.echo(f"Reconciling {len(catalog)} resources against {credentials.auth_url}")
    try:
        result = Reconciler(executor, cache, credentials, dry_run=dry_run).run(catalog)
    except AuthError as e:
        raise _fail("Authentication failed", e)
    except KeystoneSyncError as e:
        raise _fail("Error", e)

    typer.echo("\n" + result.summary())
    if dry_run:
        typer.secho("\n[DRY RUN] No changes applied", fg=typer.colors.YELLOW)

    if not result.success:
        raise typer.Exit(int(ExitCode.FAILURE))


@app.command("apply")
def apply(
    manifest_path: ManifestArg,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would be done without making changes"),
    ] = False,
    os_auth_url: AuthUrlOpt = None,
    os_username: UsernameOpt = None,
    os_password: PasswordOpt = None,
    os_project_name: ProjectOpt = None,
    os_user_domain_name: UserDomainOpt = None,
    os_project_domain_name: ProjectDomainOpt = None,
    os_identity_api_version: ApiVersionOpt = None,
    rc_file: RcFileOpt = None,
    verbose: VerboseOpt = False,
) -> None:
    """Converge the identity service to the manifest.

    Running it twice in a row is a no-op the second time.

    Example:
        keystone-sync apply identities.yaml --dry-run
    """
    _configure_logging(verbose)
    catalog = _load_catalog(manifest_path)
    credentials = _build_credentials(
        os_auth_url,
        os_username,
        os_password,
        os_project_name,
        os_user_domain_name,
        os_project_domain_name,
        os_identity_api_version,
        rc_file,
    )
    _reconcile(catalog, credentials, dry_run)


@app.command("plan")
def plan(
    manifest_path: ManifestArg,
    os_auth_url: AuthUrlOpt = None,
    os_username: UsernameOpt = None,
    os_password: PasswordOpt = None,
    os_project_name: ProjectOpt = None,
    os_user_domain_name: UserDomainOpt = None,
    os_project_domain_name: ProjectDomainOpt = None,
    os_identity_api_version: ApiVersionOpt = None,
    rc_file: RcFileOpt = None,
    verbose: VerboseOpt = False,
) -> None:
    """Show what apply would change (same as apply --dry-run)."""
    _configure_logging(verbose)
    catalog = _load_catalog(manifest_path)
    credentials = _build_credentials(
        os_auth_url,
        os_username,
        os_password,
        os_project_name,
        os_user_domain_name,
        os_project_domain_name,
        os_identity_api_version,
        rc_file,
    )
    _reconcile(catalog, credentials, dry_run=True)


@app.command("expand")
def expand(manifest_path: ManifestArg) -> None:
    """Print the validated, ordered catalog without contacting the cloud."""
    catalog = _load_catalog(manifest_path)

    for resource in catalog.resources:
        attrs = ", ".join(
            f"{k}=********" if k in SECRET_ATTRIBUTES else f"{k}={v!r}"
            for k, v in resource.declared().items()
        )
        typer.echo(f"{resource.address} ensure={resource.ensure.value} {attrs}".rstrip())

    typer.echo(f"\n{len(catalog)} resources")
    if catalog.rejected:
        raise typer.Exit(int(ExitCode.CONFIG_ERROR))


@app.command("list")
def list_instances(
    kind: Annotated[str, typer.Argument(help="Resource kind (domain, project, role, ...)")],
    os_auth_url: AuthUrlOpt = None,
    os_username: UsernameOpt = None,
    os_password: PasswordOpt = None,
    os_project_name: ProjectOpt = None,
    os_user_domain_name: UserDomainOpt = None,
    os_project_domain_name: ProjectDomainOpt = None,
    os_identity_api_version: ApiVersionOpt = None,
    rc_file: RcFileOpt = None,
    verbose: VerboseOpt = False,
) -> None:
    """List the remote instances of one kind."""
    _configure_logging(verbose)
    try:
        kind = canonical_kind(kind)
    except ConfigError as e:
        raise _fail("Error", e)
    if kind not in LISTINGS:
        typer.secho(f"Kind {kind} cannot be listed", fg=typer.colors.RED, err=True)
        raise typer.Exit(int(ExitCode.CONFIG_ERROR))

    credentials = _build_credentials(
        os_auth_url,
        os_username,
        os_password,
        os_project_name,
        os_user_domain_name,
        os_project_domain_name,
        os_identity_api_version,
        rc_file,
    )
    executor = CommandExecutor(credentials)
    try:
        credentials.token(executor)
        instances = InstanceCache(executor).instances(kind)
    except KeystoneSyncError as e:
        raise _fail("Error", e)

    for inst in instances:
        extra = " ".join(f"{k}={v}" for k, v in sorted(inst.extra.items()))
        typer.echo(f"{inst.id}  {inst.name or '-'}  {inst.domain_id or '-'}  {extra}".rstrip())
