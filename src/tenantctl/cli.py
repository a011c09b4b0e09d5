"""Typer-powered command line interface for ``tenantctl``.

Commands are thin: they resolve the acting principal, call one orchestrator
service and render the result with rich. Mutating services write their own
operation records; read commands are logged here. Typed errors are mapped onto
:class:`~tenantctl.exit_codes.ExitCode` values.
"""
from __future__ import annotations

import getpass
import textwrap
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import EMAIL_ENV_VAR, USER_ENV_VAR, ConfigError, load_config
from .domain import (
    Account,
    AccountCreationInfo,
    AccountStatus,
    Instance,
    Principal,
    ServicePlan,
    StorageProviderBinding,
    StorageProviderType,
)
from .errors import TenantCtlError
from .exit_codes import ExitCode
from .locking import LockTimeoutError
from .providers import ComputeProviderError, NotificationError
from .runtime import RuntimeContext, build_runtime
from .services import AvailabilityStatus, CancelToken
from .state import StateRegistryError

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    "-c",
    help="Path to an alternate configuration file.",
)
JSON_OPTION = typer.Option(False, "--json", help="Emit JSON instead of a table.")

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Subscription account and instance provisioning CLI.

        Manage accounts, their hosted instance, storage provider bindings and
        user invitations.
        """
    ).strip(),
)
account_app = typer.Typer(help="Create accounts and change their status.")
instance_app = typer.Typer(help="Provision and operate an account's instance.")
binding_app = typer.Typer(help="Manage storage provider bindings of an account.")
invitation_app = typer.Typer(help="Invite users to an account.")
version_app = typer.Typer(help="Manage the versions instances can be created with.")
config_app = typer.Typer(help="Inspect the resolved configuration.")

app.add_typer(account_app, name="account")
app.add_typer(instance_app, name="instance")
app.add_typer(binding_app, name="binding")
app.add_typer(invitation_app, name="invitation")
app.add_typer(version_app, name="version")
app.add_typer(config_app, name="config")


class CliState:
    """Per-invocation state stored on the typer context."""

    def __init__(self, runtime: RuntimeContext, principal: Principal) -> None:
        self.runtime = runtime
        self.principal = principal


def exit_code_for(exc: BaseException) -> ExitCode:
    """Return the exit code an error terminates the CLI with."""
    if isinstance(exc, TenantCtlError):
        return exc.exit_code
    if isinstance(exc, (ConfigError, LockTimeoutError, StateRegistryError)):
        return ExitCode.ENVIRONMENT
    return ExitCode.PROVIDER


_HANDLED_ERRORS = (
    TenantCtlError,
    ConfigError,
    LockTimeoutError,
    StateRegistryError,
    ComputeProviderError,
    NotificationError,
)


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except _HANDLED_ERRORS as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(exit_code_for(exc))) from exc


def _state(ctx: typer.Context) -> CliState:
    state = ctx.obj
    if not isinstance(state, CliState):  # pragma: no cover - set by the root callback
        raise typer.Exit(code=int(ExitCode.ENVIRONMENT))
    return state


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the tenantctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
    user: str | None = typer.Option(
        None,
        "--user",
        envvar=USER_ENV_VAR,
        help="Username the command acts on behalf of (defaults to the login name).",
    ),
    email: str | None = typer.Option(
        None,
        "--email",
        envvar=EMAIL_ENV_VAR,
        help="E-mail address of the acting user.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"tenantctl {__version__}")
        raise typer.Exit(code=0)

    overrides: dict[str, object] = {}
    if lock_timeout is not None:
        overrides["lock_timeout"] = lock_timeout
    with _handle_errors():
        config = load_config(config_file=config_file, overrides=overrides)
        runtime = build_runtime(config)
    principal = Principal(username=user or getpass.getuser(), email=email)
    ctx.obj = CliState(runtime, principal)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


# ----------------------------------------------------------------------
# Rendering helpers
# ----------------------------------------------------------------------
def _account_table(accounts: Sequence[Account]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="bold")
    table.add_column("Subdomain")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Plan")
    table.add_column("Instance")
    if not accounts:
        table.add_row("(none)", "", "", "", "", "")
    for account in accounts:
        table.add_row(
            str(account.id),
            account.subdomain,
            account.acct_name,
            account.status.value,
            account.service_plan.value,
            "" if account.instance_id is None else str(account.instance_id),
        )
    return table


def _mapping_table(values: Mapping[str, object]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in values.items():
        table.add_row(str(key), "" if value is None else str(value))
    return table


def _binding_table(bindings: Sequence[StorageProviderBinding]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="bold")
    table.add_column("Type")
    table.add_column("Primary")
    table.add_column("Username")
    table.add_column("Storage class")
    if not bindings:
        table.add_row("(none)", "", "", "", "")
    for binding in bindings:
        table.add_row(
            str(binding.id),
            binding.provider_type.value,
            "yes" if binding.primary else "no",
            binding.username,
            binding.storage_class,
        )
    return table


def _instance_summary(instance: Instance) -> str:
    return (
        f"instance {instance.id} (account {instance.account_id}, version {instance.version}) "
        f"is {instance.state.value}"
    )


# ----------------------------------------------------------------------
# account
# ----------------------------------------------------------------------
@account_app.command("create")
def account_create(
    ctx: typer.Context,
    subdomain: str = typer.Argument(..., help="Unique subdomain of the account."),
    name: str = typer.Option(..., "--name", help="Display name of the account."),
    org: str = typer.Option("", "--org", help="Organisation name."),
    department: str = typer.Option("", "--department", help="Department name."),
    plan: ServicePlan = typer.Option(ServicePlan.PROFESSIONAL, "--plan", help="Service plan."),
    primary_storage: StorageProviderType = typer.Option(
        StorageProviderType.AMAZON_S3,
        "--primary-storage",
        help="Storage provider of the primary binding.",
    ),
    secondary_storage: list[StorageProviderType] | None = typer.Option(
        None,
        "--secondary-storage",
        help="Additional storage provider (repeatable).",
    ),
) -> None:
    """Create a PENDING account owned by the acting user."""
    state = _state(ctx)
    info = AccountCreationInfo(
        subdomain=subdomain,
        acct_name=name,
        org_name=org,
        department=department,
        primary_storage_provider_type=primary_storage,
        secondary_storage_provider_types=tuple(secondary_storage or ()),
        service_plan=plan,
    )
    with _handle_errors():
        account = state.runtime.accounts.create_account(info, state.principal)
    console.print(
        f"Created account [bold]{account.id}[/bold] ({account.subdomain}) "
        f"with status {account.status.value}."
    )


@account_app.command("show")
def account_show(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show one account."""
    runtime = _state(ctx).runtime
    with _handle_errors(), runtime.logger.operation(
        "account show",
        args={"account_id": account_id, "json": json_output},
        target={"kind": "account", "id": account_id},
    ) as op:
        account = runtime.accounts.get_account(account_id)
        if json_output:
            console.print_json(data=account.to_dict())
        else:
            console.print(_mapping_table(account.to_dict()))
        op.success("Reported account.", changed=0)


@account_app.command("list")
def account_list(
    ctx: typer.Context,
    status: AccountStatus | None = typer.Option(None, "--status", help="Only list this status."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List accounts."""
    runtime = _state(ctx).runtime
    with _handle_errors(), runtime.logger.operation(
        "account list",
        args={"status": status, "json": json_output},
        target={"kind": "accounts"},
    ) as op:
        accounts = runtime.accounts.list_accounts(status)
        if json_output:
            console.print_json(data={"accounts": [account.to_dict() for account in accounts]})
        else:
            console.print(_account_table(accounts))
        op.success("Reported accounts.", changed=0, context={"count": len(accounts)})


@account_app.command("activate")
def account_activate(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    expected_counter: int | None = typer.Option(
        None,
        "--expected-counter",
        help="Fail unless the stored account counter still has this value.",
    ),
) -> None:
    """Activate a PENDING or INACTIVE account."""
    state = _state(ctx)
    with _handle_errors():
        account = state.runtime.accounts.activate(account_id, state.principal, expected_counter)
    console.print(f"Account {account.id} is now {account.status.value}.")


@account_app.command("deactivate")
def account_deactivate(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    expected_counter: int | None = typer.Option(
        None,
        "--expected-counter",
        help="Fail unless the stored account counter still has this value.",
    ),
) -> None:
    """Deactivate an ACTIVE account."""
    state = _state(ctx)
    with _handle_errors():
        account = state.runtime.accounts.deactivate(account_id, state.principal, expected_counter)
    console.print(f"Account {account.id} is now {account.status.value}.")


@account_app.command("cancel")
def account_cancel(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
) -> None:
    """Cancel an account that no longer has an instance."""
    state = _state(ctx)
    with _handle_errors():
        account = state.runtime.accounts.cancel_account(account_id, state.principal)
    console.print(f"Account {account.id} is now {account.status.value}.")


@account_app.command("users")
def account_users(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List users and their roles on an account."""
    runtime = _state(ctx).runtime
    with _handle_errors(), runtime.logger.operation(
        "account users",
        args={"account_id": account_id, "json": json_output},
        target={"kind": "account", "id": account_id},
    ) as op:
        users = runtime.accounts.list_users(account_id)
        if json_output:
            console.print_json(data={"users": [rights.to_dict() for rights in users]})
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("User", style="bold")
            table.add_column("Roles")
            if not users:
                table.add_row("(none)", "")
            for rights in users:
                table.add_row(rights.username, ", ".join(sorted(role.value for role in rights.roles)))
            console.print(table)
        op.success("Reported account users.", changed=0)


# ----------------------------------------------------------------------
# instance
# ----------------------------------------------------------------------
@instance_app.command("create")
def instance_create(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    version: str | None = typer.Option(None, "--version", help="Version (defaults to latest)."),
) -> None:
    """Provision the account's instance."""
    state = _state(ctx)
    with _handle_errors():
        instance = state.runtime.provisioner.create_instance(
            account_id, version, principal=state.principal
        )
    console.print(f"Created {_instance_summary(instance)}.")


@instance_app.command("status")
def instance_status(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Refresh and report the account's instance status."""
    runtime = _state(ctx).runtime
    with _handle_errors(), runtime.logger.operation(
        "instance status",
        args={"account_id": account_id, "json": json_output},
        target={"kind": "account", "id": account_id},
    ) as op:
        result = runtime.poller.check(account_id)
        if json_output:
            console.print_json(data=result.to_dict())
        elif result.instance is None:
            console.print(f"Account {account_id} has no instance.")
        else:
            console.print(f"{_instance_summary(result.instance)} ({result.status.value}).")
        op.success("Reported instance status.", changed=0, context={"status": result.status})


@instance_app.command("wait")
def instance_wait(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    deadline: float | None = typer.Option(None, "--deadline", help="Seconds to wait in total."),
    interval: float | None = typer.Option(None, "--interval", help="Seconds between attempts."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Wait until the account's instance is ready (Ctrl-C cancels)."""
    runtime = _state(ctx).runtime
    token = CancelToken()
    with _handle_errors(), runtime.logger.operation(
        "instance wait",
        args={"account_id": account_id, "deadline": deadline, "interval": interval},
        target={"kind": "account", "id": account_id},
    ) as op:
        future = runtime.poller.submit(account_id, deadline=deadline, interval=interval, cancel=token)
        try:
            try:
                result = future.result()
            except KeyboardInterrupt:
                token.cancel()
                result = future.result()
        finally:
            runtime.poller.shutdown(wait=False)

        if json_output:
            console.print_json(data=result.to_dict())
        else:
            console.print(
                f"Account {account_id}: {result.status.value} after {result.attempts} attempt(s)."
            )
        context = {"status": result.status, "attempts": result.attempts}
        if result.status is AvailabilityStatus.READY:
            op.success("Instance is ready.", changed=0, context=context)
            return
        op.warning(f"Instance not ready: {result.status.value}.", context=context)
    raise typer.Exit(code=int(ExitCode.PROVIDER))


@instance_app.command("stop")
def instance_stop(
    ctx: typer.Context,
    instance_id: int = typer.Argument(..., help="Instance id."),
) -> None:
    """Stop and remove an instance."""
    state = _state(ctx)
    with _handle_errors():
        state.runtime.provisioner.stop(instance_id, principal=state.principal)
    console.print(f"Instance {instance_id} stopped.")


@instance_app.command("restart")
def instance_restart(
    ctx: typer.Context,
    instance_id: int = typer.Argument(..., help="Instance id."),
) -> None:
    """Restart a RUNNING instance."""
    state = _state(ctx)
    with _handle_errors():
        instance = state.runtime.provisioner.restart(instance_id, principal=state.principal)
    console.print(f"Restart requested; {_instance_summary(instance)}.")


@instance_app.command("reinit")
def instance_reinit(
    ctx: typer.Context,
    instance_id: int = typer.Argument(..., help="Instance id."),
) -> None:
    """Push the full configuration to a RUNNING instance."""
    runtime = _state(ctx).runtime
    with _handle_errors():
        runtime.provisioner.re_initialize(instance_id)
    console.print(f"Configuration pushed to instance {instance_id}.")


@instance_app.command("reinit-users")
def instance_reinit_users(
    ctx: typer.Context,
    instance_id: int = typer.Argument(..., help="Instance id."),
) -> None:
    """Push user roles to a RUNNING instance."""
    runtime = _state(ctx).runtime
    with _handle_errors():
        runtime.provisioner.re_initialize_user_roles(instance_id)
    console.print(f"User roles pushed to instance {instance_id}.")


@instance_app.command("upgrade")
def instance_upgrade(
    ctx: typer.Context,
    instance_id: int = typer.Argument(..., help="Instance id."),
) -> None:
    """Replace an instance with one running the latest version."""
    state = _state(ctx)
    with _handle_errors():
        instance = state.runtime.provisioner.upgrade(instance_id, principal=state.principal)
    console.print(f"Upgraded; {_instance_summary(instance)}.")


@instance_app.command("versions")
def instance_versions(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """List versions available for new instances."""
    runtime = _state(ctx).runtime
    with _handle_errors(), runtime.logger.operation(
        "instance versions",
        args={"json": json_output},
        target={"kind": "versions"},
    ) as op:
        versions = runtime.provisioner.versions()
        latest = runtime.provisioner.latest_version()
        if json_output:
            console.print_json(data={"versions": versions, "latest": latest})
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Version", style="bold")
            table.add_column("Latest")
            if not versions:
                table.add_row("(none)", "")
            for item in versions:
                table.add_row(item, "yes" if item == latest else "")
            console.print(table)
        op.success("Reported versions.", changed=0, context={"count": len(versions)})


# ----------------------------------------------------------------------
# version
# ----------------------------------------------------------------------
@version_app.command("show")
def version_show(
    ctx: typer.Context,
    version: str = typer.Argument(..., help="Version identifier."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show catalog details for a version."""
    runtime = _state(ctx).runtime
    with _handle_errors(), runtime.logger.operation(
        "version show",
        args={"version": version, "json": json_output},
        target={"kind": "version", "id": version},
    ) as op:
        entry = runtime.provisioner.describe_version(version)
        if json_output:
            console.print_json(data=entry)
        else:
            console.print(_mapping_table(entry))
        op.success("Reported version.", changed=0)


@version_app.command("add")
def version_add(
    ctx: typer.Context,
    version: str = typer.Argument(..., help="Version identifier."),
    image: str | None = typer.Option(None, "--image", help="Image or artifact the version runs."),
    notes: str | None = typer.Option(None, "--notes", help="Free-form release notes."),
) -> None:
    """Register a version for new instances (updates it if already registered)."""
    state = _state(ctx)
    with _handle_errors():
        entry = state.runtime.provisioner.register_version(
            version, image=image, notes=notes, principal=state.principal
        )
    console.print(f"Registered version {entry['version']}.")


@version_app.command("remove")
def version_remove(
    ctx: typer.Context,
    version: str = typer.Argument(..., help="Version identifier."),
) -> None:
    """Remove a registered version no instance is running."""
    state = _state(ctx)
    with _handle_errors():
        state.runtime.provisioner.remove_version(version, principal=state.principal)
    console.print(f"[yellow]Removed version {version.strip()}.[/yellow]")


# ----------------------------------------------------------------------
# binding
# ----------------------------------------------------------------------
@binding_app.command("add")
def binding_add(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    provider_type: StorageProviderType = typer.Argument(..., help="Storage provider type."),
) -> None:
    """Bind a new storage provider account."""
    runtime = _state(ctx).runtime
    with _handle_errors():
        binding_id = runtime.bindings.add_binding(account_id, provider_type)
    console.print(f"Added storage binding {binding_id} to account {account_id}.")


@binding_app.command("remove")
def binding_remove(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    binding_id: int = typer.Argument(..., help="Binding id."),
) -> None:
    """Remove a storage binding."""
    runtime = _state(ctx).runtime
    with _handle_errors():
        runtime.bindings.remove_binding(account_id, binding_id)
    console.print(f"Removed storage binding {binding_id} from account {account_id}.")


@binding_app.command("set-primary")
def binding_set_primary(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    binding_id: int = typer.Argument(..., help="Binding id."),
) -> None:
    """Make a secondary binding the primary one."""
    runtime = _state(ctx).runtime
    with _handle_errors():
        runtime.bindings.set_primary(account_id, binding_id)
    console.print(f"Storage binding {binding_id} is now primary for account {account_id}.")


@binding_app.command("primary")
def binding_primary(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the primary storage binding."""
    runtime = _state(ctx).runtime
    with _handle_errors(), runtime.logger.operation(
        "binding primary",
        args={"account_id": account_id, "json": json_output},
        target={"kind": "account", "id": account_id},
    ) as op:
        binding = runtime.bindings.get_primary(account_id)
        if json_output:
            console.print_json(data=binding.to_dict())
        else:
            console.print(_binding_table([binding]))
        op.success("Reported primary binding.", changed=0)


@binding_app.command("secondaries")
def binding_secondaries(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List secondary storage bindings."""
    runtime = _state(ctx).runtime
    with _handle_errors(), runtime.logger.operation(
        "binding secondaries",
        args={"account_id": account_id, "json": json_output},
        target={"kind": "account", "id": account_id},
    ) as op:
        bindings = runtime.bindings.get_secondaries(account_id)
        if json_output:
            console.print_json(data={"bindings": [binding.to_dict() for binding in bindings]})
        else:
            console.print(_binding_table(bindings))
        op.success("Reported secondary bindings.", changed=0, context={"count": len(bindings)})


@binding_app.command("credentials")
def binding_credentials(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    binding_id: int = typer.Argument(..., help="Binding id."),
    username: str = typer.Option(..., "--username", help="Storage provider username."),
    password: str = typer.Option(
        ...,
        "--password",
        prompt=True,
        hide_input=True,
        help="Storage provider password (prompted when omitted).",
    ),
    rrs: bool | None = typer.Option(
        None,
        "--rrs/--no-rrs",
        help="Use reduced redundancy storage (unchanged when omitted).",
    ),
) -> None:
    """Set the credentials of a storage binding."""
    runtime = _state(ctx).runtime
    with _handle_errors():
        binding = runtime.bindings.set_credentials(
            account_id, binding_id, username=username, password=password, rrs=rrs
        )
    console.print(
        f"Credentials stored for storage binding {binding.id} of account {account_id} "
        f"(storage class {binding.storage_class})."
    )


# ----------------------------------------------------------------------
# invitation
# ----------------------------------------------------------------------
@invitation_app.command("send")
def invitation_send(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    email: str = typer.Argument(..., help="Address to invite."),
    days: int | None = typer.Option(None, "--days", help="Days until the invitation expires."),
) -> None:
    """Invite a user to an account."""
    state = _state(ctx)
    with _handle_errors():
        invitation = state.runtime.invitations.invite(
            account_id, email, days, principal=state.principal
        )
    console.print(
        f"Invitation {invitation.id} sent to {invitation.user_email}; "
        f"expires {invitation.expiration_date.isoformat()}."
    )


@invitation_app.command("list")
def invitation_list(
    ctx: typer.Context,
    account_id: int = typer.Argument(..., help="Account id."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List pending invitations of an account."""
    runtime = _state(ctx).runtime
    with _handle_errors(), runtime.logger.operation(
        "invitation list",
        args={"account_id": account_id, "json": json_output},
        target={"kind": "account", "id": account_id},
    ) as op:
        invitations = runtime.invitations.list_pending(account_id)
        if json_output:
            console.print_json(
                data={"invitations": [invitation.to_dict() for invitation in invitations]}
            )
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("ID", style="bold")
            table.add_column("E-mail")
            table.add_column("Expires")
            if not invitations:
                table.add_row("(none)", "", "")
            for invitation in invitations:
                table.add_row(
                    str(invitation.id),
                    invitation.user_email,
                    invitation.expiration_date.isoformat(),
                )
            console.print(table)
        op.success("Reported invitations.", changed=0, context={"count": len(invitations)})


@invitation_app.command("delete")
def invitation_delete(
    ctx: typer.Context,
    invitation_id: int = typer.Argument(..., help="Invitation id."),
) -> None:
    """Delete an invitation."""
    runtime = _state(ctx).runtime
    with _handle_errors():
        runtime.invitations.delete_invitation(invitation_id)
    console.print(f"Invitation {invitation_id} deleted.")


@invitation_app.command("redeem")
def invitation_redeem(
    ctx: typer.Context,
    code: str = typer.Argument(..., help="Redemption code from the invitation."),
) -> None:
    """Redeem an invitation as the acting user."""
    state = _state(ctx)
    with _handle_errors():
        rights = state.runtime.invitations.redeem(code, state.principal)
    roles = ", ".join(sorted(role.value for role in rights.roles))
    console.print(f"{rights.username} joined account {rights.account_id} ({roles}).")


# ----------------------------------------------------------------------
# config
# ----------------------------------------------------------------------
@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the merged configuration."""
    runtime = _state(ctx).runtime
    with _handle_errors(), runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        data = runtime.config.to_dict()
        if json_output:
            console.print_json(data=data)
        else:
            console.print(_mapping_table(data))
        op.success("Reported configuration.", changed=0)


def main() -> None:  # pragma: no cover - thin wrapper for console_scripts
    """Console script entry point."""
    app()


__all__ = ["app", "exit_code_for", "main"]
