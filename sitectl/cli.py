"""
Command line interface for sitectl.
"""

import sys
from collections import deque
from collections.abc import Callable
from pathlib import Path

import click
from pydantic import ValidationError

from . import __version__
from .app import AppContext
from .certificates import CertificateRequest
from .console import console_manager
from .domains import is_valid_domain
from .logutil import init_logging, logger
from .registry import SiteRegistry
from .types import Error, ErrorKind, Result, SiteState, Success
from .utils import handle_exception

DEFAULT_LOG_LINES = 50


def handle_result(result: Result, exit_on_error: bool = True) -> None:
    """Print a command result and exit with its status."""
    exit_code = 0
    if isinstance(result, Success):
        if result.message:
            console_manager.print_success(result.message)
    elif isinstance(result, Error):
        console_manager.print_error(result.error)
        if result.recovery_suggestions:
            console_manager.print_note(result.recovery_suggestions)
        if result.exception is not None:
            logger.debug("Underlying exception: %r", result.exception)
        exit_code = result.exit_code
        logger.debug("Error result (%s), exit code %d", result.kind.value, exit_code)

    if exit_on_error:
        sys.exit(exit_code)


@click.group()
@click.version_option(version=__version__, prog_name="sitectl")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Manage nginx sites and their TLS certificates."""
    ctx.ensure_object(AppContext)


@cli.command()
@click.argument("domain")
@click.option("--yes", "-y", is_flag=True, help="Overwrite an existing site without asking")
@click.pass_obj
def add(app: AppContext, domain: str, yes: bool) -> None:
    """Create a new HTTP-only website."""
    handle_result(_add_site(app, domain, yes))


def _add_site(app: AppContext, domain: str, assume_yes: bool) -> Result:
    if not is_valid_domain(domain):
        return Error(error=f"Invalid domain: {domain}", kind=ErrorKind.USAGE)
    resolved = app.web_backend()
    if isinstance(resolved, Error):
        return resolved
    web = resolved.data
    registry = app.registry(web)
    site = registry.site(domain)

    overwrite = False
    if site.state != SiteState.ABSENT:
        console_manager.print_warning(f"Website {site.domain} already exists!")
        if not assume_yes and not click.confirm("Overwrite?", default=False):
            console_manager.print_processing("Cancelled")
            return Success()
        overwrite = True

    result = registry.create(domain, overwrite=overwrite)
    if isinstance(result, Success):
        console_manager.print_success(result.message)
        console_manager.print_processing(f"Website files: {site.html_dir}")
        console_manager.print_processing(f"Configuration: {site.config_path}")
        console_manager.print_processing(
            f"Next step, enable HTTPS: sitectl ssl {site.domain}"
        )
        return Success()
    return result


@cli.command()
@click.argument("domain")
@click.option("--with-www", is_flag=True, help="Also cover www.<domain>")
@click.option(
    "--extra",
    "-e",
    default=None,
    help="Comma-separated extra names; bare labels become subdomains of <domain>",
)
@click.option(
    "--wildcard",
    "-w",
    is_flag=True,
    help="Issue <domain> + *.<domain> via DNS validation (Cloudflare)",
)
@click.option(
    "--server",
    "-s",
    "provider",
    default=None,
    help="ACME server (letsencrypt|zerossl|google|buypass)",
)
@click.option(
    "--reissue",
    is_flag=True,
    help="Request a new certificate even if a previous run already issued one",
)
@click.pass_obj
def ssl(
    app: AppContext,
    domain: str,
    with_www: bool,
    extra: str | None,
    wildcard: bool,
    provider: str | None,
    reissue: bool,
) -> None:
    """Issue a certificate for a website and switch it to HTTPS.

    \b
    Examples:
      sitectl ssl api.example.com                 # Single domain only
      sitectl ssl example.com --with-www          # example.com + www.example.com
      sitectl ssl example.com --extra www,cdn,api # example.com + 3 subdomains
      sitectl ssl example.com --wildcard          # example.com + *.example.com
      sitectl ssl example.com --server buypass    # BuyPass (180-day validity)
    """
    handle_result(
        _add_ssl(
            app,
            domain,
            with_www=with_www,
            extra=extra,
            wildcard=wildcard,
            provider=provider,
            reissue=reissue,
        )
    )


def _add_ssl(
    app: AppContext,
    domain: str,
    with_www: bool = False,
    extra: str | None = None,
    wildcard: bool = False,
    provider: str | None = None,
    reissue: bool = False,
) -> Result:
    try:
        request = CertificateRequest(
            domain=domain,
            with_www=with_www,
            extra_names=extra,
            wildcard=wildcard,
            provider=provider,
            reissue=reissue,
        )
    except ValidationError as e:
        messages = [err["msg"].removeprefix("Value error, ") for err in e.errors()]
        return Error(error="; ".join(messages), kind=ErrorKind.USAGE)

    resolved = app.web_backend()
    if isinstance(resolved, Error):
        return resolved
    return app.engine(resolved.data).issue(request)


@cli.command()
@click.argument("domain")
@click.pass_obj
def enable(app: AppContext, domain: str) -> None:
    """Enable a disabled website."""
    handle_result(_with_registry(app, lambda registry: registry.enable(domain)))


@cli.command()
@click.argument("domain")
@click.pass_obj
def disable(app: AppContext, domain: str) -> None:
    """Disable a website without deleting it."""
    handle_result(_with_registry(app, lambda registry: registry.disable(domain)))


def _with_registry(
    app: AppContext, operation: Callable[[SiteRegistry], Result]
) -> Result:
    resolved = app.web_backend()
    if isinstance(resolved, Error):
        return resolved
    return operation(app.registry(resolved.data))


@click.command()
@click.argument("domain")
@click.option(
    "--confirm",
    "confirmation",
    default=None,
    help="Confirmation word, for non-interactive use",
)
@click.pass_obj
def delete(app: AppContext, domain: str, confirmation: str | None) -> None:
    """Delete a website (a backup is kept)."""
    handle_result(_delete_site(app, domain, confirmation))


def _delete_site(app: AppContext, domain: str, confirmation: str | None) -> Result:
    if not is_valid_domain(domain):
        return Error(error=f"Invalid domain: {domain}", kind=ErrorKind.USAGE)
    resolved = app.web_backend()
    if isinstance(resolved, Error):
        return resolved
    registry = app.registry(resolved.data)
    site = registry.site(domain)
    if site.state == SiteState.ABSENT:
        return Error(
            error=f"Website {site.domain} does not exist",
            kind=ErrorKind.PRECONDITION,
        )

    expected = str(app.config.get("safety.delete_confirmation", "yes"))
    console_manager.print_warning(f"About to delete website: {site.domain}")
    console_manager.print_warning(
        "This will delete the following files and directories:"
    )
    console_manager.print_bullets(str(path) for path in registry.deletion_targets(domain))
    if confirmation is None:
        confirmation = click.prompt(
            f"Confirm deletion? Type '{expected}' to continue",
            default="",
            show_default=False,
        )

    result = registry.delete(domain, confirmation, expected=expected)
    if isinstance(result, Success):
        console_manager.print_success(result.message)
        console_manager.print_processing(f"Backup saved at: {result.data}")
        return Success()
    return result


cli.add_command(delete)
cli.add_command(delete, name="remove")
cli.add_command(delete, name="rm")


@click.command(name="list")
@click.pass_obj
def list_sites(app: AppContext) -> None:
    """List all websites."""
    handle_result(_list_sites(app))


def _list_sites(app: AppContext) -> Result:
    resolved = app.web_backend(require_running=False)
    if isinstance(resolved, Error):
        return resolved
    registry = app.registry(resolved.data, acme=app.available_acme())

    rows = registry.list()
    if not rows:
        console_manager.print_note("No websites found")
        return Success()

    console_manager.print_processing("All websites:")
    console_manager.print_site_listing(
        [
            {
                "domain": row.domain,
                "status": row.status_text,
                "ssl": row.ssl_text,
                "config": str(row.config_path or ""),
                "files": f"{row.html_dir}/" if row.html_dir else "",
                "disabled": "yes" if row.state == SiteState.DISABLED else "",
            }
            for row in rows
        ]
    )
    return Success()


cli.add_command(list_sites)
cli.add_command(list_sites, name="ls")


@cli.command()
@click.argument("domain")
@click.argument("lines", type=click.IntRange(min=1), default=DEFAULT_LOG_LINES)
@click.pass_obj
def logs(app: AppContext, domain: str, lines: int) -> None:
    """Show the last LINES lines of a website's access and error logs."""
    handle_result(_view_logs(app, domain, lines))


def _tail(path: Path, lines: int) -> list[str]:
    with open(path, encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=lines)]


def _view_logs(app: AppContext, domain: str, lines: int) -> Result:
    if not is_valid_domain(domain):
        return Error(error=f"Invalid domain: {domain}", kind=ErrorKind.USAGE)
    resolved = app.web_backend(require_running=False)
    if isinstance(resolved, Error):
        return resolved
    registry = app.registry(resolved.data)
    access_log, error_log = registry.log_paths(domain)
    if not access_log.parent.is_dir():
        return Error(
            error=f"Website {domain} does not exist", kind=ErrorKind.PRECONDITION
        )

    console_manager.print_processing(f"Viewing logs for {domain} (last {lines} lines):")
    for title, path in (("Access Log", access_log), ("Error Log", error_log)):
        console_manager.print_raw(f"=== {title} ===")
        if not path.is_file():
            console_manager.print_note(f"{path} does not exist")
            continue
        for line in _tail(path, lines):
            console_manager.print_raw(line)
        console_manager.print_raw("")
    return Success()


@cli.command()
@click.pass_obj
def reload(app: AppContext) -> None:
    """Test the configuration and reload nginx."""
    resolved = app.web_backend()
    if isinstance(resolved, Error):
        handle_result(resolved)
    handle_result(app.gate(resolved.data).apply())


@cli.command()
@click.pass_obj
def test(app: AppContext) -> None:
    """Test the nginx configuration syntax."""
    resolved = app.web_backend()
    if isinstance(resolved, Error):
        handle_result(resolved)
    handle_result(app.gate(resolved.data).test())


@cli.command()
@click.pass_obj
def status(app: AppContext) -> None:
    """Show nginx state, configuration test and site counts."""
    handle_result(_show_status(app))


def _show_status(app: AppContext) -> Result:
    resolved = app.web_backend()
    if isinstance(resolved, Error):
        return resolved
    web = resolved.data

    console_manager.print_processing(f"Nginx status ({web.mode.value} mode):")
    console_manager.print_raw(web.status_text())
    console_manager.print_raw("")

    console_manager.print_processing("Configuration test:")
    tested = app.gate(web).test()
    console_manager.print_raw("")

    enabled, disabled = app.registry(web).counts()
    console_manager.print_processing("Website statistics:")
    console_manager.print_raw(f"  Enabled: {enabled}")
    console_manager.print_raw(f"  Disabled: {disabled}")

    return tested if isinstance(tested, Error) else Success()


@click.command(name="acme-status")
@click.pass_obj
def acme_status(app: AppContext) -> None:
    """Show the ACME client, its certificates and version."""
    handle_result(_show_acme_status(app))


def _show_acme_status(app: AppContext) -> Result:
    resolved = app.resolver.resolve_acme()
    if isinstance(resolved, Error):
        return resolved
    acme = resolved.data

    console_manager.print_success(f"ACME Mode: {acme.mode.value}")
    console_manager.print_raw(acme.status_text())
    console_manager.print_raw("")

    console_manager.print_processing("Certificate list:")
    listing = acme.list_certificates()
    if isinstance(listing, Error):
        return listing
    console_manager.print_raw(str(listing.data or ""))
    console_manager.print_raw("")

    console_manager.print_processing("ACME version:")
    version = acme.version()
    if isinstance(version, Error):
        return version
    console_manager.print_raw(str(version.data or ""))
    return Success()


cli.add_command(acme_status)
cli.add_command(acme_status, name="acme")


@cli.group()
def config() -> None:
    """Manage sitectl configuration."""
    pass


@config.command(name="show")
@click.pass_obj
def config_show(app: AppContext) -> None:
    """Show current configuration."""
    console_manager.print_config_table(app.config.show())


@config.command(name="set")
@click.argument("key")
@click.argument("value")
@click.pass_obj
def config_set(app: AppContext, key: str, value: str) -> None:
    """Set a configuration value (dotted key, e.g. acme.default_server)."""
    try:
        app.config.set(key, value)
    except ValueError as e:
        handle_result(Error(error=str(e), kind=ErrorKind.USAGE))
    handle_result(Success(message=f"Set {key} to {value}"))


@config.command(name="unset")
@click.argument("key")
@click.pass_obj
def config_unset(app: AppContext, key: str) -> None:
    """Reset a configuration value to its default."""
    try:
        app.config.unset(key)
    except ValueError as e:
        handle_result(Error(error=str(e), kind=ErrorKind.USAGE))
    handle_result(Success(message=f"Reset {key} to default"))


def main() -> int:
    """Main entry point.

    Returns:
        int: Exit code (0 for success, non-zero for error)
    """
    try:
        init_logging()
        cli(standalone_mode=False)
        return 0
    except click.ClickException as e:
        e.show()
        return 1
    except click.Abort:
        console_manager.print_error("Aborted")
        return 1
    except Exception as e:
        handle_exception(e, exit_on_error=False)
        return 1


if __name__ == "__main__":
    sys.exit(main())
