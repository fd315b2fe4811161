"""CLI interface for the email forwarding setup tool."""

from pathlib import Path
from typing import Optional

import click

from . import __version__
from .auditor import VerificationAuditor
from .dns_hosts import CloudflareDnsHost, Route53DnsHost
from .forward_email import ForwardEmailClient
from .gateway import DryRunGateway, LiveGateway, ProviderError, ProviderGateway
from .logging_config import configure_logging
from .models import ProvisionConfig, RunSummary
from .pipeline import ProvisioningPipeline
from .reporting import (
    confirm_action,
    console,
    create_state_table,
    export_audit_report,
    print_audit_details,
    print_audit_summary,
    print_dry_run_notice,
    print_run_summary,
)
from .state_store import FailureLog, StateStore, StateStoreError, load_domains

DNS_HOSTS = ("route53", "cloudflare")


def build_gateway(
    dns_host: str,
    forward_email_key: Optional[str],
    cloudflare_token: Optional[str] = None,
) -> ProviderGateway:
    """
    Create the live gateway for the chosen DNS host.

    Args:
        dns_host: "route53" or "cloudflare"
        forward_email_key: Forward Email API key
        cloudflare_token: Cloudflare API token, required for "cloudflare"

    Returns:
        LiveGateway instance
    """
    provider = ForwardEmailClient(api_key=forward_email_key or "")
    if dns_host == "cloudflare":
        host = CloudflareDnsHost(api_token=cloudflare_token or "")
    else:
        host = Route53DnsHost()
    return LiveGateway(provider, host)


def credential_options(func):
    """Options shared by commands that talk to the provider and DNS host."""
    func = click.option(
        "--cloudflare-token",
        envvar="CLOUDFLARE_API_TOKEN",
        help="Cloudflare API token (env: CLOUDFLARE_API_TOKEN)",
    )(func)
    func = click.option(
        "--api-key",
        envvar="FORWARD_EMAIL_API_KEY",
        help="Forward Email API key (env: FORWARD_EMAIL_API_KEY)",
    )(func)
    func = click.option(
        "--dns-host",
        type=click.Choice(DNS_HOSTS),
        envvar="DNS_HOST",
        default="route53",
        show_default=True,
        help="Where the domains' DNS zones are hosted",
    )(func)
    return func


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """
    Email Forwarding Setup Tool.

    Registers domains with Forward Email, configures their DNS records,
    waits for verification and creates bulk aliases. Runs are resumable:
    every domain's progress is kept in a state file.
    """


@main.command()
@click.option("--domains-file", envvar="DOMAINS_FILE", default="domains.txt", show_default=True,
              help="Text file with one domain per line")
@click.option("--forward-to", envvar="FORWARD_TO", required=True,
              help="Address that receives forwarded mail")
@click.option("--state-file", envvar="STATE_FILE", default="provisioning_state.json", show_default=True,
              help="JSON file holding each domain's progress")
@click.option("--log-file", envvar="LOG_FILE", default="provisioning.log", show_default=True,
              help="Log file")
@click.option("--failure-log", envvar="FAILURE_LOG", default="failed_domains.jsonl", show_default=True,
              help="JSON-lines file collecting domain failures")
@click.option("--alias-export", envvar="ALIAS_EXPORT", default="aliases.txt", show_default=True,
              help="Text file listing every created alias")
@click.option("--propagation-wait", envvar="DNS_PROPAGATION_WAIT", type=click.FloatRange(min=0),
              default=180.0, show_default=True, help="Seconds to wait for DNS propagation")
@click.option("--verification-attempts", envvar="VERIFICATION_MAX_ATTEMPTS", type=click.IntRange(min=1),
              default=5, show_default=True, help="Status checks before verification fails")
@click.option("--verification-delay", envvar="VERIFICATION_RETRY_DELAY", type=click.FloatRange(min=0),
              default=15.0, show_default=True, help="Seconds between status checks")
@click.option("--alias-count", envvar="ALIAS_COUNT", type=click.IntRange(min=1),
              default=50, show_default=True, help="Aliases per domain, info@ included")
@click.option("--first-name-percentage", envvar="FIRST_NAME_ONLY_PERCENTAGE",
              type=click.FloatRange(0, 100), default=60.0, show_default=True,
              help="Share of aliases using the first-name-only format")
@click.option("--alias-retries", envvar="ALIAS_MAX_RETRIES", type=click.IntRange(min=0),
              default=3, show_default=True, help="Retries of a domain's alias batch")
@click.option("--alias-backoff", envvar="ALIAS_INITIAL_BACKOFF", type=click.FloatRange(min=0),
              default=2.0, show_default=True, help="Initial alias retry delay, doubled per retry")
@click.option("--dry-run", is_flag=True, help="Preview changes without applying them")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts")
@click.option("--verbose", "-v", is_flag=True, help="Show debug output")
@credential_options
def provision(
    domains_file: str,
    forward_to: str,
    state_file: str,
    log_file: str,
    failure_log: str,
    alias_export: str,
    propagation_wait: float,
    verification_attempts: int,
    verification_delay: float,
    alias_count: int,
    first_name_percentage: float,
    alias_retries: int,
    alias_backoff: float,
    dry_run: bool,
    yes: bool,
    verbose: bool,
    dns_host: str,
    api_key: Optional[str],
    cloudflare_token: Optional[str],
) -> None:
    """Provision forwarding for every domain in the domains file."""
    config = ProvisionConfig(
        forward_to=forward_to,
        domains_file=domains_file,
        state_file=state_file,
        log_file=log_file,
        failure_log=failure_log,
        alias_export=alias_export,
        propagation_wait=propagation_wait,
        verification_max_attempts=verification_attempts,
        verification_retry_delay=verification_delay,
        alias_count=alias_count,
        first_name_only_percentage=first_name_percentage,
        alias_max_retries=alias_retries,
        alias_initial_backoff=alias_backoff,
        dry_run=dry_run,
    )
    configure_logging(log_file, verbose)

    try:
        summary = _run_provision(config, dns_host, api_key, cloudflare_token, skip_confirm=yes)
    except (ProviderError, StateStoreError, OSError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)

    if summary is not None and summary.has_failures:
        raise SystemExit(1)


def _run_provision(
    config: ProvisionConfig,
    dns_host: str,
    api_key: Optional[str],
    cloudflare_token: Optional[str],
    skip_confirm: bool,
) -> Optional[RunSummary]:
    """
    Provisioning workflow.

    Returns:
        The run summary, or None if there was nothing to do or the user
        declined
    """
    if config.dry_run:
        print_dry_run_notice()

    console.print()
    console.print("[bold cyan]Email Forwarding Setup Tool[/bold cyan]")
    console.print(f"DNS host: {dns_host}")
    console.print(f"Forwarding to: {config.forward_to}")
    console.print()

    domains = load_domains(Path(config.domains_file))
    if not domains:
        console.print(f"[yellow]No domains found in {config.domains_file}.[/yellow]")
        return None
    console.print(f"[dim]Loaded {len(domains)} domains[/dim]")

    store = StateStore(Path(config.state_file))
    store.load()

    if not config.dry_run and not skip_confirm:
        if not confirm_action(f"Provision {len(domains)} domains?"):
            console.print("[yellow]Aborted.[/yellow]")
            return None

    gateway = build_gateway(dns_host, api_key, cloudflare_token)
    if config.dry_run:
        gateway = DryRunGateway(gateway)

    pipeline = ProvisioningPipeline(
        gateway=gateway,
        store=store,
        config=config,
        failure_log=FailureLog(Path(config.failure_log)),
    )
    summary = pipeline.run(domains)

    print_run_summary(summary)

    console.print()
    if config.dry_run:
        console.print("[yellow]Dry run complete. No changes were made.[/yellow]")
    elif summary.has_failures:
        console.print(f"[red]{summary.failed} domain(s) failed. See {config.failure_log}.[/red]")
    else:
        console.print("[green]Provisioning complete![/green]")
    return summary


@main.command()
@click.option("--domains-file", envvar="DOMAINS_FILE", default="domains.txt", show_default=True,
              help="Text file with one domain per line")
@click.option("--expected-aliases", envvar="ALIAS_COUNT", type=click.IntRange(min=0),
              default=50, show_default=True, help="Alias count a configured domain should have")
@click.option("--output", "-o", type=str, default=None,
              help="Write the report to this file (.json or .csv)")
@click.option("--format", "fmt", type=click.Choice(["json", "csv"]), default=None,
              help="Report format, overrides the output extension")
@click.option("--verbose", "-v", is_flag=True, help="Show every check for each domain")
@credential_options
def audit(
    domains_file: str,
    expected_aliases: int,
    output: Optional[str],
    fmt: Optional[str],
    verbose: bool,
    dns_host: str,
    api_key: Optional[str],
    cloudflare_token: Optional[str],
) -> None:
    """Check each domain's real provider and DNS configuration."""
    configure_logging(None, verbose)

    try:
        domains = load_domains(Path(domains_file))
        if not domains:
            console.print(f"[yellow]No domains found in {domains_file}.[/yellow]")
            return

        gateway = build_gateway(dns_host, api_key, cloudflare_token)
        auditor = VerificationAuditor(gateway, expected_aliases=expected_aliases)
        report = auditor.audit(domains)
    except (ProviderError, OSError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)

    print_audit_summary(report)

    if verbose:
        for result in report.domains:
            print_audit_details(result)

    if output:
        export_audit_report(report, output, fmt)


@main.command()
@click.option("--state-file", envvar="STATE_FILE", default="provisioning_state.json", show_default=True,
              help="JSON file holding each domain's progress")
def status(state_file: str) -> None:
    """Show stored provisioning state without contacting any service."""
    store = StateStore(Path(state_file))
    try:
        records = store.load()
    except StateStoreError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)

    if not records:
        console.print(f"[yellow]No provisioning state in {state_file}.[/yellow]")
        return

    console.print(create_state_table(records))


if __name__ == "__main__":
    main()
