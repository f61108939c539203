"""CLI for secret-agent - a vault that keeps secrets out of AI agent traces."""

import argparse
import getpass
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from . import config
from . import envfile
from . import runner
from . import secret_gen
from .errors import SecretAgentError
from .vault import Vault

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger("secret_agent")


def info(args, message):
    """Informational line on stderr, silenced by --quiet."""
    if not args.quiet:
        err_console.print(message)


def cmd_status(args):
    """Show status and configuration (never opens the vault or touches keys)."""
    console.print("[bold]secret-agent status[/bold]\n")

    cfg = config.load_config()
    vault_path = config.get_vault_path(cfg)
    key_file = config.get_master_key_file()
    config_file = config.get_config_file()

    table = Table(show_header=True)
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Path/Info", style="dim")

    table.add_row(
        "vault",
        "[green]exists[/green]" if vault_path.exists() else "[yellow]not created[/yellow]",
        str(vault_path)
    )

    table.add_row(
        "config file",
        "[green]exists[/green]" if config_file.exists() else "[dim]none[/dim]",
        str(config_file)
    )

    table.add_row(
        "key file",
        "[green]exists[/green]" if key_file.exists() else "[dim]none[/dim]",
        str(key_file)
    )

    if os.environ.get(config.ENV_PASSPHRASE):
        key_source = "environment"
    elif config.use_file_storage(cfg):
        key_source = "key file"
    else:
        key_source = "keychain (key file when unavailable)"
    table.add_row("master key source", key_source, "")

    console.print(table)
    return 0


def cmd_create(args):
    """Generate and store a new random secret."""
    charset = secret_gen.Charset.parse(args.charset)
    value = secret_gen.generate(args.length, charset)

    with Vault.open() as vault:
        if args.force:
            vault.create_or_update(args.name, value)
        else:
            vault.create(args.name, value)

    info(args, f"[green]Created secret:[/green] {escape(args.name)}")
    return 0


def read_secret_value():
    """
    Read a secret value without echoing it.

    Piped stdin is read in full (trailing newline stripped) so multi-line
    values such as PEM keys survive. On a TTY the value is read twice with a
    hidden prompt.
    """
    if not sys.stdin.isatty():
        return sys.stdin.read().rstrip("\r\n")

    value = getpass.getpass("Enter secret value (hidden): ")
    if value:
        confirm = getpass.getpass("Confirm value (hidden): ")
        if value != confirm:
            raise SecretAgentError("values don't match")
    return value


def cmd_import(args):
    """Store a secret read from stdin or a hidden prompt."""
    value = read_secret_value()
    if not value:
        err_console.print("[red]Error:[/red] secret value cannot be empty")
        return 1

    with Vault.open() as vault:
        if args.replace:
            vault.create_or_update(args.name, value)
        else:
            vault.create(args.name, value)

    info(args, f"[green]Imported secret:[/green] {escape(args.name)}")
    return 0


def cmd_list(args):
    """List stored secret names (values never shown - safe for LLM)."""
    with Vault.open() as vault:
        secrets = vault.list(args.bucket)

    if not secrets:
        console.print("[dim]No secrets stored.[/dim]")
        return 0

    table = Table(title="Stored Secrets", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Created", style="dim")

    for secret in secrets:
        table.add_row(escape(secret.name), secret.created_at.strftime("%Y-%m-%d %H:%M:%S"))

    console.print(table)
    console.print(f"\n[dim]Total: {len(secrets)} secrets[/dim]")
    return 0


def cmd_delete(args):
    """Permanently delete a secret."""
    with Vault.open() as vault:
        vault.delete(args.name)

    info(args, f"[green]Deleted secret:[/green] {escape(args.name)}")
    return 0


def cmd_get(args):
    """
    Print a secret value (UNSAFE for LLM - debugging only).

    Requires --unsafe-display so an agent can't print a value by accident.
    """
    if not args.unsafe_display:
        err_console.print(
            "[red]Error:[/red] You must pass --unsafe-display to print a secret.\n"
            "[dim]Use 'secret-agent exec --env NAME -- cmd' to use it without exposing it[/dim]"
        )
        return 1

    with Vault.open() as vault:
        value = vault.get(args.name)

    err_console.print("[yellow]WARNING:[/yellow] Displaying secret value. Do not use in agent contexts.")
    print(value)
    return 0


def cmd_exec(args):
    """
    Run a command with secrets injected, sanitizing its output.

    Example:
        secret-agent exec --env API_KEY -- curl -H "Authorization: Bearer $API_KEY" https://api.example.com
        secret-agent exec -- curl -H 'Authorization: Bearer {{API_KEY}}' https://api.example.com
    """
    # Strip leading '--' separator if present (argparse.REMAINDER includes it)
    command = args.exec_command
    if command and command[0] == "--":
        command = command[1:]

    if not command:
        err_console.print("[red]Error:[/red] No command specified")
        return 1

    return runner.run_command(command, args.env)


def cmd_inject(args):
    """Write a secret into a file (placeholder replacement or .env line)."""
    if not args.env_format and not args.placeholder:
        err_console.print("[red]Error:[/red] either --placeholder or --env-format is required")
        return 1

    with Vault.open() as vault:
        value = vault.get(args.name)

    if args.env_format:
        envfile.inject_env_format(args.file, args.name, value, export=args.export)
    else:
        envfile.inject_placeholder(args.file, args.placeholder, value)

    info(args, f"[green]Injected[/green] {escape(args.name)} into {escape(str(args.file))}")
    return 0


def cmd_env_export(args):
    """Write secrets to a .env file."""
    if not args.all and not args.names:
        err_console.print("[red]Error:[/red] give secret names or --all")
        return 1

    with Vault.open() as vault:
        exported = envfile.export_env(vault, args.file, None if args.all else args.names)

    if not exported:
        info(args, "[dim]No secrets to export.[/dim]")
    else:
        info(args, f"[green]Exported {len(exported)} secrets to[/green] {escape(str(args.file))}")
    return 0


def cmd_env_import(args):
    """Read secrets from a .env file into the vault."""
    with Vault.open() as vault:
        report = envfile.import_env(vault, args.file)

    if not (report.imported or report.skipped or report.invalid):
        info(args, f"[dim]No secrets found in {escape(str(args.file))}[/dim]")
    if report.imported:
        info(args, f"[green]Imported {len(report.imported)} secrets:[/green] "
                   f"{escape(', '.join(report.imported))}")
    if report.skipped:
        info(args, f"[yellow]Skipped {len(report.skipped)} existing secrets:[/yellow] "
                   f"{escape(', '.join(report.skipped))}")
    if report.invalid:
        info(args, f"[yellow]Ignored {len(report.invalid)} invalid entries:[/yellow] "
                   f"{escape(', '.join(report.invalid))}")
    return 0


def setup_logging(verbose):
    try:
        level = "DEBUG" if verbose else config.get_log_level()
    except SecretAgentError:
        level = "WARNING"

    handler = RichHandler(console=err_console, show_time=False, show_path=False)
    logger.handlers[:] = [handler]
    logger.setLevel(level)
    logger.propagate = False


def build_parser():
    parser = argparse.ArgumentParser(
        prog="secret-agent",
        description="A CLI vault that keeps secrets out of AI agent traces",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  secret-agent create API_KEY                      # Generate a random secret
  echo 'value' | secret-agent import GITHUB_TOKEN  # Import from stdin
  secret-agent list                                # Show names (safe for LLM)
  secret-agent exec --env API_KEY -- node app.js   # Secret as env var
  secret-agent exec -- curl -H 'Auth: {{API_KEY}}' https://example.com

LLM Safety:
  - 'list' never shows values
  - 'exec' output is sanitized: values become [REDACTED:NAME]
  - 'get' requires --unsafe-display - use only when debugging

Environment:
  SECRET_AGENT_PASSPHRASE   Master key (skips keychain lookup)
  SECRET_AGENT_USE_FILE     Use ~/.secret-agent/master.key instead of the keychain
  SECRET_AGENT_VAULT_PATH   Override vault location
  SECRET_AGENT_CONFIG       Override config file location
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress informational output")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # status
    subparsers.add_parser("status", help="Show status and configuration")

    # create
    create_parser = subparsers.add_parser("create", help="Generate and store a new random secret")
    create_parser.add_argument("name", help="Secret name, e.g. API_KEY or prod/API_KEY")
    create_parser.add_argument("-l", "--length", type=int, default=32, help="Length (default: 32)")
    create_parser.add_argument("-c", "--charset", default="alphanumeric",
                               help="alphanumeric, ascii, hex or base64 (default: alphanumeric)")
    create_parser.add_argument("-f", "--force", action="store_true", help="Overwrite if it exists")

    # import
    import_parser = subparsers.add_parser("import", help="Store a secret from stdin or hidden input")
    import_parser.add_argument("name", help="Secret name")
    import_parser.add_argument("-r", "--replace", action="store_true", help="Replace if it exists")

    # list
    list_parser = subparsers.add_parser("list", help="List secret names (safe for LLM)")
    list_parser.add_argument("-b", "--bucket", help="Only secrets in this bucket")

    # delete
    delete_parser = subparsers.add_parser("delete", help="Permanently delete a secret")
    delete_parser.add_argument("name", help="Secret name")

    # get
    get_parser = subparsers.add_parser("get", help="Print a secret (UNSAFE - debugging only)")
    get_parser.add_argument("name", help="Secret name")
    get_parser.add_argument("--unsafe-display", action="store_true",
                            help="Confirm you want the value printed in plaintext")

    # exec
    exec_parser = subparsers.add_parser("exec", help="Run command with secrets injected")
    exec_parser.add_argument("-e", "--env", action="append", default=[], metavar="SECRET[:VAR]",
                             help="Inject secret as env var (can repeat)")
    exec_parser.add_argument("exec_command", nargs=argparse.REMAINDER,
                             help="Command to run; {{NAME}} is replaced with the secret")

    # inject
    inject_parser = subparsers.add_parser("inject", help="Write a secret into a file")
    inject_parser.add_argument("name", help="Secret name")
    inject_parser.add_argument("-f", "--file", type=Path, required=True, help="Target file")
    inject_parser.add_argument("-p", "--placeholder", help="String to replace with the secret")
    inject_parser.add_argument("--env-format", action="store_true", help="Write NAME=value line")
    inject_parser.add_argument("--export", action="store_true", help="Write 'export NAME=value'")

    # env
    env_parser = subparsers.add_parser("env", help="Bulk import/export .env files")
    env_subparsers = env_parser.add_subparsers(dest="env_command", required=True, help="Actions")

    env_export_parser = env_subparsers.add_parser("export", help="Write secrets to a .env file")
    env_export_parser.add_argument("-f", "--file", type=Path, required=True, help="Target .env file")
    env_export_parser.add_argument("names", nargs="*", help="Secret names")
    env_export_parser.add_argument("--all", action="store_true", help="Export every secret")

    env_import_parser = env_subparsers.add_parser("import", help="Read secrets from a .env file")
    env_import_parser.add_argument("-f", "--file", type=Path, required=True, help="Source .env file")

    return parser


COMMANDS = {
    "status": cmd_status,
    "create": cmd_create,
    "import": cmd_import,
    "list": cmd_list,
    "delete": cmd_delete,
    "get": cmd_get,
    "exec": cmd_exec,
    "inject": cmd_inject,
}

ENV_COMMANDS = {
    "export": cmd_env_export,
    "import": cmd_env_import,
}


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.verbose)

    if args.command == "env":
        handler = ENV_COMMANDS[args.env_command]
    else:
        handler = COMMANDS[args.command]

    try:
        return handler(args)
    except (SecretAgentError, ValueError) as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
