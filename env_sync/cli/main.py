"""CLI entrypoint for env-sync."""
import sys
import argparse
import logging
import shutil
from pathlib import Path

from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .validators import validate_environment_name, validate_title

VERSION = "0.1.0"

SYNC_ACTIONS = ["push", "pull", "diff", "list", "exit"]

# Configure logging to stderr
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    stream=sys.stderr
)
logger = logging.getLogger(__name__)


def _get_manager():
    """Build the provider manager for this invocation."""
    from env_sync.secrets.workflows.provider_manager import ProviderManager

    return ProviderManager()


def _provider_context(args):
    """Resolve provider, driver and config map from the shared command options."""
    from env_sync.secrets.workflows.sync_operations import (
        build_provider_config,
        provider_driver,
        resolve_provider,
    )

    validate_environment_name(args.environment)
    validate_title(args.title)

    manager = _get_manager()
    provider_key = args.provider or manager.get_default_provider()
    provider = resolve_provider(manager, provider_key)
    config = build_provider_config(
        provider_driver(manager, provider_key),
        args.environment,
        force=args.force,
        vault=args.vault,
        title=args.title,
    )
    return manager, provider, config


def _env_file(manager, provider, environment):
    from env_sync.secrets.domains.base_provider import env_file_path

    if hasattr(provider, "get_env_file_path"):
        return provider.get_env_file_path(environment)
    return env_file_path(environment, Path(manager.base_dir or Path.cwd()), manager.config.get("environments"))


def _print_table(rows, headers):
    table = Table(box=box.SIMPLE, show_edge=False, pad_edge=False, header_style="bold")
    for header in headers:
        table.add_column(header)
    for row in rows:
        # Cells are plain text, never rich markup
        table.add_row(*(Text(str(cell)) for cell in row))
    Console().print(table)


def _confirm(question: str, default: bool = False) -> bool:
    suffix = "(Y/n)" if default else "(y/N)"
    try:
        response = input(f"{question} {suffix}: ").strip().lower()
    except EOFError:
        return False
    if not response:
        return default
    return response in ("y", "yes")


def _choose(question: str, options) -> str:
    for index, option in enumerate(options, start=1):
        print(f"{index}. {option}")
    while True:
        try:
            response = input(f"\n{question} ").strip().lower()
        except EOFError:
            return "exit"
        if response.isdigit() and 1 <= int(response) <= len(options):
            return options[int(response) - 1]
        if response in options:
            return response
        print(f"Invalid choice. Enter 1-{len(options)} or one of: {', '.join(options)}", file=sys.stderr)


def cmd_version(args):
    """Show version information."""
    print(f"env-sync {VERSION}")


def cmd_push(args):
    """Push a local .env file to the secret manager."""
    from env_sync.secrets.workflows.sync_operations import push_environment

    _, provider, config = _provider_context(args)

    print(f"Pushing {args.environment} environment to {provider.get_name()}...")
    summary = push_environment(provider, config)
    print(f"✓ Successfully pushed .env to {provider.get_name()}\n")
    _print_table([[key, value] for key, value in summary.items()], ["Property", "Value"])


def cmd_pull(args):
    """Pull a .env file from the secret manager."""
    from env_sync.secrets.workflows.sync_operations import pull_environment

    manager, provider, config = _provider_context(args)

    print(f"Pulling {args.environment} environment from {provider.get_name()}...")
    report = pull_environment(
        provider,
        config,
        _env_file(manager, provider, args.environment),
        manager.config.get("required_variables"),
    )
    print(f"✓ Successfully pulled .env from {provider.get_name()}")

    if report["empty"]:
        print("Warning: .env file appears to be empty", file=sys.stderr)
        return

    print(f"✓ {report['env_file'].name} file written with {report['line_count']} lines")
    if report["missing_variables"]:
        print("Warning: The following critical variables might be missing:", file=sys.stderr)
        for var in report["missing_variables"]:
            print(f"  - {var}", file=sys.stderr)


def cmd_list(args):
    """List remote environment items for this project."""
    from env_sync.secrets.workflows.sync_operations import list_environments

    _, provider, config = _provider_context(args)
    items = list_environments(provider, config)

    if not items:
        print(f"No environments found in {provider.get_name()}")
        return

    _print_table(
        [[item.environment, item.title, item.updatedAt or "-"] for item in items],
        ["Environment", "Title", "Updated"],
    )


def cmd_delete(args):
    """Delete the remote item for an environment."""
    _, provider, config = _provider_context(args)

    if not args.yes and not _confirm(
        f"Delete the {args.environment} environment from {provider.get_name()}?"
    ):
        print("Aborted.")
        return

    provider.delete(config)
    print(f"✓ Deleted {args.environment} environment from {provider.get_name()}")


def cmd_providers(args):
    """Show every provider with its install/auth state."""
    manager = _get_manager()
    default = manager.get_default_provider()

    rows = []
    for name, provider in manager.all().items():
        available = provider.is_available()
        authenticated = available and provider.is_authenticated()
        rows.append([
            f"{name}{' (default)' if name == default else ''}",
            provider.get_name(),
            "yes" if available else "no",
            "yes" if authenticated else "no",
        ])
    _print_table(rows, ["Name", "Provider", "Installed", "Authenticated"])


def _run_sync_action(action, provider, config, result):
    """Run one menu action of the sync loop."""
    from env_sync.secrets.workflows.sync_operations import diff_contents, list_environments

    if action == "push":
        provider.push(config)
        print(f"✓ Successfully pushed .env to {provider.get_name()}")
    elif action == "pull":
        provider.pull(config)
        print(f"✓ Successfully pulled .env from {provider.get_name()}")
    elif action == "diff":
        if not result.remoteExists:
            print("Nothing to diff: the remote item does not exist.")
            return
        diff = diff_contents(result.localContent, result.remoteContent)
        print(diff if diff else "Files are identical.")
    elif action == "list":
        items = list_environments(provider, config)
        if not items:
            print(f"No environments found in {provider.get_name()}")
            return
        _print_table(
            [[item.environment, item.title, item.updatedAt or "-"] for item in items],
            ["Environment", "Title", "Updated"],
        )


def cmd_sync(args):
    """Interactive sync: show drift, then push/pull/diff/list until exit."""
    from env_sync.secrets.domains.models import EnvSyncError
    from env_sync.secrets.workflows.sync_operations import describe_status

    _, provider, config = _provider_context(args)

    banner = f"{provider.get_name()} .env Sync Utility"
    print(f"=== {banner} ===\n")
    print(f"Environment: {args.environment}")

    while True:
        result = provider.compare(config)
        for line in describe_status(result):
            print(line)
        print()

        action = _choose("What would you like to do?", SYNC_ACTIONS)
        if action == "exit":
            break

        try:
            _run_sync_action(action, provider, config, result)
        except EnvSyncError as e:
            print(f"Error: {e}", file=sys.stderr)

        if not _confirm("\nContinue with another action?"):
            break
        print()

    print("Goodbye.")


def cmd_config_set_path(args):
    """Set config file path preference."""
    from env_sync.secrets.domains.preferences import set_preference

    config_path = Path(args.path).resolve()

    if not config_path.exists():
        print(f"Error: Config file does not exist: {config_path}", file=sys.stderr)
        sys.exit(1)

    if not config_path.is_file():
        print(f"Error: Path is not a file: {config_path}", file=sys.stderr)
        sys.exit(1)

    set_preference("config_path", str(config_path))
    print(f"Config path set to: {config_path}")


def cmd_config_show(args):
    """Show which config file is in effect."""
    from env_sync.secrets.domains.config_loader import PROJECT_CONFIG_NAME, default_config_path
    from env_sync.secrets.domains.preferences import get_preference

    config_path_pref = get_preference("config_path")
    if config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            print(f"Config path: {config_path}")
        else:
            print(f"Config path (from preference, but file not found): {config_path}")
        print("Source: preference")
        return

    project_config = Path.cwd() / PROJECT_CONFIG_NAME
    if project_config.exists():
        print(f"Config path: {project_config}")
        print("Source: project")
        return

    default_config = default_config_path()
    print(f"Config path: {default_config}")
    if default_config.exists():
        print("Source: default")
    else:
        print("Source: default (file not found, using built-in defaults)")


def cmd_config_clear(args):
    """Clear config path preference."""
    from env_sync.secrets.domains.config_loader import default_config_path
    from env_sync.secrets.domains.preferences import clear_preference

    clear_preference("config_path")
    print(f"Config path preference cleared. Will use default: {default_config_path()}")


def cmd_config_init(args):
    """Interactive config setup."""
    import yaml

    from env_sync.secrets.domains.config_loader import DEFAULT_CONFIG, default_config_path
    from env_sync.secrets.domains.preferences import set_preference

    default_config = default_config_path()

    print("=== env-sync Configuration Setup ===\n")
    print(f"Default config location: {default_config}\n")

    if default_config.exists():
        print(f"Configuration file already exists at: {default_config}")
        if not _confirm("Do you want to use a different config file?"):
            print(f"\nUsing existing config at: {default_config}")
            return

    print("Choose an option:")
    print("1. Write a starter config to the default location")
    print("2. Copy an existing config file to the default location")
    print("3. Point to an existing config file at a different location")
    print("4. Cancel (manually create config file later)")

    choice = input("\nEnter choice (1-4): ").strip()

    if choice == "1":
        default_config.parent.mkdir(parents=True, exist_ok=True)
        with open(default_config, "w") as f:
            yaml.safe_dump(DEFAULT_CONFIG, f, sort_keys=False)
        print(f"\nStarter config written to: {default_config}")

    elif choice == "2":
        source = Path(input("Enter path to existing config file: ").strip()).expanduser().resolve()
        if not source.exists():
            print(f"Error: File not found: {source}", file=sys.stderr)
            sys.exit(1)
        default_config.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, default_config)
        print(f"\nConfig copied to: {default_config}")

    elif choice == "3":
        config_file = Path(input("Enter path to config file: ").strip()).expanduser().resolve()
        if not config_file.exists():
            print(f"Error: File not found: {config_file}", file=sys.stderr)
            sys.exit(1)
        set_preference("config_path", str(config_file))
        print(f"\nConfig path set to: {config_file}")

    elif choice == "4":
        print("\nSetup cancelled.")
        print(f"Create your config file at: {default_config}")
        print("Or use: envsync config set-path <path>")

    else:
        print("Invalid choice.", file=sys.stderr)
        sys.exit(2)


def _add_sync_options(parser, force_help):
    parser.add_argument(
        "environment",
        nargs="?",
        default="local",
        help="Environment name (local, staging, production, etc.). Default: local"
    )
    parser.add_argument(
        "--provider",
        help="Secret provider (1password, aws, bitwarden, gcp or a configured name). Default from config"
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help=force_help
    )
    parser.add_argument(
        "--vault",
        help="Vault (1password), region (aws), organization id (bitwarden) or project (gcp)"
    )
    parser.add_argument(
        "--title",
        help="Custom item title / secret name (default: derived from the git remote)"
    )


def build_parser():
    parser = argparse.ArgumentParser(
        prog="envsync",
        description="env-sync - keep .env files in sync with your secret manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (provider missing, not authenticated, item not found, etc.)
  2 - Usage error (invalid arguments, invalid environment name, etc.)

Environment variables:
  ENV_SYNC_PROVIDER  - Default provider (overrides config file)
  ONEPASSWORD_VAULT  - Default 1Password vault
  AWS_DEFAULT_REGION - Default AWS region
  BITWARDEN_ORG_ID   - Default Bitwarden organization
  GCP_PROJECT        - Default GCP project

Configuration:
  Lookup order: 'config set-path' preference, ./env-sync.yml,
  ~/.config/env-sync/config.yml, built-in defaults
        """
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "version",
        help="Show version information",
        description="Display the current version of env-sync"
    )

    push_parser = subparsers.add_parser(
        "push",
        help="Push a .env file to your secret manager",
        description="""
Upload the environment file (.env for local/development, .env.<name> otherwise)
to the secret manager. Content is stored base64 encoded.

An identical remote copy is not overwritten unless --force is given.
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    _add_sync_options(push_parser, "Push even if local and remote files are identical")

    pull_parser = subparsers.add_parser(
        "pull",
        help="Pull a .env file from your secret manager",
        description="""
Download the environment file from the secret manager.

An existing local file that differs is backed up to <file>.backup.<timestamp>
before it is replaced. Identical files are left alone unless --force is given.
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    _add_sync_options(pull_parser, "Pull even if local and remote files are identical")

    sync_parser = subparsers.add_parser(
        "sync",
        help="Interactive sync between local and remote",
        description="Show local/remote drift and choose push, pull, diff or list interactively"
    )
    _add_sync_options(sync_parser, "Force push/pull even if files are identical")

    list_parser = subparsers.add_parser(
        "list",
        help="List remote environments for this project",
        description="List the items stored for this project in the secret manager"
    )
    _add_sync_options(list_parser, argparse.SUPPRESS)

    delete_parser = subparsers.add_parser(
        "delete",
        help="Delete a remote environment",
        description="Delete the stored item for an environment (AWS keeps a 30 day recovery window)"
    )
    _add_sync_options(delete_parser, argparse.SUPPRESS)
    delete_parser.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Do not ask for confirmation"
    )

    subparsers.add_parser(
        "providers",
        help="Show providers and their status",
        description="List every provider with its install and authentication state"
    )

    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Manage env-sync configuration"
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")

    config_set_path_parser = config_subparsers.add_parser(
        "set-path",
        help="Set config file path",
        description="Store the absolute path to your config file in ~/.config/env-sync/preferences.json"
    )
    config_set_path_parser.add_argument(
        "path",
        help="Path to config file"
    )
    config_subparsers.add_parser(
        "show",
        help="Show current config path",
        description="Display the configuration file in effect and where it came from"
    )
    config_subparsers.add_parser(
        "clear",
        help="Clear config path preference",
        description="Remove the config path preference"
    )
    config_subparsers.add_parser(
        "init",
        help="Interactive config setup",
        description="Interactive setup wizard for env-sync configuration"
    )

    return parser, config_parser


COMMANDS = {
    "version": cmd_version,
    "push": cmd_push,
    "pull": cmd_pull,
    "sync": cmd_sync,
    "list": cmd_list,
    "delete": cmd_delete,
    "providers": cmd_providers,
}

CONFIG_COMMANDS = {
    "set-path": cmd_config_set_path,
    "show": cmd_config_show,
    "clear": cmd_config_clear,
    "init": cmd_config_init,
}


def main(argv=None):
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (provider unavailable, not authenticated, item not found, etc.)
        2 - Usage errors (invalid arguments, invalid environment name, etc.)
    """
    parser, config_parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug(f"env-sync {VERSION}, command: {args.command}")

    if not args.command:
        parser.print_help()
        sys.exit(2)

    try:
        if args.command == "config":
            handler = CONFIG_COMMANDS.get(args.config_command)
            if handler is None:
                config_parser.print_help()
                sys.exit(2)
            handler(args)
        else:
            COMMANDS[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
