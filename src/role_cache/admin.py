"""Administrative commands for the role cache.

Usage:
    python -m src.role_cache.admin --status               # Cache and version status
    python -m src.role_cache.admin --bump-version         # Invalidate all versioned entries
    python -m src.role_cache.admin --force-clean          # Bump, clear source hashes and global blob
    python -m src.role_cache.admin --cleanup              # Drop expired sessions and stale user state
    python -m src.role_cache.admin --history EMAIL        # Show a user's role change history
    python -m src.role_cache.admin --validate-config      # Validate and print configuration
"""

import argparse
import sys
from typing import Any

from rich.console import Console
from rich.table import Table

from src.config.settings import settings

from .cache.cache_manager import get_cache_manager
from .exceptions import RoleCacheError
from .logging_config import configure_logging
from .users.service import UserService

console = Console()


def _print_mapping(title: str, values: dict[str, Any]) -> None:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    for key, value in values.items():
        table.add_row(key, str(value))
    console.print(table)


def show_status() -> bool:
    manager = get_cache_manager()
    _print_mapping("Role Cache Status", manager.get_status())
    return True


def bump_version() -> bool:
    manager = get_cache_manager()
    previous = manager.current_version()
    if not manager.bump_version():
        console.print("[red]Failed to bump master cache version[/red]")
        return False
    console.print(f"Master cache version: {previous} -> [bold]{manager.current_version()}[/bold]")
    return True


def force_clean() -> bool:
    summary = get_cache_manager().force_clean_all_caches()
    _print_mapping("Force Clean", summary)
    return bool(summary["version_bumped"])


def cleanup() -> bool:
    service = UserService(get_cache_manager())
    _print_mapping("Cleanup", service.cleanup_expired_sessions())
    return True


def show_history(email: str) -> bool:
    service = UserService(get_cache_manager())
    history = service.state_tracker.get_role_change_history(email)

    table = Table(title=f"Role history for {email}", show_header=True, header_style="bold magenta")
    for column in ("Timestamp", "Old role", "New role", "Change ID", "Cache version"):
        table.add_column(column)
    for entry in history:
        table.add_row(
            entry.timestamp.isoformat(),
            entry.old_role or "-",
            entry.new_role,
            entry.change_id,
            entry.cache_version or "-",
        )
    console.print(table)
    return True


def validate_config() -> bool:
    try:
        settings.validate_configuration()
    except ValueError as e:
        console.print(f"[red]Configuration invalid:[/red] {e}")
        return False
    settings.print_config()
    console.print("[green]Configuration valid[/green]")
    return True


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Role cache administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--status", action="store_true", help="Show cache status")
    parser.add_argument(
        "--bump-version", action="store_true", help="Bump the master cache version"
    )
    parser.add_argument(
        "--force-clean",
        action="store_true",
        help="Bump the version, clear source hashes and the global staff cache",
    )
    parser.add_argument(
        "--cleanup", action="store_true", help="Remove expired sessions and stale user state"
    )
    parser.add_argument("--history", metavar="EMAIL", help="Show role change history for EMAIL")
    parser.add_argument(
        "--validate-config", action="store_true", help="Validate and print configuration"
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    args = parser.parse_args()
    configure_logging(settings.log_level, json_output=args.json_logs or settings.log_json)

    actions = []
    if args.validate_config:
        actions.append(validate_config)
    if args.status:
        actions.append(show_status)
    if args.bump_version:
        actions.append(bump_version)
    if args.force_clean:
        actions.append(force_clean)
    if args.cleanup:
        actions.append(cleanup)
    if args.history:
        actions.append(lambda: show_history(args.history))

    if not actions:
        parser.print_help()
        sys.exit(1)

    try:
        success = all([action() for action in actions])
    except KeyboardInterrupt:
        console.print("\nInterrupted")
        sys.exit(130)
    except RoleCacheError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
