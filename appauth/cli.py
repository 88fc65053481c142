"""Command-line interface for appauth sign-in and configuration."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

from pathlib import Path
from typing import TYPE_CHECKING

from .auth.prompt import SystemBrowserPrompt
from .auth.session import create_session_manager
from .auth.token_store import TokenRecordStore, get_token_store
from .config import AuthSettings, _user_config_dir
from .exceptions import ConfigurationError, StorageFailure
from .log import enable_debug, set_level


if TYPE_CHECKING:
    from .auth.session import SessionManager


def main() -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="appauth",
        description="Sign in to an OAuth2 identity provider and manage the stored session",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log every login stage to stderr",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("status", help="Show the stored session")

    login_parser = subparsers.add_parser(
        "login",
        help="Sign in through the system browser",
    )
    login_parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Print the authorization URL instead of opening a browser",
    )

    subparsers.add_parser("logout", help="Erase the stored session")
    subparsers.add_parser("token", help="Print the stored access token")

    config_parser = subparsers.add_parser(
        "config",
        help="Show or export configuration",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )
    config_group.add_argument(
        "--sources",
        action="store_true",
        help="Show configuration file sources",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    try:
        settings = AuthSettings()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1

    set_level(settings.log_level)
    if args.debug:
        enable_debug()

    if args.command == "config":
        return handle_config(args, settings)
    if args.command == "status":
        return handle_status(settings)
    if args.command == "login":
        return handle_login(args, settings)
    if args.command == "logout":
        return handle_logout(settings)
    if args.command == "token":
        return handle_token(settings)
    parser.print_help()
    return 0


def _record_store(settings: AuthSettings) -> TokenRecordStore:
    store = get_token_store(
        settings.token_store_backend,
        path=settings.storage_path,
        service_name=settings.keyring_service,
    )
    return TokenRecordStore(store, settings.token_key, settings.profile_key)


def handle_status(settings: AuthSettings) -> int:
    """Handle the status command.

    Parameters
    ----------
    settings : AuthSettings
        Loaded settings.

    Returns
    -------
    int
        ``0`` when signed in, ``1`` otherwise.
    """
    try:
        record = asyncio.run(_record_store(settings).load())
    except StorageFailure as exc:
        print(f"Could not read the stored session: {exc}", file=sys.stderr)
        return 1

    if record is None:
        print("Not signed in")
        return 1
    print("Signed in")
    print(json.dumps(dict(record.profile), indent=2, sort_keys=True))
    return 0


def handle_token(settings: AuthSettings) -> int:
    """Handle the token command.

    Parameters
    ----------
    settings : AuthSettings
        Loaded settings.

    Returns
    -------
    int
        ``0`` when a token was printed, ``1`` otherwise.
    """
    try:
        record = asyncio.run(_record_store(settings).load())
    except StorageFailure as exc:
        print(f"Could not read the stored session: {exc}", file=sys.stderr)
        return 1

    if record is None:
        print("Not signed in", file=sys.stderr)
        return 1
    print(record.access_token)
    return 0


async def _login(manager: SessionManager) -> int:
    try:
        await manager.restore_session()
        result = await manager.login()
    finally:
        await manager.provider.close()

    if not result.success:
        print(f"Sign-in failed ({result.error_kind}): {result.error}", file=sys.stderr)
        return 1
    user = result.session.user or {}
    who = user.get("email") or user.get("name") or user.get("sub") or user.get("id")
    print(f"Signed in as {who}")
    return 0


def handle_login(args: argparse.Namespace, settings: AuthSettings) -> int:
    """Handle the login command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.
    settings : AuthSettings
        Loaded settings.

    Returns
    -------
    int
        ``0`` on successful sign-in, ``1`` otherwise.
    """
    prompt = SystemBrowserPrompt.from_settings(settings)
    if args.no_browser:
        prompt.open_url = _print_url

    try:
        manager = create_session_manager(settings, prompt=prompt)
    except ConfigurationError as exc:
        print(f"Cannot sign in: {exc}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(_login(manager))
    except KeyboardInterrupt:
        print("Sign-in aborted", file=sys.stderr)
        return 1


def _print_url(url: str) -> bool:
    print(f"Open this URL to sign in:\n{url}")
    return True


async def _logout(settings: AuthSettings) -> None:
    try:
        manager = create_session_manager(settings)
    except ConfigurationError:
        # Without provider settings the record can still be erased
        await _record_store(settings).erase()
        return
    try:
        await manager.restore_session()
        await manager.logout()
    finally:
        await manager.provider.close()


def handle_logout(settings: AuthSettings) -> int:
    """Handle the logout command.

    Parameters
    ----------
    settings : AuthSettings
        Loaded settings.

    Returns
    -------
    int
        ``0`` when the stored session was erased, ``1`` otherwise.
    """
    try:
        asyncio.run(_logout(settings))
    except StorageFailure as exc:
        print(f"Could not erase the stored session: {exc}", file=sys.stderr)
        return 1
    print("Signed out")
    return 0


def handle_config(args: argparse.Namespace, settings: AuthSettings) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.
    settings : AuthSettings
        Loaded settings.

    Returns
    -------
    int
        Exit code.
    """
    if args.sources:
        return show_config_sources()
    print(settings.to_env() if args.env else settings.show())
    return 0


def show_config_sources() -> int:
    """Show configuration file sources and their status.

    Returns
    -------
    int
        Exit code.
    """
    sources = [
        ("pyproject.toml [tool.appauth]", Path("pyproject.toml")),
        ("./appauth.toml", Path("appauth.toml")),
        ("User config", _user_config_dir() / "config.toml"),
    ]
    env_file = os.environ.get("APPAUTH_CONFIG_FILE")
    if env_file:
        sources.append(("APPAUTH_CONFIG_FILE", Path(env_file)))

    print("Configuration Sources (in order of precedence):\n")
    print(f"{'Source':<32} {'Status':<12} {'Path'}")
    print("-" * 80)
    print(f"{'Built-in defaults':<32} {'Active':<12}")
    for name, path in sources:
        status = "Found" if path.exists() else "Not found"
        print(f"{name:<32} {status:<12} {path}")

    env_vars = sorted(k for k in os.environ if k.startswith("APPAUTH_"))
    status = f"{len(env_vars)} vars" if env_vars else "No vars"
    print(f"{'Environment variables':<32} {status:<12} {', '.join(env_vars[:3])}")

    print("\nNote: Later sources override earlier ones.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
