"""Command-line interface.

Provides:
- `serve`: run the repository server in the foreground
- `auth`: manage the htpasswd credential file
- `acl`: manage the TOML access control file
"""

import argparse
import logging
import sys
from pathlib import Path

from rest_server import __version__
from rest_server.acl import Acl, AccessType
from rest_server.config import ServerConfig
from rest_server.context import ServerContext
from rest_server.errors import ConfigError
from rest_server.htpasswd import Htpasswd
from rest_server.httpd import create_server

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )


def _setup_access_log(path: Path):
    """Send access log lines to a file instead of the console."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))
    access_logger = logging.getLogger("rest_server.access")
    access_logger.addHandler(handler)
    access_logger.propagate = False


def _build_config(args) -> ServerConfig:
    """Load the config file (if any) and apply command-line overrides."""
    config = ServerConfig.from_file(args.config) if args.config else ServerConfig()
    return config.merge({
        "listen": args.listen,
        "data_dir": args.path,
        "quota": args.quota,
        "disable_auth": args.no_auth,
        "htpasswd_file": args.htpasswd_file,
        "acl_path": args.acl,
        "private_repos": args.private_repos,
        "append_only": args.append_only,
        "tls": args.tls,
        "tls_cert": args.tls_cert,
        "tls_key": args.tls_key,
        "cert_dir": args.cert_dir,
        "log_level": args.log_level,
        "access_log": args.log,
    })


def _handle_serve(argv):
    """Handle 'serve': run the server in the foreground."""
    parser = argparse.ArgumentParser(
        prog="rest-server serve",
        description="Run the repository server",
    )
    parser.add_argument("--config", "-c", type=Path, help="YAML configuration file")
    parser.add_argument("--listen", help="Listen address (default: localhost:8000)")
    parser.add_argument("--path", type=Path, help="Data directory (default: /tmp/restic)")
    parser.add_argument("--quota", help="Warn when a repository grows beyond this size (e.g. 500G)")

    # Auth / ACL
    parser.add_argument("--no-auth", action="store_true", default=None, help="Disable authentication")
    parser.add_argument("--htpasswd-file", type=Path, help="Credential file (default: <path>/.htpasswd)")
    parser.add_argument("--acl", type=Path, help="ACL file (TOML)")
    parser.add_argument(
        "--private-repos", action="store_true", default=None,
        help="Users may only access the repository named after them",
    )
    parser.add_argument(
        "--append-only", action="store_true", default=None,
        help="Deny deletion and overwriting for repositories without ACL entries",
    )

    # TLS options
    parser.add_argument("--tls", action="store_true", default=None, help="Enable TLS")
    parser.add_argument("--tls-cert", type=Path, help="TLS certificate (self-signed if omitted)")
    parser.add_argument("--tls-key", type=Path, help="TLS private key")
    parser.add_argument("--cert-dir", type=Path, help="Directory for the self-signed certificate")

    # Logging
    parser.add_argument("--log", type=Path, help="Write the access log to this file")
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"], help="Log level")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    try:
        config = _build_config(args)
        if not args.verbose:
            logging.getLogger().setLevel(config.log_level.upper())
        if config.access_log:
            _setup_access_log(config.access_log)
        context = ServerContext.from_config(config)
    except (ConfigError, OSError) as e:
        logger.error("Configuration error: %s", e)
        return 1

    server = create_server(context)
    try:
        server.start()
    except RuntimeError as e:
        logger.error("Failed to start server: %s", e)
        return 1

    print(f"\nServer running at {server.url}")
    if context.tls:
        print(f"Certificate fingerprint: {context.tls.fingerprint}")
    print("\nPress Ctrl+C to stop...")

    server.serve_forever()
    return 0


def _handle_auth(argv):
    """Handle 'auth': add, update, delete or list users."""
    parser = argparse.ArgumentParser(
        prog="rest-server auth",
        description="Manage the htpasswd credential file",
    )
    parser.add_argument("action", choices=["add", "update", "delete", "list"])
    parser.add_argument("--file", "-f", type=Path, required=True, help="htpasswd file")
    parser.add_argument("--user", "-u", help="User name")
    parser.add_argument("--password", "-p", help="Password")

    args = parser.parse_args(argv)

    try:
        htpasswd = Htpasswd.from_file(args.file)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.action == "list":
        for name in htpasswd.users():
            print(name)
        return 0

    if not args.user:
        print("Error: --user is required", file=sys.stderr)
        return 1
    if ":" in args.user:
        print("Error: user names must not contain ':'", file=sys.stderr)
        return 1

    if args.action == "delete":
        if not htpasswd.delete(args.user):
            print(f"Error: user {args.user} does not exist", file=sys.stderr)
            return 1
    else:
        if args.password is None:
            print("Error: --password is required", file=sys.stderr)
            return 1
        try:
            if args.action == "add":
                htpasswd.create(args.user, args.password)
            else:
                htpasswd.update(args.user, args.password)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    try:
        htpasswd.save()
    except OSError as e:
        print(f"Error: cannot write {args.file}: {e}", file=sys.stderr)
        return 1

    print(f"User {args.user}: {args.action} done")
    return 0


def _handle_acl(argv):
    """Handle 'acl': set, remove or list entries."""
    parser = argparse.ArgumentParser(
        prog="rest-server acl",
        description="Manage the ACL file",
    )
    parser.add_argument("action", choices=["set", "remove", "list"])
    parser.add_argument("--file", "-f", type=Path, required=True, help="ACL file (TOML)")
    parser.add_argument("--repo", "-r", help="Repository name ('default' for the default repository)")
    parser.add_argument("--user", "-u", help="User name")
    parser.add_argument("--access", "-a", help="Nothing, Read, Append or Modify")

    args = parser.parse_args(argv)

    try:
        acl = Acl.from_file(args.file if args.file.exists() else None)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.action == "list":
        for repo, users in sorted(acl.to_dict().items()):
            for user, access in sorted(users.items()):
                print(f"{repo}\t{user}\t{access}")
        return 0

    if not args.repo or args.user is None:
        print("Error: --repo and --user are required", file=sys.stderr)
        return 1

    if args.action == "set":
        if not args.access:
            print("Error: --access is required", file=sys.stderr)
            return 1
        try:
            access = AccessType.parse(args.access)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        acl.set(args.repo, args.user, access)
    elif not acl.remove(args.repo, args.user):
        print(f"Error: no entry for {args.user} in {args.repo}", file=sys.stderr)
        return 1

    try:
        acl.save(args.file)
    except OSError as e:
        print(f"Error: cannot write {args.file}: {e}", file=sys.stderr)
        return 1
    return 0


def main(argv=None):
    """CLI entry point.

    Dispatches to serve/auth/acl subcommands.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    subcommands = {
        "serve": _handle_serve,
        "auth": _handle_auth,
        "acl": _handle_acl,
    }

    if not argv or argv[0] in ("-h", "--help"):
        print("Usage: rest-server <command> [options]")
        print()
        print("Commands:")
        print("  serve    Run the repository server")
        print("  auth     Manage users in the htpasswd file")
        print("  acl      Manage the access control file")
        print()
        print("Run 'rest-server <command> --help' for command-specific options.")
        return 0

    if argv[0] == "--version":
        print(f"rest-server {__version__}")
        return 0

    subcmd = argv[0]
    if subcmd not in subcommands:
        print(f"Error: Unknown command '{subcmd}'")
        print(f"Available commands: {', '.join(subcommands)}")
        return 1

    return subcommands[subcmd](argv[1:])


if __name__ == "__main__":
    sys.exit(main())
