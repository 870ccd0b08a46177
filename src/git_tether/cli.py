import argparse
import logging
import re
import shutil
import subprocess
import sys
import tempfile
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .auth import provider_for
from .backend import WorkingTree
from .config import CONFIG_FILE, Config, parse_time
from .constants import APP_NAME
from .context import Context
from .errors import OperationCancelled, TetherError
from .models import RepositoryIdentity
from .pipeline import PipelineState, SyncPipeline

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)

_IDENT = re.compile(r"^\s*(?P<name>[^<>]+?)\s*<(?P<email>[^<>]*)>\s*$")


def setup_logging(verbose: bool = False, log_file: Path | None = None, max_bytes: int = 0) -> None:
    """Configures the logging subsystem.

    Args:
        verbose (bool): If True, debug messages are emitted.
        log_file (Path | None): Optional file that receives a rotated copy of the log.
        max_bytes (int): Rotation threshold for `log_file`.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file:
        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=5
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def parse_ident(value: str) -> tuple[str, str]:
    """Parses 'Name <email>' into its parts.

    Raises:
        argparse.ArgumentTypeError: If the value is not of that form.
    """
    match = _IDENT.match(value)
    if not match:
        raise argparse.ArgumentTypeError(f"Expected 'Name <email>', got '{value}'")
    return match.group("name"), match.group("email")


def parse_param(value: str) -> tuple[str, str]:
    """Parses a KEY=VALUE repository parameter."""
    key, sep, val = value.partition("=")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got '{value}'")
    return key.strip(), val


def _apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Layers command-line flags on top of the file configuration."""
    git = config.git
    if args.stage:
        git = replace(git, stage_patterns=git.stage_patterns + args.stage)
    if args.stage_all:
        git = replace(git, stage_all_changed=True)
    for attr in ("title", "body", "footer"):
        if (value := getattr(args, attr)) is not None:
            git = replace(git, **{f"commit_{attr}": value})
    if args.author:
        git = replace(git, author_name=args.author[0], author_email=args.author[1])
    if args.committer:
        git = replace(
            git, committer_name=args.committer[0], committer_email=args.committer[1]
        )

    branch = config.branch
    if args.branch:
        branch = replace(branch, name=args.branch)
    if args.create_branch:
        branch = replace(branch, create=True)

    push = config.push
    if args.force:
        push = replace(push, force=True)
    if args.push_unchanged:
        push = replace(push, push_unchanged=True)

    core = config.core
    if args.timeout is not None:
        core = replace(core, timeout=args.timeout)

    return replace(config, git=git, branch=branch, push=push, core=core)


def _exec_mutation(command: str):
    """Builds a mutation callback that runs a shell command in the working tree."""

    def mutate(repo: WorkingTree) -> None:
        logger.debug(f"Running '{command}' in {repo.path}")
        subprocess.run(command, shell=True, cwd=repo.path, check=True)

    return mutate


def run_sync(args: argparse.Namespace) -> int:
    """Executes the `sync` command.

    Returns:
        int: The process exit code.
    """
    config = _apply_overrides(Config.load(args.config), args)
    setup_logging(args.verbose, args.log_file, config.limits.max_log_size)

    try:
        identity = RepositoryIdentity.parse(args.repository, dict(args.param or []))
    except ValueError as e:
        err_console.print(f"[bold red]ERROR:[/bold red] {e}")
        return 2

    options = config.update_options()
    if not options.branch_name:
        # Without an explicit branch, work on the cloned branch itself.
        if not identity.branch:
            err_console.print(
                "[bold red]ERROR:[/bold red] No branch configured. "
                "Pass --branch or --param branch=NAME."
            )
            return 2
        options = replace(options, branch_name=identity.branch)

    try:
        auth_config = config.auth_config()
    except OSError as e:
        err_console.print(f"[bold red]ERROR:[/bold red] Cannot read private key: {e}")
        return 2

    pipeline = SyncPipeline(
        token_provider=provider_for(auth_config),
        git_host=config.core.git_host,
    )
    ctx = Context(timeout=config.core.timeout)
    mutate = _exec_mutation(args.exec) if args.exec else None

    workdir = Path(args.workdir) if args.workdir else None
    tmp_root = None
    if workdir is None:
        tmp_root = Path(tempfile.mkdtemp(prefix=f"{APP_NAME}-"))
        workdir = tmp_root / identity.name

    try:
        with console.status(
            f"[bold blue]Syncing {identity.full_name}...[/bold blue]", spinner="dots"
        ):
            result = pipeline.run(
                identity,
                workdir,
                options,
                auth_config,
                mutate=mutate,
                ctx=ctx,
                push_unchanged=config.push.push_unchanged,
            )
    except OperationCancelled as e:
        err_console.print(f"[bold yellow]CANCELLED:[/bold yellow] {e}")
        return 130
    except TetherError as e:
        err_console.print(f"[bold red]ERROR:[/bold red] {e}")
        return 1
    except subprocess.CalledProcessError as e:
        err_console.print(f"[bold red]ERROR:[/bold red] Command failed: {e}")
        return 1
    finally:
        if tmp_root is not None:
            shutil.rmtree(tmp_root, ignore_errors=True)

    if result.state is PipelineState.NO_OP:
        console.print(
            f"[bold green]SUCCESS:[/bold green] {identity.full_name}: Nothing to commit."
        )
    else:
        console.print(
            f"[bold green]SUCCESS:[/bold green] {identity.full_name}: "
            f"Pushed {options.branch_name} ({result.outcome.commit_id or 'unchanged'})."
        )
    return 0


def run_auth_check(args: argparse.Namespace) -> int:
    """Mints one token to verify the configured credentials."""
    config = Config.load(args.config)
    setup_logging(args.verbose)
    try:
        auth_config = config.auth_config()
        token = provider_for(auth_config).issue(auth_config, Context(timeout=30))
    except OSError as e:
        err_console.print(f"[bold red]ERROR:[/bold red] Cannot read private key: {e}")
        return 2
    except TetherError as e:
        err_console.print(f"[bold red]ERROR:[/bold red] {e}")
        return 1

    expiry = token.expires_at.isoformat() if token.expires_at else "unknown"
    console.print(f"[bold green]SUCCESS:[/bold green] Token issued (expires {expiry}).")
    return 0


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title=f"Configuration Reference ({CONFIG_FILE})", show_lines=True)
    table.add_column("Section", style="cyan", no_wrap=True)
    table.add_column("Key", style="green")
    table.add_column("Default", style="magenta")
    table.add_column("Description")

    rows = [
        ("core", "git_host", "github.com", "Host used to build clone URLs."),
        ("core", "api_url", "(derived)", "REST API root for token requests."),
        ("core", "timeout", "none", "Time limit for one run (e.g. '10m')."),
        ("limits", "max_log_size", "5MB", "Rotation threshold for --log-file."),
        ("auth", "app_id", '""', "App identifier used to sign the JWT."),
        ("auth", "installation_id", '""', "Installation the token is scoped to."),
        ("auth", "private_key_path", '""', "PEM private key of the app."),
        ("auth", "token_env", "GITHUB_TOKEN", "Variable holding a static token."),
        ("git", "stage_patterns", "[]", "Glob patterns staged in order."),
        ("git", "stage_all_changed", "false", "Commit all tracked modifications."),
        ("git", "commit_title", '""', "First line of the commit message."),
        ("git", "commit_body", '""', "Optional commit body."),
        ("git", "commit_footer", '""', "Optional footer after a '-- ' line."),
        ("git", "author_name / author_email", '""', "Commit author."),
        ("git", "committer_name / committer_email", "(author)", "Committer."),
        ("branch", "name", '""', "Branch to commit on and push."),
        ("branch", "create", "false", "Create the branch instead of tracking it."),
        ("push", "force", "false", "Overwrite the remote branch history."),
        ("push", "push_unchanged", "false", "Push even when nothing changed."),
    ]
    for row in rows:
        table.add_row(*row)
    console.print(table)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the Git Tether CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Clone a repository, commit changes and push them back.",
    )
    parser.add_argument(
        "--config", type=Path, default=None, help="Extra TOML configuration file"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command")

    sync_parser = subparsers.add_parser(
        "sync", help="Clone, switch branch, commit and push one repository"
    )
    sync_parser.add_argument("repository", help="Repository slug (OWNER/REPO)")
    sync_parser.add_argument(
        "--param",
        action="append",
        type=parse_param,
        metavar="KEY=VALUE",
        help="Repository parameter (e.g. branch=develop)",
    )
    sync_parser.add_argument("--workdir", help="Clone destination (default: temp dir)")
    sync_parser.add_argument("--branch", help="Branch to commit on and push")
    sync_parser.add_argument(
        "--create-branch", action="store_true", help="Create the branch locally"
    )
    sync_parser.add_argument(
        "--force", "-f", action="store_true", help="Force-push the branch"
    )
    sync_parser.add_argument(
        "--stage", action="append", metavar="PATTERN", help="Glob pattern to stage"
    )
    sync_parser.add_argument(
        "--stage-all", action="store_true", help="Commit all tracked modifications"
    )
    sync_parser.add_argument("--title", help="Commit title")
    sync_parser.add_argument("--body", help="Commit body")
    sync_parser.add_argument("--footer", help="Commit footer")
    sync_parser.add_argument("--author", type=parse_ident, help="'Name <email>'")
    sync_parser.add_argument("--committer", type=parse_ident, help="'Name <email>'")
    sync_parser.add_argument(
        "--exec", metavar="CMD", help="Shell command run in the working tree"
    )
    sync_parser.add_argument(
        "--timeout", type=parse_time, help="Time limit for the run (e.g. '10m')"
    )
    sync_parser.add_argument(
        "--push-unchanged", action="store_true", help="Push even if nothing changed"
    )
    sync_parser.add_argument("--log-file", type=Path, help="Also log to this file")

    subparsers.add_parser("auth-check", help="Mint a token to verify credentials")

    subparsers.add_parser(
        "config", help="List all available configuration options"
    )

    args = parser.parse_args(argv)

    if args.command == "sync":
        sys.exit(run_sync(args))
    elif args.command == "auth-check":
        sys.exit(run_auth_check(args))
    elif args.command == "config":
        show_config_reference()
        return

    parser.print_help()


if __name__ == "__main__":
    main()
