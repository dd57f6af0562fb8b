"""
Command-line interface for gbuild.

This module provides the `gbuild` CLI tool for building workspaces of Go
packages and commands without hand-written Makefiles.

Examples:
    gbuild                  # Build everything under the current directory
    gbuild -i               # Build and install
    gbuild -c               # Clean everything
    gbuild -t pkg/util      # Build and test one directory
    gbuild -e cmd/tool      # Act on exactly cmd/tool, not its subdirectories
    gbuild -S --files       # List units, their dependencies and files
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence, TextIO

from gbuild import __version__
from gbuild.build.build_context import RunConfig, ToolchainEnv
from gbuild.build.orchestrator import EXIT_CONFIG, WorkspaceOrchestrator
from gbuild.output import init_timer, log_error, log_header, set_output_file, set_verbose
from gbuild.packages.errors import ConfigurationError

EXIT_INTERRUPTED = 130


def create_parser() -> argparse.ArgumentParser:
    """Build the argument parser. Short flags combine, e.g. `gbuild -ict`."""
    parser = argparse.ArgumentParser(
        prog="gbuild",
        usage="gbuild [-options] [directory list]",
        description="Build a workspace of Go packages and commands by convention",
    )
    parser.add_argument("--version", action="version", version=f"gbuild {__version__}")
    parser.add_argument("directories", nargs="*", help="Directories to act on (default: all)")
    parser.add_argument("-i", "--install", action="store_true", help="Install built targets")
    parser.add_argument("-c", "--clean", action="store_true", help="Remove build artifacts")
    parser.add_argument("-b", "--build", action="store_true", help="Build even when cleaning")
    parser.add_argument("-s", "--scan", action="store_true", help="Scan and list units, do not build")
    parser.add_argument("-S", "--scan-list", action="store_true", help="Scan and list units with their dependencies")
    parser.add_argument("--files", action="store_true", help="With -s/-S, list each unit's source files")
    parser.add_argument("-t", "--test", action="store_true", help="Build and run tests of listed packages")
    parser.add_argument("-e", "--exclusive", action="store_true", help="Act on exactly the listed directories")
    parser.add_argument("-v", "--verbose", action="store_true", help="Echo tool commands and their output")
    parser.add_argument("-m", "--makefiles", action="store_true", help="Use existing Makefiles when present")
    parser.add_argument("-g", "--fetch", action="store_true", help="Fetch missing remote packages with goinstall")
    parser.add_argument("-u", "--update", action="store_true", help="Refetch remote packages (implies -g)")
    parser.add_argument("-p", "--parallel", action="store_true", help="Build independent units concurrently")
    parser.add_argument("-f", "--force", action="store_true", help="Never ask for confirmation")
    parser.add_argument("-N", "--nuke", action="store_true", help="Clean also removes installed artifacts")
    parser.add_argument("-j", "--jobs", type=int, default=None, help="Maximum concurrent tool processes (default: CPU count)")
    parser.add_argument("--no-cmds", action="store_true", help="Do not act on commands")
    parser.add_argument("--no-pkgs", action="store_true", help="Do not act on packages")
    parser.add_argument("--no-tui", action="store_true", help="Disable the live progress table")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write all output to this file")
    return parser


def config_from_args(args: argparse.Namespace, is_tty: bool) -> RunConfig:
    """Translate parsed arguments into a RunConfig."""
    if args.jobs is not None and args.jobs < 1:
        raise ConfigurationError(f"--jobs must be at least 1, got {args.jobs}")
    return RunConfig.create(
        build=args.build,
        install=args.install,
        clean=args.clean,
        test=args.test,
        scan=args.scan,
        scan_list=args.scan_list,
        listed_dirs=args.directories,
        max_jobs=args.jobs,
        list_files=args.files,
        do_cmds=not args.no_cmds,
        do_pkgs=not args.no_pkgs,
        exclusive=args.exclusive,
        makefiles=args.makefiles,
        fetch=args.fetch or args.update,
        fetch_update=args.update,
        concurrent=args.parallel,
        verbose=args.verbose,
        force=args.force,
        nuke=args.nuke,
        use_tui=is_tty and not args.no_tui and not args.verbose,
    )


def ask(question: str) -> bool:
    """Ask a yes/no question on the terminal."""
    try:
        answer = input(f"{question} (y/n) ")
    except EOFError:
        return False
    return answer.strip() in ("y", "Y")


def run(argv: Optional[Sequence[str]] = None, workspace: Optional[Path] = None) -> int:
    """Run gbuild and return the process exit status."""
    args = create_parser().parse_args(argv)

    init_timer()
    set_verbose(args.verbose)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format="%(name)s: %(message)s")

    log_file: Optional[TextIO] = None
    try:
        if args.log_file is not None:
            log_file = open(args.log_file, "w", encoding="utf-8")
            set_output_file(log_file)

        log_header("gbuild workspace builder", __version__)
        config = config_from_args(args, _is_tty())
        env = ToolchainEnv.from_environ()
        orchestrator = WorkspaceOrchestrator(
            workspace if workspace is not None else Path.cwd(),
            env,
            config,
            confirm=ask,
        )
        return orchestrator.run().exit_code

    except ConfigurationError as e:
        log_error(str(e))
        return EXIT_CONFIG

    except KeyboardInterrupt:
        log_error("Build interrupted")
        return EXIT_INTERRUPTED

    finally:
        if log_file is not None:
            set_output_file(None)
            log_file.close()


def _is_tty() -> bool:
    """Check if stdout is a terminal (TTY)."""
    try:
        return sys.stdout.isatty()
    except (AttributeError, ValueError):
        return False


def main() -> None:
    """gbuild - convention-based workspace builder."""
    sys.exit(run())


if __name__ == "__main__":
    main()
