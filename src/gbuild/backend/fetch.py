"""Remote package fetching through the toolchain's fetcher (goinstall)."""

import logging
import threading
from pathlib import Path

from gbuild.build.build_context import RunConfig, ToolchainEnv
from gbuild.output import log
from gbuild.packages.errors import BackendError
from gbuild.packages.resolver import prebuilt_time
from gbuild.subprocess_utils import run_external

from .toolchain import Toolchain

logger = logging.getLogger(__name__)


class Fetcher:
    """Fetches and installs remote packages, each at most once per run.

    Several units may depend on the same remote package; concurrent requests
    for it wait for the first fetch and share its result.

    Args:
        toolchain: Resolved toolchain programs (uses toolchain.fetcher)
        env: Toolchain environment (install locations of fetched archives)
        config: Run configuration (fetch_update adds -u, verbosity)
        workspace: Directory the fetcher runs in
    """

    def __init__(self, toolchain: Toolchain, env: ToolchainEnv, config: RunConfig, workspace: Path) -> None:
        self.toolchain = toolchain
        self.env = env
        self.config = config
        self.workspace = workspace
        self._lock = threading.Lock()
        self._dep_locks: dict[str, threading.Lock] = {}
        self._results: dict[str, int] = {}
        self._failures: dict[str, BackendError] = {}

    def _dep_lock(self, dep: str) -> threading.Lock:
        with self._lock:
            return self._dep_locks.setdefault(dep, threading.Lock())

    def fetch(self, dep: str) -> int:
        """Fetch one remote package.

        Returns:
            Modification time of the installed archive.

        Raises:
            BackendError: If the fetcher fails or installs no archive.
        """
        with self._dep_lock(dep):
            if dep in self._results:
                return self._results[dep]
            if dep in self._failures:
                raise self._failures[dep]

            args = ["-u", dep] if self.config.fetch_update else [dep]
            argv = [Path(self.toolchain.fetcher).name, *args]
            log(f'Fetching "{dep}"')
            try:
                run_external(self.toolchain.fetcher, self.workspace, argv, self.config.verbose, phase="fetch")
                when = prebuilt_time(dep, self.env)
                if not when:
                    raise BackendError(f'{argv[0]} did not install "{dep}"', phase="fetch")
            except BackendError as e:
                self._failures[dep] = e
                raise
            logger.debug("Fetched %s (archive time %d)", dep, when)
            self._results[dep] = when
            return when
