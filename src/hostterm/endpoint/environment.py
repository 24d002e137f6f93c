"""Execution environment detection for the terminal process.

Decides which command line becomes the terminal's controlling process.
Inside a container with nsenter available, the shell is started in the
namespaces of the host's init process (pid 1) so the operator lands on
the host. Everywhere else a local interactive shell is used.

Probing never raises: any error while detecting the container counts as
"not in a container", which selects the simpler local shell.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from hostterm.config.settings import DEFAULT_NSENTER_PATH, DEFAULT_SHELL_PATHS, TerminalConfig
from hostterm.domain.models import ExecutionMode

logger = logging.getLogger(__name__)

DOCKER_ENV_MARKER = Path("/.dockerenv")
CGROUP_PATH = Path("/proc/self/cgroup")
CONTAINER_CGROUP_MARKER = "/docker/"

FALLBACK_SHELL = "/bin/sh"
WINDOWS_SHELL = "cmd.exe"

# -t 1 targets the host's init process; then mount, UTS, IPC, network, PID.
NSENTER_ARGS = ("-t", "1", "-m", "-u", "-i", "-n", "-p")


class LaunchPlan(BaseModel):
    """The command line to spawn and the mode it runs in."""

    model_config = ConfigDict(frozen=True)

    command: tuple[str, ...]
    mode: ExecutionMode
    in_container: bool = False

    @property
    def display(self) -> str:
        return " ".join(self.command)


class EnvironmentResolver:
    """Builds the terminal command line for the current environment."""

    def __init__(
        self,
        nsenter_path: str = DEFAULT_NSENTER_PATH,
        shell_paths: list[str] | None = None,
        force_simple: bool = False,
        marker_path: Path = DOCKER_ENV_MARKER,
        cgroup_path: Path = CGROUP_PATH,
        platform: str | None = None,
    ) -> None:
        self._nsenter_path = nsenter_path.strip() or DEFAULT_NSENTER_PATH
        if shell_paths is None:
            shell_paths = DEFAULT_SHELL_PATHS.split(",")
        self._shell_paths = [p.strip() for p in shell_paths if p and p.strip()]
        self._force_simple = force_simple
        self._marker_path = marker_path
        self._cgroup_path = cgroup_path
        self._platform = platform if platform is not None else sys.platform

    @classmethod
    def from_config(cls, config: TerminalConfig) -> EnvironmentResolver:
        return cls(
            nsenter_path=config.nsenter_path,
            shell_paths=config.shell_path_list,
            force_simple=config.use_simple_mode,
        )

    @property
    def nsenter_path(self) -> str:
        return self._nsenter_path

    @property
    def shell_paths(self) -> list[str]:
        return list(self._shell_paths)

    def is_running_in_container(self) -> bool:
        """Check the Docker marker file, then the cgroup membership."""
        try:
            if self._marker_path.exists():
                logger.debug("Found %s, running in a container", self._marker_path)
                return True
            if self._cgroup_path.exists():
                content = self._cgroup_path.read_text(errors="replace")
                if CONTAINER_CGROUP_MARKER in content:
                    logger.debug("Container detected through %s", self._cgroup_path)
                    return True
        except OSError as e:
            logger.warning("Container detection failed, assuming local: %s", e)
            return False
        logger.debug("No container detected, using a local shell")
        return False

    def nsenter_usable(self) -> bool:
        path = self._nsenter_path
        usable = os.path.isfile(path) and os.access(path, os.X_OK)
        if not usable:
            logger.warning("nsenter not usable at %s", path)
        return usable

    def find_shell(self) -> str | None:
        """Return the first configured shell path that exists."""
        for shell in self._shell_paths:
            try:
                if os.path.exists(shell):
                    return shell
            except (OSError, ValueError) as e:
                logger.debug("Error checking shell %s: %s", shell, e)
        return None

    def host_command(self) -> tuple[str, ...]:
        host_shell = self.find_shell()
        if host_shell is None:
            logger.warning("No configured shell found, using %s", FALLBACK_SHELL)
            host_shell = FALLBACK_SHELL
        return (self._nsenter_path, *NSENTER_ARGS, host_shell)

    def local_command(self) -> tuple[str, ...]:
        if self._platform.startswith("win"):
            return (WINDOWS_SHELL,)
        shell = self.find_shell()
        if shell is None:
            logger.debug("Using default shell %s", FALLBACK_SHELL)
            shell = FALLBACK_SHELL
        return (shell, "-i")

    def resolve(self, simple: bool = False) -> LaunchPlan:
        """Pick the command line for the terminal process.

        Args:
            simple: Skip host detection and return a local shell, as the
                ``force_simple`` configuration flag does.
        """
        if simple or self._force_simple:
            logger.debug("Simple mode requested, using a local shell")
            return LaunchPlan(command=self.local_command(), mode=ExecutionMode.SIMPLE)

        in_container = self.is_running_in_container()
        if in_container and self.nsenter_usable():
            command = self.host_command()
            logger.info("Entering host namespaces: %s", " ".join(command))
            return LaunchPlan(command=command, mode=ExecutionMode.HOST, in_container=True)

        return LaunchPlan(
            command=self.local_command(),
            mode=ExecutionMode.SIMPLE,
            in_container=in_container,
        )
