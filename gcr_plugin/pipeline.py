from __future__ import annotations

import subprocess
import time
from enum import Enum, auto
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from .models import PlanResult, PluginConfig, Step, StepKind
from .utils import PluginError, SubprocessError, run_command, trace

logger = structlog.stdlib.get_logger(__name__)

MAX_RETRY = 15
RETRY_INTERVAL_S = 1.0

Runner = Callable[..., "subprocess.CompletedProcess[str]"]
Spawn = Callable[..., "subprocess.Popen[Any]"]


class AuthenticationError(PluginError):
    """Raised when ``docker login`` against the registry fails."""


class Phase(Enum):
    DAEMON = auto()
    WAIT_READY = auto()
    AUTHENTICATE = auto()
    BUILD = auto()
    PUBLISH = auto()


def command_daemon(config: PluginConfig) -> List[str]:
    command = [config.dockerd_bin]
    if config.storage_driver:
        command.extend(["-s", config.storage_driver])
    return command


def command_version(config: PluginConfig) -> List[str]:
    return [config.docker_bin, "version"]


def command_info(config: PluginConfig) -> List[str]:
    return [config.docker_bin, "info"]


def command_login(config: PluginConfig) -> List[str]:
    return [
        config.docker_bin,
        "login",
        "-u", "_json_key",
        "-p", config.auth_key,
        config.registry,
    ]


def command_build(config: PluginConfig) -> List[str]:
    command = [
        config.docker_bin,
        "build",
        "--pull=true",
        "--rm=true",
        "-t", config.name,
        "-f", config.dockerfile,
    ]
    for arg in config.build_args:
        command.extend(["--build-arg", arg])
    command.append(config.context)
    return command


def command_tag(config: PluginConfig, tag: str) -> List[str]:
    return [config.docker_bin, "tag", config.name, config.target(tag)]


def command_push(config: PluginConfig, tag: str) -> List[str]:
    return [config.docker_bin, "push", config.target(tag)]


def build_plan(config: PluginConfig) -> Tuple[Step, ...]:
    """Ordered docker invocations that follow a successful login."""

    steps = [
        Step(StepKind.VERSION, tuple(command_version(config))),
        Step(StepKind.INFO, tuple(command_info(config))),
        Step(StepKind.BUILD, tuple(command_build(config))),
    ]
    for tag in config.tags:
        steps.append(Step(StepKind.TAG, tuple(command_tag(config, tag)), tag=tag))
        if not config.dry_run:
            steps.append(Step(StepKind.PUSH, tuple(command_push(config, tag)), tag=tag))
    return tuple(steps)


def describe_plan(config: PluginConfig) -> List[Dict[str, Any]]:
    return [step.to_dict() for step in build_plan(config)]


class DaemonSupervisor:
    """Handle on the background docker daemon.

    The daemon is started once and left running for the lifetime of the step.
    Launch errors and early exits are kept here so the readiness wait can see
    them instead of polling a daemon that is already gone.
    """

    def __init__(self, command: List[str], *, debug: bool = False, spawn: Spawn = subprocess.Popen) -> None:
        self.command = list(command)
        self.debug = debug
        self._spawn = spawn
        self.process: Optional["subprocess.Popen[Any]"] = None
        self.launch_error: Optional[OSError] = None

    def start(self) -> "DaemonSupervisor":
        redirect = None if self.debug else subprocess.DEVNULL
        trace(self.command)
        try:
            self.process = self._spawn(self.command, stdout=redirect, stderr=redirect)
        except OSError as exc:
            self.launch_error = exc
            logger.error("docker daemon failed to launch", error=str(exc))
        return self

    def failure(self) -> Optional[str]:
        """Describe why the daemon is not running, or ``None`` while it is alive."""

        if self.launch_error is not None:
            return f"launch failed: {self.launch_error}"
        if self.process is None:
            return "not started"
        returncode = self.process.poll()
        if returncode is not None:
            return f"exited with code {returncode}"
        return None


class BuildPipeline:
    """Drives the docker daemon and CLI through login, build, tag and push."""

    def __init__(
        self,
        config: PluginConfig,
        *,
        runner: Runner = run_command,
        spawn: Spawn = subprocess.Popen,
        sleep: Callable[[float], None] = time.sleep,
        max_retry: int = MAX_RETRY,
        retry_interval: float = RETRY_INTERVAL_S,
    ) -> None:
        self.config = config
        self._runner = runner
        self._spawn = spawn
        self._sleep = sleep
        self.max_retry = max_retry
        self.retry_interval = retry_interval
        self.daemon: Optional[DaemonSupervisor] = None

    @property
    def _quiet(self) -> Optional[int]:
        return None if self.config.debug else subprocess.DEVNULL

    def start_daemon(self) -> DaemonSupervisor:
        logger.debug("starting phase", phase=Phase.DAEMON.name.lower())
        self.daemon = DaemonSupervisor(
            command_daemon(self.config), debug=self.config.debug, spawn=self._spawn
        ).start()
        return self.daemon

    def wait_until_ready(self, daemon: Optional[DaemonSupervisor] = None) -> bool:
        """Poll ``docker info`` until it succeeds or the retries run out.

        Returns whether the daemon answered. Running out of retries is not an
        error; the login that follows reports an unreachable daemon.
        """

        logger.debug("starting phase", phase=Phase.WAIT_READY.name.lower())
        for attempt in range(1, self.max_retry + 1):
            result = self._runner(
                command_info(self.config), stdout=self._quiet, stderr=self._quiet, check=False
            )
            if result.returncode == 0:
                logger.info("docker daemon ready", attempt=attempt)
                return True
            if daemon is not None:
                reason = daemon.failure()
                if reason is not None:
                    logger.error("docker daemon is not running", reason=reason, attempt=attempt)
                    return False
            logger.debug("docker daemon not ready", attempt=attempt, returncode=result.returncode)
            if attempt < self.max_retry:
                self._sleep(self.retry_interval)
        logger.warning("docker daemon did not become ready", attempts=self.max_retry)
        return False

    def login(self) -> None:
        logger.debug("starting phase", phase=Phase.AUTHENTICATE.name.lower())
        try:
            self._runner(
                command_login(self.config),
                stdout=self._quiet,
                stderr=subprocess.PIPE,
                secrets=(self.config.auth_key,),
            )
        except SubprocessError as exc:
            raise AuthenticationError(f"Error authenticating: {exc}") from exc
        logger.info("authenticated", registry=self.config.registry)

    def run_plan(self, steps: Iterable[Step], result: PlanResult) -> PlanResult:
        for step in steps:
            phase = Phase.PUBLISH if step.kind in (StepKind.TAG, StepKind.PUSH) else Phase.BUILD
            logger.debug("running step", phase=phase.name.lower(), step=step.name)
            try:
                self._runner(step.command)
            except SubprocessError as exc:
                logger.error("step failed", step=step.name, returncode=exc.returncode)
                result.status = "failed"
                result.failed_step = step.name
                result.error = exc
                return result
            result.completed.append(step.name)
        result.status = "completed"
        return result

    def run(self) -> PlanResult:
        """Run every phase in order and report where it stopped."""

        result = PlanResult(status="running")
        self.start_daemon()
        self.wait_until_ready(self.daemon)

        try:
            self.login()
        except AuthenticationError as exc:
            logger.error("login failed", registry=self.config.registry)
            result.status = "failed"
            result.failed_step = "login"
            result.error = exc
            return result
        result.completed.append("login")

        return self.run_plan(build_plan(self.config), result)

    def execute(self) -> PlanResult:
        """Like :meth:`run`, but raise the error that stopped the plugin."""

        result = self.run()
        if not result.ok:
            assert result.error is not None
            raise result.error
        return result
