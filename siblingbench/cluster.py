"""
Cluster membership control

The benchmark only needs a handful of membership operations. The command
based controller maps each one onto a shell command template, so any
deployment tool (riak-admin, docker compose, ssh wrappers) can be plugged in
from the configuration file.

Template placeholders: {node}, {name}, {host}, {target}, {target_name},
{target_host}, {version} and, for ``setup``, every StoreSettings field.
"""

import logging
import shlex
import subprocess
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Mapping, Optional, Union

from siblingbench.config import StoreSettings, split_node

logger = logging.getLogger(__name__)

CommandTemplate = Union[str, List[str]]


class ClusterController(ABC):
    def setup(self, settings: StoreSettings, version: str) -> None:
        """Apply the store configuration block; no-op unless overridden."""

    @abstractmethod
    def leave(self, node: str) -> None:
        pass

    @abstractmethod
    def wait_until_unreachable(self, node: str, timeout: float) -> bool:
        """Block until `node` stops answering; False if `timeout` expires first."""

    @abstractmethod
    def start_and_wait(self, node: str) -> None:
        pass

    @abstractmethod
    def staged_join(self, node: str, target: str) -> None:
        pass

    @abstractmethod
    def plan_and_commit(self, node: str) -> None:
        pass


class CommandClusterController(ClusterController):
    """Runs configured command templates through subprocess"""

    def __init__(
        self,
        commands: Mapping[str, CommandTemplate],
        command_timeout: float = 120.0,
        start_timeout: float = 60.0,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.commands: Dict[str, CommandTemplate] = dict(commands)
        self.command_timeout = command_timeout
        self.start_timeout = start_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def _template(self, operation: str) -> Optional[List[str]]:
        template = self.commands.get(operation)
        if template is None:
            return None
        if isinstance(template, str):
            return [template]
        return list(template)

    def _fields(self, node: str = "", target: str = "", **extra) -> Dict[str, str]:
        name, host = split_node(node)
        target_name, target_host = split_node(target)
        values = {
            "node": node,
            "name": name,
            "host": host,
            "target": target,
            "target_name": target_name,
            "target_host": target_host,
        }
        values.update({k: str(v) for k, v in extra.items()})
        return values

    def _run(self, operation: str, check: bool = True, **fields) -> int:
        templates = self._template(operation)
        if templates is None:
            raise ValueError(f"no command configured for cluster operation '{operation}'")

        values = self._fields(**fields)
        returncode = 0
        for template in templates:
            args = shlex.split(template.format(**values))
            logger.debug("running %s", " ".join(args))
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
                check=check,
            )
            returncode = result.returncode
            if returncode != 0:
                break
        return returncode

    def _is_reachable(self, node: str) -> bool:
        try:
            return self._run("ping", check=False, node=node) == 0
        except subprocess.TimeoutExpired:
            return False

    def _wait_for(self, node: str, reachable: bool, timeout: float) -> bool:
        deadline = self._clock() + timeout
        while True:
            if self._is_reachable(node) == reachable:
                return True
            if self._clock() >= deadline:
                return False
            self._sleep(self.poll_interval)

    def setup(self, settings: StoreSettings, version: str) -> None:
        if self._template("setup") is None:
            logger.info(
                "no setup command configured; expecting store settings %s", settings
            )
            return
        self._run("setup", version=version, **settings.to_dict())

    def leave(self, node: str) -> None:
        self._run("leave", node=node)

    def wait_until_unreachable(self, node: str, timeout: float) -> bool:
        return self._wait_for(node, reachable=False, timeout=timeout)

    def start_and_wait(self, node: str) -> None:
        self._run("start", node=node)
        if not self._wait_for(node, reachable=True, timeout=self.start_timeout):
            raise TimeoutError(f"node {node} did not come up within {self.start_timeout}s")

    def staged_join(self, node: str, target: str) -> None:
        self._run("staged_join", node=node, target=target)

    def plan_and_commit(self, node: str) -> None:
        self._run("plan_and_commit", node=node)
