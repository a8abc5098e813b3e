"""
Command based cluster controller tests
"""

import subprocess
from unittest import mock

import pytest

from siblingbench.cluster import CommandClusterController
from siblingbench.config import StoreSettings

COMMANDS = {
    "setup": "deploy --request-pool {request_pool} --leeway {leeway_seconds} --gc {gc_interval} --{version}",
    "leave": "riak-admin cluster leave {node}",
    "ping": "ping-node {host}",
    "start": "start-node {name}",
    "staged_join": "riak-admin cluster join {target}",
    "plan_and_commit": ["riak-admin cluster plan", "riak-admin cluster commit"],
}


def completed(returncode=0):
    return subprocess.CompletedProcess(args=[], returncode=returncode)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def controller(clock):
    return CommandClusterController(
        COMMANDS, poll_interval=1.0, start_timeout=5, sleep=clock.sleep, clock=clock
    )


def test_leave_formats_node(controller):
    with mock.patch("subprocess.run", return_value=completed()) as run:
        controller.leave("dev2@127.0.0.2")

    args = run.call_args[0][0]
    assert args == ["riak-admin", "cluster", "leave", "dev2@127.0.0.2"]
    assert run.call_args[1]["check"] is True


def test_plan_and_commit_runs_every_template(controller):
    with mock.patch("subprocess.run", return_value=completed()) as run:
        controller.plan_and_commit("dev2@127.0.0.2")

    assert [c[0][0] for c in run.call_args_list] == [
        ["riak-admin", "cluster", "plan"],
        ["riak-admin", "cluster", "commit"],
    ]


def test_staged_join_formats_target(controller):
    with mock.patch("subprocess.run", return_value=completed()) as run:
        controller.staged_join("dev2@127.0.0.2", "dev1@127.0.0.1")

    assert run.call_args[0][0][-1] == "dev1@127.0.0.1"


def test_setup_passes_store_settings(controller):
    settings = StoreSettings(request_pool=4)

    with mock.patch("subprocess.run", return_value=completed()) as run:
        controller.setup(settings, "previous")

    assert run.call_args[0][0] == [
        "deploy",
        "--request-pool",
        "4",
        "--leeway",
        "5",
        "--gc",
        "10",
        "--previous",
    ]


def test_setup_without_template_is_skipped(clock):
    controller = CommandClusterController({}, sleep=clock.sleep, clock=clock)

    with mock.patch("subprocess.run") as run:
        controller.setup(StoreSettings(request_pool=4), "current")

    run.assert_not_called()


def test_missing_template_is_an_error(clock):
    controller = CommandClusterController({}, sleep=clock.sleep, clock=clock)

    with pytest.raises(ValueError, match="leave"):
        controller.leave("dev2@127.0.0.2")


def test_wait_until_unreachable_polls_ping(controller, clock):
    results = [completed(0), completed(0), completed(1)]

    with mock.patch("subprocess.run", side_effect=results) as run:
        assert controller.wait_until_unreachable("dev2@127.0.0.2", timeout=10)

    assert run.call_count == 3
    assert run.call_args[0][0] == ["ping-node", "127.0.0.2"]
    assert run.call_args[1]["check"] is False
    assert clock.now == 2.0


def test_wait_until_unreachable_times_out(controller, clock):
    with mock.patch("subprocess.run", return_value=completed(0)):
        assert not controller.wait_until_unreachable("dev2@127.0.0.2", timeout=3)

    assert clock.now == 3.0


def test_ping_timeout_counts_as_unreachable(controller):
    with mock.patch(
        "subprocess.run", side_effect=subprocess.TimeoutExpired("ping-node", 1)
    ):
        assert controller.wait_until_unreachable("dev2@127.0.0.2", timeout=3)


def test_start_and_wait_until_node_answers(controller):
    results = [completed(0), completed(1), completed(0)]

    with mock.patch("subprocess.run", side_effect=results) as run:
        controller.start_and_wait("dev2@127.0.0.2")

    assert run.call_args_list[0][0][0] == ["start-node", "dev2"]


def test_start_and_wait_fails_when_node_stays_down(controller):
    def fake_run(args, **kwargs):
        return completed(0 if args[0] == "start-node" else 1)

    with mock.patch("subprocess.run", side_effect=fake_run):
        with pytest.raises(TimeoutError):
            controller.start_and_wait("dev2@127.0.0.2")


def test_failing_command_propagates(controller):
    error = subprocess.CalledProcessError(1, ["riak-admin"])

    with mock.patch("subprocess.run", side_effect=error):
        with pytest.raises(subprocess.CalledProcessError):
            controller.leave("dev2@127.0.0.2")
