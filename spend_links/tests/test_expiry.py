import threading

from ..services import ExpirySweeper
from ..services.expiry import SWEEP_JOB_ID


def test_sweeper_runs_until_stopped() -> None:
    calls = []
    ran_twice = threading.Event()

    def run_once() -> int:
        calls.append(1)
        if len(calls) >= 2:
            ran_twice.set()
        return 0

    sweeper = ExpirySweeper(run_once, interval_seconds=0.05)
    sweeper.start()
    assert sweeper.running
    assert sweeper.scheduler.get_job(SWEEP_JOB_ID) is not None
    assert ran_twice.wait(timeout=5)
    sweeper.stop()

    assert not sweeper.running


def test_sweeper_survives_failing_runs() -> None:
    outcomes = []
    recovered = threading.Event()

    def run_once() -> int:
        outcomes.append(len(outcomes))
        if len(outcomes) == 1:
            raise RuntimeError("database unavailable")
        recovered.set()
        return 1

    sweeper = ExpirySweeper(run_once, interval_seconds=0.05)
    sweeper.start()
    assert recovered.wait(timeout=5)
    sweeper.stop()


def test_zero_interval_disables_sweeper() -> None:
    sweeper = ExpirySweeper(lambda: 0, interval_seconds=0)
    sweeper.start()
    assert not sweeper.running
    sweeper.stop()
