# agent/worker.py
from __future__ import annotations

import signal
import time
from typing import Callable

from deployflow.model import Pipeline, RunReport, Trigger
from deployflow.ui.console import get_console

from .api_client import APIClient, APIError, ClaimedRun

RunFn = Callable[[Pipeline, Trigger], RunReport]


class Worker:
    """Polls the control plane for queued runs and executes them locally."""

    def __init__(
        self,
        api_client: APIClient,
        pipeline: Pipeline,
        run_fn: RunFn,
        poll_interval: int = 5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_client = api_client
        self.pipeline = pipeline
        self.run_fn = run_fn
        self.poll_interval = poll_interval
        self._sleep = sleep
        self.running = True

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        get_console().print_info(f"\nReceived signal {signum}, finishing current run then stopping...")
        self.running = False

    def run(self, max_runs: int | None = None) -> int:
        """Run the worker loop; returns how many runs were executed."""
        console = get_console()
        console.print_worker_started(
            worker_id=self.api_client.worker_id,
            api=self.api_client.base_url,
            poll_interval=self.poll_interval,
        )

        executed = 0
        while self.running and (max_runs is None or executed < max_runs):
            try:
                claimed = self.api_client.claim_run()
            except APIError as e:
                console.print_error("API error", str(e), suggestion="Check API connectivity and retry.")
                self._sleep(self.poll_interval)
                continue

            if claimed is None:
                self._sleep(self.poll_interval)
                continue

            self.execute(claimed)
            executed += 1

        console.print_info("Worker stopped.")
        return executed

    def execute(self, claimed: ClaimedRun) -> None:
        console = get_console()
        console.print_run_claimed(claimed.run_id, claimed.trigger)
        start = time.time()

        try:
            report = self.run_fn(self.pipeline, claimed.trigger)
        except Exception as e:
            console.print_exception(e)
            try:
                self.api_client.fail_run(claimed.run_id, f"{type(e).__name__}: {e}")
            except APIError as api_err:
                console.print_error("Failed to send completion", f"Could not report run failure: {api_err}")
            return

        console.print_results(report)
        console.print_info(f"Duration: {time.time() - start:.1f}s")
        try:
            self.api_client.complete_run(claimed.run_id, report)
        except APIError as api_err:
            console.print_error("Failed to send completion", f"Could not send run results: {api_err}")
