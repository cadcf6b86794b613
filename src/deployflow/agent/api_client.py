# agent/api_client.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin

from deployflow.model import EventKind, RunReport, Trigger


class APIError(Exception):
    """Raised when API requests fail."""
    pass


@dataclass
class ClaimedRun:
    run_id: str
    trigger: Trigger

    @classmethod
    def from_dict(cls, data: dict) -> "ClaimedRun":
        return cls(
            run_id=data["run_id"],
            trigger=Trigger(
                branch=data["branch"],
                event_kind=EventKind(data.get("event_kind", "push")),
                sha=data.get("sha"),
            ),
        )


def report_to_dict(report: RunReport) -> dict:
    """Terminal statuses and first diagnostics only; never step output or secrets."""
    return {
        "status": report.status.value,
        "instances": [
            {
                "label": inst.label,
                "status": inst.status.value,
                "diagnostics": inst.diagnostics or None,
            }
            for inst in report.instances
        ],
    }


class APIClient:
    """HTTP client for the deployflow control plane."""

    def __init__(self, base_url: str, worker_id: str = "cli"):
        """
        Initialize API client.

        Args:
            base_url: Base URL of the API (e.g., "https://deploy.example.com")
            worker_id: Unique identifier for this worker instance
        """
        self.base_url = base_url.rstrip("/")
        self.worker_id = worker_id

    def _request(self, method: str, path: str, data: Optional[dict] = None) -> dict:
        """
        Make an HTTP request to the API.

        Returns:
            Parsed JSON response, or {} for an empty body (e.g. 204)

        Raises:
            APIError: If the request fails
        """
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        req_data = json.dumps(data).encode("utf-8") if data is not None else None
        req = urllib.request.Request(
            url, data=req_data, headers={"Content-Type": "application/json"}, method=method,
        )

        try:
            with urllib.request.urlopen(req) as response:
                response_data = response.read().decode("utf-8")
                if response_data:
                    return json.loads(response_data)
                return {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(f"API request failed: {e.code} {e.reason}. {error_body}")
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}")

    def submit_trigger(self, trigger: Trigger) -> dict:
        return self._request(
            "POST",
            "/triggers",
            data={"branch": trigger.branch, "event_kind": trigger.event_kind.value, "sha": trigger.sha},
        )

    def claim_run(self) -> Optional[ClaimedRun]:
        """Claim the next queued run, or None when the queue is empty."""
        response = self._request("POST", "/runs/claim", data={"worker_id": self.worker_id})
        if not response or "run_id" not in response:
            return None
        return ClaimedRun.from_dict(response)

    def complete_run(self, run_id: str, report: RunReport) -> None:
        payload = report_to_dict(report)
        payload["worker_id"] = self.worker_id
        self._request("POST", f"/runs/{run_id}/complete", data=payload)

    def fail_run(self, run_id: str, error: str) -> None:
        self._request(
            "POST",
            f"/runs/{run_id}/complete",
            data={
                "worker_id": self.worker_id,
                "status": "failed",
                "instances": [{"label": "(worker)", "status": "failed", "diagnostics": error}],
            },
        )
