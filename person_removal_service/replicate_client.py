"""
Minimal client for the Replicate prediction API.

Every remote model the service depends on (segmentation, box detection,
inpainting) is reached through `ReplicateClient.run`, which creates a
prediction and polls it until it reaches a terminal state. The client is
constructed explicitly and injected into the adapters that need it.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from .errors import PipelineCancelled, RemoteServiceError

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {"succeeded", "failed", "canceled"}
MAX_PREFER_WAIT = 60  # seconds Replicate holds a create call open at most
PREFER_WAIT_MARGIN = 5


def split_model_ref(model_ref: str) -> Tuple[str, Optional[str]]:
    """Split `owner/name:version` into (`owner/name`, version)."""
    name, sep, version = model_ref.partition(":")
    if "/" not in name:
        raise ValueError(f"Model reference must look like owner/name[:version], got {model_ref!r}")
    return name, (version if sep else None)


class ReplicateClient:
    def __init__(
        self,
        api_token: Optional[str],
        base_url: str = "https://api.replicate.com/v1",
        connect_timeout: float = 5.0,
        request_timeout: float = 30.0,
        poll_interval: float = 1.0,
        prediction_timeout: float = 300.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.timeout = (connect_timeout, request_timeout)
        self.poll_interval = poll_interval
        self.prediction_timeout = prediction_timeout
        self._session = session or requests.Session()
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings) -> "ReplicateClient":
        return cls(
            api_token=settings.replicate_api_token,
            base_url=settings.replicate_base_url,
            connect_timeout=settings.connect_timeout_seconds,
            request_timeout=settings.request_timeout_seconds,
            poll_interval=settings.poll_interval_seconds,
            prediction_timeout=settings.prediction_timeout_seconds,
        )

    def _headers(self) -> Dict[str, str]:
        if not self.api_token:
            raise RuntimeError("REPLICATE_API_TOKEN is not configured")
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        url: str,
        payload: Optional[dict] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        headers = {**self._headers(), **(extra_headers or {})}
        try:
            resp = self._session.request(method, url, json=payload, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as exc:
            raise RemoteServiceError(f"{method} {url} failed: {exc}") from exc
        except ValueError as exc:
            raise RemoteServiceError(f"{method} {url} returned invalid JSON") from exc

    def _prefer_wait_seconds(self) -> Optional[int]:
        """Seconds to ask Replicate to hold the create call, always under the read timeout."""
        seconds = min(MAX_PREFER_WAIT, int(self.timeout[1]) - PREFER_WAIT_MARGIN)
        return seconds if seconds >= 1 else None

    def _create(self, model_ref: str, inputs: Dict[str, Any]) -> Dict[str, Any]:
        name, version = split_model_ref(model_ref)
        wait = self._prefer_wait_seconds()
        extra_headers = {"Prefer": f"wait={wait}"} if wait is not None else None
        if version:
            url, payload = f"{self.base_url}/predictions", {"version": version, "input": inputs}
        else:
            url, payload = f"{self.base_url}/models/{name}/predictions", {"input": inputs}
        return self._request("POST", url, payload, extra_headers=extra_headers)

    def _poll_url(self, prediction: Dict[str, Any]) -> str:
        urls = prediction.get("urls") or {}
        if urls.get("get"):
            return urls["get"]
        if prediction.get("id"):
            return f"{self.base_url}/predictions/{prediction['id']}"
        raise RemoteServiceError("Prediction response carries neither an id nor a poll URL")

    def _cancel(self, prediction: Dict[str, Any]) -> None:
        urls = prediction.get("urls") or {}
        url = urls.get("cancel")
        if not url and prediction.get("id"):
            url = f"{self.base_url}/predictions/{prediction['id']}/cancel"
        if not url:
            return
        try:
            self._request("POST", url)
        except RemoteServiceError as exc:
            logger.warning("Could not cancel prediction %s: %s", prediction.get("id"), exc)

    def _wait(self, seconds: float, cancel: Optional[threading.Event]) -> None:
        if cancel is not None:
            cancel.wait(seconds)
        else:
            self._sleep(seconds)

    def run(
        self,
        model_ref: str,
        inputs: Dict[str, Any],
        cancel: Optional[threading.Event] = None,
    ) -> Any:
        """
        Run a prediction to completion and return its output.

        Raises:
            RemoteServiceError: on HTTP errors, failed/cancelled predictions,
                or when the prediction deadline passes.
            PipelineCancelled: when `cancel` is set while waiting.
        """
        logger.debug("Creating prediction for %s", model_ref)
        prediction = self._create(model_ref, inputs)
        deadline = self._clock() + self.prediction_timeout

        while prediction.get("status") not in TERMINAL_STATUSES:
            if cancel is not None and cancel.is_set():
                self._cancel(prediction)
                raise PipelineCancelled(f"Prediction for {model_ref} cancelled")
            if self._clock() >= deadline:
                self._cancel(prediction)
                raise RemoteServiceError(
                    f"Prediction for {model_ref} did not finish within {self.prediction_timeout:.0f}s"
                )
            self._wait(self.poll_interval, cancel)
            prediction = self._request("GET", self._poll_url(prediction))

        status = prediction["status"]
        if status != "succeeded":
            raise RemoteServiceError(
                f"Prediction for {model_ref} {status}: {prediction.get('error') or 'no error given'}"
            )
        logger.debug("Prediction %s for %s succeeded", prediction.get("id"), model_ref)
        return prediction.get("output")
