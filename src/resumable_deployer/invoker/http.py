"""HTTP action invoker for provisioning backends with an operations API."""

from __future__ import annotations

import logging
import os
import time
from typing import TYPE_CHECKING, Any, Dict, Optional

import requests

from ..errors import RemoteCallError
from .base import ActionInvoker, Confirmation, Handle, Operation

if TYPE_CHECKING:
    from ..config import InvokerConfig

logger = logging.getLogger(__name__)

_CONFIRMED = {"confirmed", "succeeded", "success"}
_FAILED = {"failed", "rejected", "reverted", "error"}


class HttpActionInvoker(ActionInvoker):
    """Submits operations to ``POST /operations`` and polls ``GET /operations/<id>``."""

    def __init__(self, config: "InvokerConfig", session: Optional[requests.Session] = None):
        """
        Initialize the invoker.

        Args:
            config: Invoker configuration with endpoint and optional api_key
            session: Pre-built session (tests inject one)
        """
        if not config.endpoint:
            raise ValueError("Invoker endpoint is required")

        self.config = config
        self.base_url = config.endpoint.rstrip("/")
        self.session = session or requests.Session()

        proxy = config.proxy or os.environ.get("HTTPS_PROXY") or os.environ.get("HTTP_PROXY")
        if proxy:
            self.session.proxies = {"http": proxy, "https": proxy}
            logger.info("Invoker using proxy: %s", proxy)

        self.session.headers.update({"Content-Type": "application/json"})
        if config.api_key:
            self.session.headers.update({"Authorization": f"Bearer {config.api_key}"})

    def submit(self, operation: Operation) -> Handle:
        data = self._request("POST", "/operations", json=operation.to_dict())
        reference = data.get("id") or data.get("reference")
        if not reference:
            raise RemoteCallError(f"Backend accepted '{operation.kind}' but returned no operation id")
        logger.info("   Operation sent: %s (%s)", reference, operation.kind)
        return Handle(reference=str(reference), operation=operation)

    def await_confirmation(self, handle: Handle) -> Confirmation:
        deadline = time.monotonic() + self.config.confirmation_timeout
        while True:
            data = self._request("GET", f"/operations/{handle.reference}")
            status = str(data.get("status", "")).lower()

            if status in _CONFIRMED:
                metadata = {str(k): str(v) for k, v in (data.get("metadata") or {}).items()}
                confirmation = Confirmation(
                    reference=handle.reference,
                    identifier=str(data.get("identifier") or ""),
                    metadata=metadata,
                )
                logger.info("   Operation confirmed: %s", handle.reference)
                return confirmation

            if status in _FAILED:
                reason = data.get("error") or data.get("reason") or status
                raise RemoteCallError(
                    f"Operation '{handle.operation.kind}' {status}: {reason}",
                    reference=handle.reference,
                )

            if time.monotonic() >= deadline:
                raise RemoteCallError(
                    f"Timed out after {self.config.confirmation_timeout}s waiting for "
                    f"operation {handle.reference}",
                    reference=handle.reference,
                )
            time.sleep(self.config.poll_interval)

    def balance(self, account: str) -> Optional[float]:
        data = self._request("GET", f"/accounts/{account}/balance")
        value = data.get("balance")
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise RemoteCallError(f"Backend returned a non-numeric balance: {value!r}") from exc

    def close(self) -> None:
        self.session.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        max_retries = max(1, self.config.max_retries)

        # 限流时重试，其余错误直接转为 RemoteCallError
        for attempt in range(max_retries):
            try:
                response = self.session.request(method, url, timeout=self.config.timeout, **kwargs)
            except requests.exceptions.Timeout as exc:
                raise RemoteCallError(f"{method} {path} timed out: {exc}") from exc
            except requests.exceptions.RequestException as exc:
                raise RemoteCallError(f"{method} {path} failed: {exc}") from exc

            if response.status_code == 429 and attempt < max_retries - 1:
                wait_time = self.config.retry_backoff * (attempt + 1)
                logger.warning("Rate limited by backend. Waiting %ss before retry...", wait_time)
                time.sleep(wait_time)
                continue

            try:
                response.raise_for_status()
            except requests.exceptions.HTTPError as exc:
                detail = response.text[:500] if response.text else ""
                raise RemoteCallError(
                    f"{method} {path} returned HTTP {response.status_code}: {detail}",
                    retryable=response.status_code >= 500 or response.status_code == 429,
                ) from exc

            try:
                data = response.json()
            except ValueError as exc:
                raise RemoteCallError(f"{method} {path} returned invalid JSON") from exc
            if not isinstance(data, dict):
                raise RemoteCallError(f"{method} {path} returned unexpected payload")
            return data

        raise RemoteCallError(f"{method} {path} rate limited after {max_retries} attempts")
