"""
HTTP inference backend.

Posts each batch as ``{"inputs": [...]}`` to a model server and expects
``{"outputs": [...]}`` back, one output per input in the same order.
"""

from typing import Any, Dict, List, Optional

import httpx

from ..errors import BackendError, BackendTimeoutError
from ..logging import get_logger
from .base import InferenceBackend

logger = get_logger(__name__)


class HttpBackend(InferenceBackend):
    """Backend calling a remote model server over HTTP."""

    name = "http"

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.Client] = None,
    ):
        if not url:
            raise ValueError("url cannot be empty")

        self.url = url
        self.timeout = timeout
        self.headers = headers or {}
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)

    def predict(self, inputs: List[Any], timeout: float) -> List[Any]:
        try:
            response = self.client.post(
                self.url, json={"inputs": inputs}, headers=self.headers, timeout=timeout
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise BackendTimeoutError(timeout, backend=self.name, url=self.url) from e
        except httpx.HTTPStatusError as e:
            raise BackendError(
                f"HTTP {e.response.status_code} from model server",
                backend=self.name,
                url=self.url,
            ) from e
        except httpx.HTTPError as e:
            raise BackendError(f"transport error: {e}", backend=self.name, url=self.url) from e

        try:
            body = response.json()
        except ValueError as e:
            raise BackendError("malformed response body", backend=self.name, url=self.url) from e

        outputs = body.get("outputs") if isinstance(body, dict) else None
        if not isinstance(outputs, list):
            raise BackendError("response is missing an 'outputs' list", backend=self.name)

        logger.debug("HTTP batch served", url=self.url, batch_size=len(inputs))
        return outputs

    def close(self):
        """Close the HTTP client if this backend created it."""
        if self._owns_client:
            self.client.close()
