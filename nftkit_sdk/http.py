"""
HTTP plumbing shared by the storage client, indexers and JSON-RPC backends.
"""
import itertools
import logging
import urllib.parse
from typing import Any, Dict, Optional, Type

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ._rate_limited_log import rate_limited_log
from .exceptions import (
    NftKitError, NetworkUnavailableError, NotFoundError, UnauthorizedError
)
from .version import user_agent

logger = logging.getLogger(__name__)


class RpcError(Exception):
    """Error object returned by a JSON-RPC node; backends translate it."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.rpc_message = message
        self.data = data
        super().__init__(f"RPC error {code}: {message}")


class HttpClient:
    """
    Thin wrapper around ``requests.Session`` with a bounded timeout and
    uniform error mapping.

    Failures become ``unavailable_error`` (``NetworkUnavailableError`` by
    default). Retries are disabled unless ``retry_count`` is raised: a
    failed call is reported to the caller, who owns the retry policy.
    """

    def __init__(
        self,
        timeout: int = 30,
        headers: Optional[Dict[str, str]] = None,
        retry_count: int = 0,
        unavailable_error: Type[NftKitError] = NetworkUnavailableError,
        session: Optional[requests.Session] = None
    ):
        self.timeout = timeout
        self.unavailable_error = unavailable_error
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = user_agent()
        if headers:
            self.session.headers.update(headers)

        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))
        self._rpc_ids = itertools.count(1)

    def request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Perform a request and map transport and status failures.

        Raises:
            NotFoundError: On HTTP 404
            UnauthorizedError: On HTTP 401/403
            NftKitError: ``unavailable_error`` for timeouts, connection
                failures and other error statuses
        """
        kwargs.setdefault("timeout", self.timeout)
        host = urllib.parse.urlparse(url).netloc
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.Timeout as e:
            rate_limited_log(f"Request to {host} timed out: {e}", key=f"timeout:{host}",
                             logger_instance=logger)
            raise self.unavailable_error(f"Request to {host} timed out after {self.timeout}s")
        except requests.RequestException as e:
            rate_limited_log(f"Request to {host} failed: {e}", key=f"conn:{host}",
                             logger_instance=logger)
            raise self.unavailable_error(f"Request to {host} failed: {e}")

        status = response.status_code
        if status == 404:
            raise NotFoundError(f"Resource not found: {url}")
        if status in (401, 403):
            raise UnauthorizedError(f"Request to {host} was rejected with HTTP {status}")
        if status >= 500:
            rate_limited_log(f"{host} returned HTTP {status}", key=f"status:{host}",
                             logger_instance=logger)
            raise self.unavailable_error(f"{host} returned HTTP {status}")
        if status >= 400:
            raise self.unavailable_error(
                f"{host} rejected the request with HTTP {status}: {response.text[:200]}",
                retryable=False
            )
        return response

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        response = self.request("GET", url, params=params, **kwargs)
        return self._json(response)

    def post_json(self, url: str, payload: Any = None, **kwargs) -> Any:
        response = self.request("POST", url, json=payload, **kwargs)
        return self._json(response)

    def json_rpc(self, url: str, method: str, params: Optional[list] = None) -> Any:
        """
        Call a JSON-RPC 2.0 method and return its ``result``.

        Raises:
            RpcError: If the node answers with an error object
        """
        body = {"jsonrpc": "2.0", "id": next(self._rpc_ids), "method": method, "params": params or []}
        logger.debug(f"JSON-RPC {method} -> {urllib.parse.urlparse(url).netloc}")
        result = self.post_json(url, body)
        if not isinstance(result, dict):
            raise self.unavailable_error(f"Malformed JSON-RPC response for {method}", retryable=False)
        if result.get("error"):
            error = result["error"]
            raise RpcError(error.get("code", 0), error.get("message", ""), error.get("data"))
        return result.get("result")

    def _json(self, response: requests.Response) -> Any:
        if not response.content:
            return None
        content_type = response.headers.get("Content-Type", "")
        if "json" not in content_type:
            logger.warning(f"Unexpected Content-Type: {content_type} (expected application/json)")
        try:
            return response.json()
        except ValueError as e:
            raise self.unavailable_error(f"Invalid JSON response: {e}", retryable=False)

    def close(self) -> None:
        self.session.close()
