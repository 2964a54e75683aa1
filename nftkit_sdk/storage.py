"""
Content-addressed storage client (IPFS pinning service + gateway).
"""
import json
import logging
from typing import Any, Dict, Optional

from .exceptions import NotFoundError, StorageUnavailableError
from .http import HttpClient
from .models import StorageReference
from .utils import IPFS_SCHEME, ipfs_path, is_valid_cid


class IpfsStorage:
    """
    Pins documents and files to IPFS and reads them back through a gateway.

    The pinning endpoint follows the NFT.Storage upload API (``POST /upload``
    with a bearer token); responses shaped as ``{"value": {"cid": ...}}``,
    ``{"cid": ...}`` or ``{"IpfsHash": ...}`` are all understood.
    """

    def __init__(
        self,
        pinner_url: str,
        gateway_url: str = "https://ipfs.io",
        token: Optional[str] = None,
        timeout: int = 30,
        logger: Optional[logging.Logger] = None
    ):
        self.pinner_url = pinner_url.rstrip("/")
        self.gateway_url = gateway_url.rstrip("/")
        self.logger = logger or logging.getLogger(__name__)
        headers = {"Authorization": f"Bearer {token}"} if token else None
        self.http = HttpClient(
            timeout=timeout,
            headers=headers,
            unavailable_error=StorageUnavailableError
        )

    def put(self, data: bytes, content_type: str = "application/octet-stream") -> StorageReference:
        """
        Pin raw bytes.

        Args:
            data: File content
            content_type: MIME type sent to the pinning service

        Returns:
            Reference to the pinned content

        Raises:
            StorageUnavailableError: If pinning fails or returns no valid CID
        """
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError(f"data must be bytes, got {type(data).__name__}")

        self.logger.debug(f"Pinning {len(data)} bytes ({content_type}) to IPFS")
        try:
            result = self.http.post_json(
                f"{self.pinner_url}/upload",
                data=bytes(data),
                headers={"Content-Type": content_type}
            )
        except NotFoundError:
            # A missing upload route is a misconfigured pinner, not a missing document
            raise StorageUnavailableError(f"Pinning service has no upload endpoint at {self.pinner_url}",
                                          retryable=False)
        cid = self._extract_pinned_cid(result)
        self.logger.info(f"Pinned content to IPFS: {cid}")
        return self.reference(cid)

    def put_json(self, document: Dict[str, Any]) -> StorageReference:
        """Pin a JSON document"""
        try:
            payload = json.dumps(document, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Document is not JSON serializable: {e}")
        return self.put(payload, content_type="application/json")

    def get(self, reference: str) -> bytes:
        """
        Fetch pinned content through the gateway.

        Args:
            reference: CID, ``ipfs://`` URI or gateway URL, optionally with a
                path inside the pinned directory (``ipfs://<cid>/7.json``)

        Raises:
            ValueError: If the reference does not contain a CID
            NotFoundError: If the gateway does not know the CID
            StorageUnavailableError: If the gateway cannot be reached
        """
        path = ipfs_path(reference)
        if not path:
            raise ValueError(f"Not an IPFS reference: {reference}")
        response = self.http.request("GET", self.gateway_link(path))
        return response.content

    def get_json(self, reference: str) -> Dict[str, Any]:
        raw = self.get(reference)
        try:
            return json.loads(raw)
        except ValueError as e:
            raise StorageUnavailableError(f"Pinned document is not valid JSON: {e}", retryable=False)

    def fetch_url(self, url: str) -> Dict[str, Any]:
        """Fetch a JSON document from a plain HTTP(S) location"""
        document = self.http.get_json(url)
        if not isinstance(document, dict):
            raise StorageUnavailableError(f"Document at {url} is not a JSON object", retryable=False)
        return document

    def reference(self, cid: str) -> StorageReference:
        return StorageReference(cid=cid, uri=f"{IPFS_SCHEME}{cid}", gateway_url=self.gateway_link(cid))

    def gateway_link(self, path: str) -> str:
        return f"{self.gateway_url}/ipfs/{path}"

    def _extract_pinned_cid(self, result: Any) -> str:
        cid = None
        if isinstance(result, dict):
            value = result.get("value")
            if isinstance(value, dict):
                cid = value.get("cid")
            cid = cid or result.get("cid") or result.get("IpfsHash")
        if not cid or not is_valid_cid(cid):
            raise StorageUnavailableError(f"Missing CID in pinner response: {result}", retryable=False)
        return cid
