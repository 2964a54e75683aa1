"""
Metadata resolver: reads token metadata pointers, dereferences them and
publishes new documents or files before they are minted.
"""
import logging
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from .backends.base import ChainBackend
from .exceptions import StorageUnavailableError, UnsupportedConfigurationError
from .models import ChainDescriptor, MetadataStorageType, NftAttribute, NftMetadata, StorageReference
from .operations import MintOperation
from .storage import IpfsStorage
from .utils import decode_data_uri, encode_data_uri, extract_cid


class MetadataResolver:
    """
    Resolves and publishes NFT metadata.

    Publishing always finishes before the caller submits a mint, so a storage
    failure never leaves a half-minted token behind.
    """

    def __init__(self, storage: IpfsStorage, logger: Optional[logging.Logger] = None):
        self.storage = storage
        self.logger = logger or logging.getLogger(__name__)

    def resolve_uri(
        self,
        backend: ChainBackend,
        descriptor: ChainDescriptor,
        contract_address: str,
        token_id: int
    ) -> str:
        """Raw metadata pointer stored on-chain for a token"""
        return backend.token_uri(descriptor, contract_address, token_id)

    def get_metadata(
        self,
        backend: ChainBackend,
        descriptor: ChainDescriptor,
        contract_address: str,
        token_id: int
    ) -> NftMetadata:
        """
        Metadata document of a token, following its on-chain pointer.

        Raises:
            NotFoundError: If the token does not exist
            StorageUnavailableError: If the document cannot be fetched or parsed
        """
        uri = self.resolve_uri(backend, descriptor, contract_address, token_id)
        return self.fetch(uri)

    def fetch(self, uri: str) -> NftMetadata:
        """
        Dereference ``data:``, ``ipfs://``, IPFS gateway and plain HTTP(S) URIs.

        Raises:
            UnsupportedConfigurationError: If the URI scheme is not understood
        """
        if uri.startswith("data:"):
            try:
                document = decode_data_uri(uri)
            except ValueError as e:
                raise StorageUnavailableError(f"Malformed on-chain metadata: {e}", retryable=False)
        elif extract_cid(uri):
            document = self.storage.get_json(uri)
        elif uri.startswith(("http://", "https://")):
            document = self.storage.fetch_url(uri)
        else:
            raise UnsupportedConfigurationError(f"Unsupported metadata URI: {uri[:64]}")

        if not isinstance(document, dict):
            raise StorageUnavailableError("Metadata document is not a JSON object", retryable=False)
        try:
            return NftMetadata.model_validate(document)
        except ValidationError as e:
            raise StorageUnavailableError(f"Invalid metadata document: {e.errors()[0]['msg']}", retryable=False)

    def publish_metadata(self, metadata: Union[NftMetadata, Dict[str, Any]]) -> StorageReference:
        """Pin a metadata document to IPFS"""
        if isinstance(metadata, NftMetadata):
            metadata = metadata.to_document()
        reference = self.storage.put_json(metadata)
        self.logger.info(f"Published metadata document {reference.cid}")
        return reference

    def publish_file(self, data: bytes, content_type: str = "application/octet-stream") -> StorageReference:
        """Pin a binary file (media) to IPFS"""
        return self.storage.put(data, content_type=content_type)

    def token_uri_for_mint(self, op: MintOperation) -> str:
        """
        Token URI to mint with.

        Inline metadata is embedded as a data URI for ``ON_CHAIN`` storage and
        pinned to IPFS for ``OFF_CHAIN`` storage.
        """
        if op.metadata_uri is not None:
            return op.metadata_uri
        if op.storage_type == MetadataStorageType.ON_CHAIN:
            return encode_data_uri(op.metadata.to_document())
        return self.publish_metadata(op.metadata).uri

    def republish(self, previous_uri: str, metadata: NftMetadata) -> str:
        """Store an updated document the same way the previous one was stored"""
        if previous_uri.startswith("data:"):
            return encode_data_uri(metadata.to_document())
        return self.publish_metadata(metadata).uri

    @staticmethod
    def with_trait(metadata: NftMetadata, trait_key: str, trait_value: Any) -> NftMetadata:
        """
        Copy of ``metadata`` with one attribute set.

        An existing attribute keeps its position; a new one is appended.
        """
        attributes = []
        replaced = False
        for attribute in metadata.attributes:
            if attribute.trait_type == trait_key:
                attributes.append(attribute.model_copy(update={"value": trait_value}))
                replaced = True
            else:
                attributes.append(attribute)
        if not replaced:
            attributes.append(NftAttribute(trait_type=trait_key, value=trait_value))
        return metadata.model_copy(update={"attributes": attributes})
