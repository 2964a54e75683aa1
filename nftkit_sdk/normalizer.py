"""
Operation normalizer.

Turns raw caller parameters into frozen operation descriptors. All checks
here run before any network or storage call.
"""
import logging
from typing import Any, Dict, Mapping, Optional, Type

from pydantic import ValidationError

from .backends import BACKEND_CLASSES, ChainBackend
from .exceptions import InvalidOperationError, UnsupportedConfigurationError
from .models import (
    AccessControl, ChainDescriptor, ChainFamily, DeploymentOptions, MetadataStorageType,
    NftMetadata, TokenStandard
)
from .operations import (
    ApproveOperation, DeployOperation, MintOperation, OperationDescriptor, OperationKind,
    QueryKind, QueryOperation, TransferOperation, UpdateTraitOperation
)
from .utils import to_big_int

logger = logging.getLogger(__name__)

# Deployment option keys each standard understands
ALLOWED_OPTION_KEYS: Dict[TokenStandard, frozenset] = {
    TokenStandard.ERC721: frozenset({"transferable", "burnable"}),
    TokenStandard.ERC1155: frozenset({"transferable", "burnable"}),
    TokenStandard.FA2: frozenset(),
    TokenStandard.UNIQUE_NFT: frozenset({"transferable", "burnable", "token_limit"}),
}

# Names accepted besides the snake_case parameter name and its camelCase form
_EXTRA_ALIASES = {
    "access_control": ("accessControlMode",),
    "options": ("extraOptions",),
    "recipient": ("recipientAddress",),
    "metadata": ("inlineMetadata",),
    "storage_type": ("metadataStorageType", "storageMode"),
    "from_address": ("from",),
    "to_address": ("to",),
    "owner": ("ownerAddress",),
    "approved": ("approvedFlag",),
    "kind": ("queryKind",),
}

_TOKEN_QUERIES = {QueryKind.OWNER, QueryKind.METADATA_URI, QueryKind.METADATA, QueryKind.APPROVED}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _param(params: Mapping[str, Any], name: str) -> Any:
    for key in (name, _camel(name)) + _EXTRA_ALIASES.get(name, ()):
        if key in params and params[key] is not None:
            return params[key]
    return None


class OperationNormalizer:
    """
    Validates and shapes raw operation parameters.

    Family-specific rules (address formats, supported deployments) are read
    from the backend class registered for the descriptor's family.
    """

    def __init__(
        self,
        default_signer_ref: Optional[str] = None,
        backend_classes: Optional[Mapping[ChainFamily, Type[ChainBackend]]] = None
    ):
        self.default_signer_ref = default_signer_ref
        self.backend_classes = dict(backend_classes or BACKEND_CLASSES)

    def normalize(
        self,
        kind: OperationKind,
        raw_params: Mapping[str, Any],
        descriptor: ChainDescriptor
    ) -> OperationDescriptor:
        """
        Build the operation descriptor for one request.

        Args:
            kind: Operation kind
            raw_params: Caller parameters (snake_case or camelCase keys); never modified
            descriptor: Target chain

        Returns:
            Frozen operation descriptor

        Raises:
            InvalidOperationError: If a parameter is missing or malformed
            UnsupportedConfigurationError: If the chain family cannot serve the operation
        """
        try:
            kind = OperationKind(kind.upper() if isinstance(kind, str) else kind)
        except ValueError:
            raise InvalidOperationError(f"Unknown operation kind: {kind}", field="operation")
        if raw_params is None:
            raw_params = {}
        if not isinstance(raw_params, Mapping):
            raise InvalidOperationError("Operation parameters must be a mapping")

        params = dict(raw_params)
        backend = self._backend_class(descriptor)
        handler = {
            OperationKind.DEPLOY: self._deploy,
            OperationKind.MINT: self._mint,
            OperationKind.TRANSFER: self._transfer,
            OperationKind.APPROVE: self._approve,
            OperationKind.UPDATE_TRAIT: self._update_trait,
            OperationKind.QUERY: self._query,
        }[kind]
        operation = handler(params, backend)
        logger.debug(f"Normalized {kind.value} for {descriptor.id}: {operation!r}")
        return operation

    # --- per-operation rules ------------------------------------------

    def _deploy(self, params: Dict[str, Any], backend: Type[ChainBackend]) -> DeployOperation:
        name = self._text(params, "name")
        symbol = self._text(params, "symbol")
        standard = self._enum(params, "token_standard", TokenStandard)
        access = self._enum(params, "access_control", AccessControl, default=AccessControl.OWNABLE)
        options = self._options(params, standard)

        if not backend.supports_deployment(standard, access):
            raise UnsupportedConfigurationError(
                f"{standard.value} with {access.value} is not supported on {backend.family.value} chains"
            )
        return DeployOperation(
            name=name,
            symbol=symbol,
            token_standard=standard,
            access_control=access,
            options=options,
            signer_ref=self._signer_ref(params),
        )

    def _mint(self, params: Dict[str, Any], backend: Type[ChainBackend]) -> MintOperation:
        metadata_uri = _param(params, "metadata_uri")
        metadata = _param(params, "metadata")
        if metadata_uri is not None and metadata is not None:
            raise InvalidOperationError(
                "Provide either metadata_uri or metadata, not both", field="metadata"
            )
        if metadata_uri is None and metadata is None:
            raise InvalidOperationError("One of metadata_uri or metadata is required", field="metadata_uri")

        if metadata_uri is not None and (not isinstance(metadata_uri, str) or not metadata_uri.strip()):
            raise InvalidOperationError("metadata_uri must be a non-empty string", field="metadata_uri")
        if metadata is not None:
            metadata = self.parse_metadata(metadata)

        return MintOperation(
            contract_address=self._contract(params, backend),
            recipient=self._address(params, "recipient", backend),
            storage_type=self._enum(
                params, "storage_type", MetadataStorageType, default=MetadataStorageType.OFF_CHAIN
            ),
            signer_ref=self._signer_ref(params),
            metadata_uri=metadata_uri,
            metadata=metadata,
        )

    def _transfer(self, params: Dict[str, Any], backend: Type[ChainBackend]) -> TransferOperation:
        data = self._data(params)
        safe = self._flag(params, "safe", default=False)
        return TransferOperation(
            contract_address=self._contract(params, backend),
            from_address=self._address(params, "from_address", backend),
            to_address=self._address(params, "to_address", backend),
            token_id=self._int(params, "token_id"),
            signer_ref=self._signer_ref(params),
            safe=safe or data is not None,
            data=data,
        )

    def _approve(self, params: Dict[str, Any], backend: Type[ChainBackend]) -> ApproveOperation:
        contract = self._contract(params, backend)
        approved = self._flag(params, "approved", default=True)
        has_operator = _param(params, "operator") is not None
        has_token = _param(params, "token_id") is not None
        if has_operator and has_token:
            raise InvalidOperationError("Approve takes either token_id or operator, not both", field="operator")

        if has_operator:
            return ApproveOperation(
                contract_address=contract,
                signer_ref=self._signer_ref(params),
                operator=self._address(params, "operator", backend),
                approved=approved,
            )
        if not has_token:
            raise InvalidOperationError("Approve requires token_id or operator", field="token_id")
        return ApproveOperation(
            contract_address=contract,
            signer_ref=self._signer_ref(params),
            token_id=self._int(params, "token_id"),
            to_address=self._address(params, "to_address", backend),
            approved=approved,
        )

    def _update_trait(self, params: Dict[str, Any], backend: Type[ChainBackend]) -> UpdateTraitOperation:
        value = _param(params, "trait_value")
        if value is None or isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise InvalidOperationError("trait_value must be a string or number", field="trait_value")
        return UpdateTraitOperation(
            contract_address=self._contract(params, backend),
            token_id=self._int(params, "token_id"),
            trait_key=self._text(params, "trait_key"),
            trait_value=str(value),
            signer_ref=self._signer_ref(params),
        )

    def _query(self, params: Dict[str, Any], backend: Type[ChainBackend]) -> QueryOperation:
        kind = self._enum(params, "kind", QueryKind)
        if kind == QueryKind.ACCOUNT_NFTS:
            return QueryOperation(kind=kind, owner=self._address(params, "owner", backend))

        contract = self._contract(params, backend)
        if kind in _TOKEN_QUERIES:
            return QueryOperation(kind=kind, contract_address=contract, token_id=self._int(params, "token_id"))
        if kind == QueryKind.BALANCE:
            return QueryOperation(kind=kind, contract_address=contract, owner=self._address(params, "owner", backend))
        if kind == QueryKind.APPROVAL_STATUS:
            return QueryOperation(
                kind=kind,
                contract_address=contract,
                owner=self._address(params, "owner", backend),
                operator=self._address(params, "operator", backend),
            )
        return QueryOperation(kind=kind, contract_address=contract)

    # --- field helpers ------------------------------------------------

    def _backend_class(self, descriptor: ChainDescriptor) -> Type[ChainBackend]:
        backend = self.backend_classes.get(descriptor.family)
        if backend is None:
            raise UnsupportedConfigurationError(f"No backend for chain family {descriptor.family.value}")
        return backend

    @staticmethod
    def _text(params: Mapping[str, Any], name: str) -> str:
        value = _param(params, name)
        if not isinstance(value, str) or not value.strip():
            raise InvalidOperationError(f"{name} must be a non-empty string", field=name)
        return value

    @staticmethod
    def _int(params: Mapping[str, Any], name: str) -> int:
        value = _param(params, name)
        if value is None:
            raise InvalidOperationError(f"{name} is required", field=name)
        try:
            return to_big_int(value, name)
        except ValueError as e:
            raise InvalidOperationError(str(e), field=name)

    @staticmethod
    def _flag(params: Mapping[str, Any], name: str, default: bool) -> bool:
        value = _param(params, name)
        if value is None:
            return default
        if not isinstance(value, bool):
            raise InvalidOperationError(f"{name} must be a boolean", field=name)
        return value

    @staticmethod
    def _enum(params: Mapping[str, Any], name: str, enum_type, default=None):
        value = _param(params, name)
        if value is None:
            if default is None:
                raise InvalidOperationError(f"{name} is required", field=name)
            return default
        if isinstance(value, enum_type):
            return value
        try:
            return enum_type(str(value).upper())
        except ValueError:
            allowed = ", ".join(member.value for member in enum_type)
            raise InvalidOperationError(f"{name} must be one of: {allowed}", field=name)

    @staticmethod
    def _address(params: Mapping[str, Any], name: str, backend: Type[ChainBackend]) -> str:
        value = _param(params, name)
        if value is None:
            raise InvalidOperationError(f"{name} is required", field=name)
        if not backend.is_valid_address(value):
            raise InvalidOperationError(
                f"{name} is not a valid {backend.family.value} address: {value!r}", field=name
            )
        return value

    @staticmethod
    def _contract(params: Mapping[str, Any], backend: Type[ChainBackend]) -> str:
        value = _param(params, "contract_address")
        if value is None:
            raise InvalidOperationError("contract_address is required", field="contract_address")
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if not backend.is_valid_contract(value):
            raise InvalidOperationError(
                f"contract_address is not a valid {backend.family.value} contract: {value!r}",
                field="contract_address"
            )
        return value

    @staticmethod
    def parse_metadata(value: Any) -> NftMetadata:
        if isinstance(value, NftMetadata):
            return value
        if not isinstance(value, Mapping):
            raise InvalidOperationError("metadata must be an object", field="metadata")
        try:
            return NftMetadata.model_validate(dict(value))
        except ValidationError as e:
            raise InvalidOperationError(f"Invalid metadata: {e.errors()[0]['msg']}", field="metadata")

    @staticmethod
    def _data(params: Mapping[str, Any]) -> Optional[bytes]:
        value = _param(params, "data")
        if value is None:
            return None
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        if isinstance(value, str):
            text = value[2:] if value.lower().startswith("0x") else value
            try:
                return bytes.fromhex(text)
            except ValueError:
                raise InvalidOperationError("data must be bytes or a hex string", field="data")
        raise InvalidOperationError("data must be bytes or a hex string", field="data")

    @staticmethod
    def _options(params: Mapping[str, Any], standard: TokenStandard) -> DeploymentOptions:
        raw = _param(params, "options")
        if raw is None:
            return DeploymentOptions()
        if isinstance(raw, DeploymentOptions):
            raw = raw.model_dump(exclude_defaults=True)
        if not isinstance(raw, Mapping):
            raise InvalidOperationError("options must be an object", field="options")

        options: Dict[str, Any] = {}
        allowed = ALLOWED_OPTION_KEYS.get(standard, frozenset())
        for key, value in raw.items():
            name = "token_limit" if key == "tokenLimit" else key
            if name not in allowed:
                raise InvalidOperationError(
                    f"Option '{key}' is not valid for {standard.value}", field=f"options.{key}"
                )
            if name == "token_limit":
                try:
                    value = to_big_int(value, "token_limit")
                except ValueError as e:
                    raise InvalidOperationError(str(e), field="options.token_limit")
            elif not isinstance(value, bool):
                raise InvalidOperationError(f"Option '{key}' must be a boolean", field=f"options.{key}")
            options[name] = value
        return DeploymentOptions(**options)

    def _signer_ref(self, params: Mapping[str, Any]) -> str:
        signer_ref = _param(params, "signer_ref") or self.default_signer_ref
        if not isinstance(signer_ref, str) or not signer_ref:
            raise InvalidOperationError("signer_ref is required for state-changing operations",
                                        field="signer_ref")
        return signer_ref
