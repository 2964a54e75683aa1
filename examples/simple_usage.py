#!/usr/bin/env python3
"""
Simple example of using the NFT Kit SDK.
"""
import os
from nftkit_sdk import NftDispatcher, NftKitError, StaticKeyManager, LocalSigner

def main():
    """
    Demonstrate basic usage of the NftDispatcher.

    This example shows how to:
    1. Register a signer under a reference
    2. Deploy a collection
    3. Mint a token with inline metadata pinned to IPFS
    """
    # Read configuration from environment
    CHAIN = os.environ.get("NFTKIT_CHAIN", "SEPOLIA")
    PRIVATE_KEY = os.environ.get("PRIVATE_KEY")
    RECIPIENT = os.environ.get("RECIPIENT")

    if not PRIVATE_KEY:
        print("ERROR: PRIVATE_KEY environment variable is required")
        return

    # Signers are looked up by reference; keys never travel with requests
    signer = LocalSigner(PRIVATE_KEY)
    keys = StaticKeyManager({"local:minter": signer})

    # Pinner URL, gateway and timeouts come from NFTKIT_* variables
    dispatcher = NftDispatcher.from_env(keys)

    try:
        deployment = dispatcher.deploy(CHAIN, "Example Collection", "EXC", signer_ref="local:minter")
        print(f"Deployment submitted: {deployment.transaction_id}")
        if deployment.contract_address is None:
            print("Contract address not confirmed yet; check the explorer later")
            return
        print(f"Collection address: {deployment.contract_address}")

        minted = dispatcher.mint(
            CHAIN,
            deployment.contract_address,
            RECIPIENT or signer.address,
            metadata={
                "name": "Example #1",
                "description": "Minted by the NFT Kit SDK example",
                "image": "ipfs://QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG",
                "attributes": [{"trait_type": "Level", "value": "1"}],
            },
            storage_type="OFF_CHAIN",
            signer_ref="local:minter",
        )
        print(f"Mint status: {minted.status.value}")
        print(f"Token id: {minted.token_id}")
        if minted.explorer_url:
            print(f"Explorer: {minted.explorer_url}")

    except NftKitError as e:
        print(f"Error: {dispatcher.error_response(e).model_dump_json(by_alias=True)}")

if __name__ == "__main__":
    main()
