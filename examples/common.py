# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Shared configuration for the example scripts.

Environment Variables:
    APTOS_NODE_URL: URL of the full node REST API. Mainnet by default, since the venues
        the examples read only exist there.
    APTOS_API_KEY: Optional API key sent as a bearer token.
    APTOS_PRIVATE_KEY: Hex encoded PKCS#8 private key, only needed by examples that
        submit transactions.
"""

import os

from aptos_defi_sdk.async_client import ClientConfig, Network

# :!:>section_1
NODE_URL = os.getenv("APTOS_NODE_URL", Network.MAINNET.url)

API_KEY = os.getenv("APTOS_API_KEY")

PRIVATE_KEY = os.getenv("APTOS_PRIVATE_KEY")
# <:!:section_1

CLIENT_CONFIG = ClientConfig(api_key=API_KEY)
