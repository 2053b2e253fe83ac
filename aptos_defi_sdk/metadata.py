# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Client identification for requests sent to Aptos full nodes.

Every request issued by :class:`aptos_defi_sdk.async_client.RestClient` carries the
``x-aptos-client`` header so node operators can tell SDK traffic apart. The value is
``aptos-defi-sdk/<version>`` where the version comes from the installed package
metadata.

Examples:
    Build the header by hand::

        from aptos_defi_sdk.metadata import Metadata

        headers = {Metadata.APTOS_HEADER: Metadata.get_aptos_header_val()}
"""

import importlib.metadata as metadata

# Distribution name used for the version lookup
PACKAGE_NAME = "aptos-defi-sdk"


class Metadata:
    """Static helpers for the client identification header."""

    APTOS_HEADER = "x-aptos-client"

    @staticmethod
    def get_aptos_header_val() -> str:
        """Return ``aptos-defi-sdk/<version>``.

        A source checkout that was never installed reports ``unknown`` as its version.
        """
        try:
            version = metadata.version(PACKAGE_NAME)
        except metadata.PackageNotFoundError:
            version = "unknown"
        return f"aptos-defi-sdk/{version}"
