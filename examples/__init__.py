# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Example scripts for the Aptos DeFi SDK.

Run any of them as a module from the repository root, e.g.::

    python -m examples.dex_quotes
"""
