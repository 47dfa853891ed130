# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Onionet Contributors

"""Onionet - a minimal onion-routing overlay.

A registry keeps the public keys of onion routers. Users fetch that list,
pick three distinct routers, and wrap each message in three layers of
RSA-OAEP + AES-256-CBC encryption. Every router peels exactly one layer and
forwards the remainder, so only the exit router sees the receiver and only
the entry router sees the sender.

Components:
  Registry      (onionet.network.registry)  node id -> public key
  Onion router  (onionet.network.router)    peel one layer, forward
  User          (onionet.network.user)      build circuit, send, receive

CLI entry point: ``onionet``
"""

__version__ = "0.1.0"

from . import (
    core as core,
)
