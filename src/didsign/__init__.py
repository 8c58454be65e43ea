# SPDX-License-Identifier: MIT
# Copyright (c) 2026 didsign Contributors

"""didsign - wallet-signed authorization of DID operations.

A DID holder authorizes an operation (create, update, add/revoke key,
add/revoke service) by signing a deterministic payload, either by posting
the signature directly or by approving a remote wallet pairing that this
service then drives to completion.

Architecture:
  CanonicalEncoder (crypto.canonical)
    → SignatureVerifier (crypto.verifier, encoding-tolerant Ed25519)
    → PairingBroker (pairing.broker, remote wallet sessions over a relay)
    → OperationStateMachine (operations.state_machine)

Persistence, the DID registry and ledger execution are injected
collaborators; in-memory implementations ship for tests and local use.
"""

__version__ = "0.1.0"
