"""Remote wallet pairing over an asynchronous relay."""

from didsign.pairing.broker import PairingBroker
from didsign.pairing.models import UNKNOWN_ACCOUNT_ID, Pairing, PairingSession, extract_account_id
from didsign.pairing.relay import RelayError, RelayTransport, WebSocketRelayTransport

__all__ = [
    "UNKNOWN_ACCOUNT_ID",
    "Pairing",
    "PairingBroker",
    "PairingSession",
    "RelayError",
    "RelayTransport",
    "WebSocketRelayTransport",
    "extract_account_id",
]
