"""Core configuration - centralized config for the didsign package.

All environment-based configuration should flow through this module.

Usage:
    from didsign.core.config import get_config
    config = get_config()

    ttl = config.operation_ttl
    relay = config.relay_url
"""

from __future__ import annotations

from datetime import timedelta
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

HEDERA_SIGNED_MESSAGE_PREFIX = "\x19Hedera Signed Message:\n"


class CoreSettings(BaseSettings):
    """Configuration settings for didsign.

    Every setting can be overridden with a ``DIDSIGN_`` environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ==========================================================================
    # OPERATION SETTINGS
    # ==========================================================================

    operation_ttl_seconds: int = Field(
        default=30 * 60,
        description="Lifetime of a pending operation before it expires",
        validation_alias="DIDSIGN_OPERATION_TTL_SECONDS",
        gt=0,
    )
    payload_mode: Literal["hash", "canonical"] = Field(
        default="hash",
        description="'hash': sign sha256(canonical:timestamp); 'canonical': sign the canonical string",
        validation_alias="DIDSIGN_PAYLOAD_MODE",
    )
    did_network: str = Field(
        default="testnet",
        description="Network segment used when issuing did:hedera identifiers",
        validation_alias="DIDSIGN_DID_NETWORK",
    )
    challenge_ttl_seconds: int = Field(
        default=15 * 60,
        description="Lifetime of an authentication challenge",
        validation_alias="DIDSIGN_CHALLENGE_TTL_SECONDS",
        gt=0,
    )

    # ==========================================================================
    # SIGNATURE SETTINGS
    # ==========================================================================

    signed_message_prefix: str = Field(
        default=HEDERA_SIGNED_MESSAGE_PREFIX,
        description="Prefix wallets prepend (with the decimal length) before signing",
        validation_alias="DIDSIGN_SIGNED_MESSAGE_PREFIX",
    )
    allow_session_keys: bool = Field(
        default=True,
        description="Verify wallet-driven signatures against the key the wallet reports",
        validation_alias="DIDSIGN_ALLOW_SESSION_KEYS",
    )

    # ==========================================================================
    # PAIRING / RELAY SETTINGS
    # ==========================================================================

    relay_url: str = Field(
        default="wss://relay.walletconnect.org",
        description="WebSocket URL of the wallet relay",
        validation_alias="DIDSIGN_RELAY_URL",
    )
    project_id: str = Field(
        default="",
        description="Relay project identifier",
        validation_alias="DIDSIGN_PROJECT_ID",
    )
    chain_id: str = Field(
        default="hedera:testnet",
        description="Default chain used when a session does not advertise one",
        validation_alias="DIDSIGN_CHAIN_ID",
    )
    signing_method: str = Field(
        default="hedera_signMessage",
        description="Wallet method used to request a message signature",
        validation_alias="DIDSIGN_SIGNING_METHOD",
    )
    wallet_methods: list[str] = Field(
        default_factory=lambda: [
            "hedera_signMessage",
            "hedera_signTransaction",
            "hedera_signAndExecuteQuery",
            "hedera_signAndExecuteTransaction",
        ],
        description="Methods requested in the pairing namespace",
        validation_alias="DIDSIGN_WALLET_METHODS",
    )
    wallet_events: list[str] = Field(
        default_factory=lambda: ["chainChanged", "accountsChanged"],
        description="Events requested in the pairing namespace",
        validation_alias="DIDSIGN_WALLET_EVENTS",
    )
    pairing_timeout_seconds: float = Field(
        default=5 * 60,
        description="How long to wait for a wallet to approve a pairing",
        validation_alias="DIDSIGN_PAIRING_TIMEOUT_SECONDS",
        gt=0,
    )
    session_ttl_seconds: int = Field(
        default=60 * 60,
        description="Session lifetime when the wallet does not report one",
        validation_alias="DIDSIGN_SESSION_TTL_SECONDS",
        gt=0,
    )
    request_timeout_seconds: float = Field(
        default=5 * 60,
        description="How long to wait for a wallet to answer a relayed request",
        validation_alias="DIDSIGN_REQUEST_TIMEOUT_SECONDS",
        gt=0,
    )
    auto_request_signature: bool = Field(
        default=True,
        description="Push the sign request as soon as a pairing is approved",
        validation_alias="DIDSIGN_AUTO_REQUEST_SIGNATURE",
    )
    auto_request_delay_seconds: float = Field(
        default=1.0,
        description="Pause between session approval and the automatic sign request",
        validation_alias="DIDSIGN_AUTO_REQUEST_DELAY_SECONDS",
        ge=0,
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="DIDSIGN_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="DIDSIGN_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="DIDSIGN_LOG_FILE",
    )

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def operation_ttl(self) -> timedelta:
        return timedelta(seconds=self.operation_ttl_seconds)

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(seconds=self.session_ttl_seconds)

    @property
    def challenge_ttl(self) -> timedelta:
        return timedelta(seconds=self.challenge_ttl_seconds)

    @property
    def required_namespaces(self) -> dict:
        """Namespace proposal sent to wallets when pairing."""
        namespace = self.chain_id.split(":", 1)[0]
        return {
            namespace: {
                "chains": [self.chain_id],
                "methods": list(self.wallet_methods),
                "events": list(self.wallet_events),
            }
        }


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: CoreSettings | None = None


def get_config() -> CoreSettings:
    """Get the global configuration instance.

    Returns:
        The singleton CoreSettings instance.
    """
    global _config
    if _config is None:
        _config = CoreSettings()
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
