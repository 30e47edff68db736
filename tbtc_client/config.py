"""
Configuration for the tBTC client.
"""

import json
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

BitcoinNetwork = Literal["main", "testnet", "regtest"]


class BitcoinServerProfile(BaseModel):
    """Connection profile for a Bitcoin data server."""

    server: str
    port: int = Field(..., gt=0, lt=65536)
    protocol: Literal["ssl", "wss", "tcp"] = "ssl"


class Settings(BaseSettings):
    """
    Client configuration settings.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ethereum
    rpc_url: str = Field(default="http://localhost:8545", description="Ethereum RPC URL")
    private_key: str = Field(default="", description="Private key of the operating account")
    deployments_path: Optional[Path] = Field(
        default=None,
        description="JSON file with contract deployment addresses per network id",
    )

    # Bitcoin
    bitcoin_network: BitcoinNetwork = Field(default="testnet", description="Bitcoin network tier")
    bitcoin_api_url: str = Field(
        default="https://blockstream.info/testnet/api",
        description="Esplora-compatible Bitcoin API URL",
    )
    bitcoin_profile: Optional[str] = Field(
        default=None,
        description="Name of the server profile to use instead of bitcoin_api_url",
    )
    electrum: dict[str, BitcoinServerProfile] = Field(
        default_factory=dict,
        description="Bitcoin server profiles keyed by network tier",
    )

    # Polling
    event_poll_interval_seconds: float = Field(default=5.0, gt=0)
    bitcoin_poll_interval_seconds: float = Field(default=30.0, gt=0)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Contracts every factory needs, by artifact name.
REQUIRED_CONTRACTS = (
    "TBTCConstants",
    "TBTCSystem",
    "TBTCToken",
    "TBTCDepositToken",
    "FeeRebateToken",
    "DepositFactory",
    "VendingMachine",
)


@dataclass
class TBTCConfig:
    """Full client configuration: settings plus contract deployments."""

    settings: Settings
    deployments: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "TBTCConfig":
        """Load configuration from environment and the deployments file."""
        settings = Settings(_env_file=env_path) if env_path else Settings()
        config = cls(settings=settings)
        if settings.deployments_path is not None:
            config.deployments = load_deployments(settings.deployments_path)
        return config

    @property
    def bitcoin_network(self) -> str:
        return self.settings.bitcoin_network

    def deployment_address(self, contract_name: str, network_id: int) -> str:
        """
        Look up the deployed address of a contract on a network.

        Deployments use the truffle artifact shape:
            {"TBTCSystem": {"networks": {"3": {"address": "0x..."}}}}
        """
        artifact = self.deployments.get(contract_name) or {}
        info = (artifact.get("networks") or {}).get(str(network_id))
        if not info or not info.get("address"):
            raise ConfigurationError(
                f"No deployment info found for contract {contract_name}, "
                f"network ID {network_id}"
            )
        return info["address"]

    def bitcoin_server_profile(self) -> Optional[BitcoinServerProfile]:
        """Selected server profile, or None to use bitcoin_api_url."""
        name = self.settings.bitcoin_profile
        if name is None:
            return None
        profile = self.settings.electrum.get(name)
        if profile is None:
            raise ConfigurationError(
                f"Unknown Bitcoin server profile {name}; "
                f"configured: {', '.join(sorted(self.settings.electrum)) or 'none'}"
            )
        return profile


def load_deployments(path: Path) -> dict[str, Any]:
    """Read a deployments JSON file."""
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Deployments file {path} not found")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Deployments file {path} is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Deployments file {path} must contain a JSON object")
    return data
