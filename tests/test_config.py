"""
Tests for settings and deployment lookup.
"""

import json
from pathlib import Path

import pytest

from tbtc_client.config import BitcoinServerProfile, Settings, TBTCConfig, load_deployments
from tbtc_client.errors import ConfigurationError

DEPLOYMENTS = {
    "TBTCSystem": {"networks": {"3": {"address": "0x" + "02" * 20}}},
    "VendingMachine": {"networks": {"1": {"address": "0x" + "07" * 20}}},
}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("BITCOIN_NETWORK", "DEPLOYMENTS_PATH", "BITCOIN_PROFILE", "RPC_URL", "ELECTRUM"):
        monkeypatch.delenv(name, raising=False)


class TestDeploymentAddress:
    """Test contract address lookup per network."""

    def test_found(self) -> None:
        config = TBTCConfig(settings=Settings(_env_file=None), deployments=DEPLOYMENTS)
        assert config.deployment_address("TBTCSystem", 3) == "0x" + "02" * 20

    def test_missing_network(self) -> None:
        config = TBTCConfig(settings=Settings(_env_file=None), deployments=DEPLOYMENTS)
        with pytest.raises(ConfigurationError, match="VendingMachine, network ID 3"):
            config.deployment_address("VendingMachine", 3)

    def test_missing_contract(self) -> None:
        config = TBTCConfig(settings=Settings(_env_file=None), deployments=DEPLOYMENTS)
        with pytest.raises(ConfigurationError, match="DepositFactory"):
            config.deployment_address("DepositFactory", 3)


class TestLoadDeployments:
    """Test reading deployments files."""

    def test_valid(self, tmp_path: Path) -> None:
        path = tmp_path / "deployments.json"
        path.write_text(json.dumps(DEPLOYMENTS))
        assert load_deployments(path) == DEPLOYMENTS

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_deployments(tmp_path / "absent.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "deployments.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_deployments(path)

    def test_not_an_object(self, tmp_path: Path) -> None:
        path = tmp_path / "deployments.json"
        path.write_text("[]")
        with pytest.raises(ConfigurationError, match="JSON object"):
            load_deployments(path)


class TestFromEnv:
    """Test loading configuration from a .env file."""

    def test_env_file(self, tmp_path: Path) -> None:
        deployments = tmp_path / "deployments.json"
        deployments.write_text(json.dumps(DEPLOYMENTS))
        env_file = tmp_path / ".env"
        env_file.write_text(f"BITCOIN_NETWORK=main\nDEPLOYMENTS_PATH={deployments}\n")

        config = TBTCConfig.from_env(env_file)

        assert config.bitcoin_network == "main"
        assert config.deployments == DEPLOYMENTS

    def test_without_deployments(self, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("RPC_URL=http://node:8545\n")

        config = TBTCConfig.from_env(env_file)

        assert config.settings.rpc_url == "http://node:8545"
        assert config.deployments == {}


class TestBitcoinServerProfile:
    """Test selecting a Bitcoin server profile."""

    def test_none_selected(self) -> None:
        config = TBTCConfig(settings=Settings(_env_file=None))
        assert config.bitcoin_server_profile() is None

    def test_selected(self) -> None:
        profile = BitcoinServerProfile(server="electrum.example.org", port=50002, protocol="ssl")
        settings = Settings(_env_file=None, bitcoin_profile="testnet", electrum={"testnet": profile})

        assert TBTCConfig(settings=settings).bitcoin_server_profile() == profile

    def test_unknown(self) -> None:
        settings = Settings(
            _env_file=None,
            bitcoin_profile="main",
            electrum={"testnet": BitcoinServerProfile(server="localhost", port=50001, protocol="tcp")},
        )
        with pytest.raises(ConfigurationError, match="configured: testnet"):
            TBTCConfig(settings=settings).bitcoin_server_profile()

    def test_port_range(self) -> None:
        with pytest.raises(ValueError):
            BitcoinServerProfile(server="localhost", port=70000)
