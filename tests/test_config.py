import pytest

from wallet_core.config import (
    NetworkConfig,
    WalletCoreConfig,
    get_wallet_dir,
    list_configured_chains,
    list_wallets,
    load_config,
    resolve_chain,
    save_config,
    slugify,
)
from wallet_core.errors import ValidationError


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "nope.yaml")
    assert config.default_chain == "sepolia"
    assert config.rpc.transport_retries == 1
    assert config.session.idle_timeout_seconds == 1800
    assert config.api.port == 3001


def test_env_expansion(tmp_path, monkeypatch):
    monkeypatch.setenv("ETHERSCAN_API_KEY", "secret-key")
    monkeypatch.setenv("SEPOLIA_RPC", "https://my-node.example")
    path = tmp_path / "config.yaml"
    path.write_text(
        "explorer:\n"
        "  api_key: ${ETHERSCAN_API_KEY}\n"
        "networks:\n"
        "  sepolia:\n"
        "    rpc_url: ${SEPOLIA_RPC}\n"
        "    tokens:\n"
        "      - symbol: USDC\n"
        "        address: '0x1c7d4b196cb0c7b01d743fbc6116a902379c7238'\n"
        "        decimals: 6\n"
    )
    config = load_config(path)
    assert config.explorer.api_key == "secret-key"
    chain = resolve_chain(config, "sepolia")
    assert chain.rpc_url == "https://my-node.example"
    assert chain.chain_id == 11155111
    assert chain.find_token("USDC").decimals == 6


def test_save_and_reload(tmp_path):
    config = WalletCoreConfig(name="savings", default_chain="base")
    path = get_wallet_dir("Savings", tmp_path) / "config.yaml"
    save_config(config, path)
    assert load_config(path).default_chain == "base"
    assert list_wallets(tmp_path) == ["savings"]


def test_resolve_unknown_chain():
    with pytest.raises(ValidationError):
        resolve_chain(WalletCoreConfig(), "dogechain")


def test_custom_network_needs_chain_id_and_rpc():
    config = WalletCoreConfig(networks={"devnet": NetworkConfig(rpc_url="http://localhost:8545")})
    with pytest.raises(ValidationError):
        resolve_chain(config, "devnet")

    config = WalletCoreConfig(networks={"devnet": NetworkConfig(chain_id=31337, rpc_url="http://localhost:8545")})
    chain = resolve_chain(config, "devnet")
    assert chain.chain_id == 31337
    assert chain.native_symbol == "ETH"
    assert "devnet" in list_configured_chains(config)


def test_slugify():
    assert slugify("My Wallet") == "my-wallet"
    assert slugify("") == "default"


def test_explorer_links():
    chain = resolve_chain(WalletCoreConfig(), "sepolia")
    assert chain.testnet is True
    assert chain.tx_url("0xabc") == "https://sepolia.etherscan.io/tx/0xabc"

    config = WalletCoreConfig(networks={"devnet": NetworkConfig(chain_id=31337, rpc_url="http://localhost:8545", testnet=True)})
    devnet = resolve_chain(config, "devnet")
    assert devnet.testnet is True
    assert devnet.address_url("0xabc") == ""
