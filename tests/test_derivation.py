import pytest
from eth_account import Account
from eth_account.hdaccount import key_from_seed, seed_from_mnemonic

from wallet_core.errors import DerivationMismatchError, ValidationError
from wallet_core.wallet.derivation import (
    EVM_STRATEGIES,
    KeyDerivation,
    generate_seed_phrase,
    normalize_seed_phrase,
)

from conftest import ADDRESS, PHRASE


def _address_at(path: str) -> str:
    seed = seed_from_mnemonic(PHRASE, passphrase="")
    return Account.from_key(key_from_seed(seed, path)).address


class TestSeedPhrases:
    def test_normalize(self):
        messy = "  " + PHRASE.upper().replace(" ", "   ") + "\n"
        assert normalize_seed_phrase(messy) == PHRASE

    def test_rejects_bad_checksum(self):
        with pytest.raises(ValidationError):
            normalize_seed_phrase("abandon " * 11 + "abandon")

    def test_rejects_wrong_length(self):
        with pytest.raises(ValidationError):
            normalize_seed_phrase("abandon about")

    def test_generate(self):
        phrase = generate_seed_phrase()
        assert len(phrase.split()) == 12
        assert normalize_seed_phrase(phrase) == phrase
        assert len(generate_seed_phrase(24).split()) == 24


class TestKeyDerivation:
    def test_canonical_address(self):
        account = KeyDerivation().derive_account(PHRASE, "sepolia", 0)
        assert account.address == ADDRESS
        assert account.strategy == "bip44"
        assert account.path == "m/44'/60'/0'/0/0"

    def test_deterministic(self):
        d = KeyDerivation()
        first = d.derive_account(PHRASE, "sepolia", 3).address
        assert KeyDerivation().derive_account(PHRASE, "sepolia", 3).address == first
        assert d.derive_account(PHRASE, "sepolia", 4).address != first

    def test_expected_canonical_address_accepted(self):
        account = KeyDerivation().derive_account(PHRASE, "sepolia", 0, ADDRESS.lower())
        assert account.strategy == "bip44"

    def test_falls_back_to_named_strategy(self, caplog):
        expected = _address_at("m/44'/60'/1'/0/0")
        caplog.set_level("WARNING")
        account = KeyDerivation().derive_account(PHRASE, "sepolia", 1, expected)
        assert account.address == expected
        assert account.strategy == "bip44-account"
        assert "non-canonical" in caplog.text

    def test_mismatch_reports_every_candidate(self):
        stranger = "0x000000000000000000000000000000000000dEaD"
        with pytest.raises(DerivationMismatchError) as info:
            KeyDerivation().derive_account(PHRASE, "sepolia", 1, stranger)
        err = info.value
        assert err.expected == stranger
        assert [c[0] for c in err.candidates] == [s.name for s in EVM_STRATEGIES]
        assert err.to_dict()["candidates"][0]["path"] == "m/44'/60'/0'/0/1"

    def test_duplicate_paths_tried_once(self):
        stranger = "0x000000000000000000000000000000000000dEaD"
        with pytest.raises(DerivationMismatchError) as info:
            KeyDerivation().derive_account(PHRASE, "sepolia", 0, stranger)
        paths = [c[1] for c in info.value.candidates]
        assert len(paths) == len(set(paths))
        assert len(paths) == len(EVM_STRATEGIES) - 1

    def test_negative_index_rejected(self):
        with pytest.raises(ValidationError):
            KeyDerivation().derive_account(PHRASE, "sepolia", -1)

    def test_unlocked_key_is_zeroed(self):
        d = KeyDerivation()
        with d.unlocked_key(PHRASE, 0, ADDRESS) as material:
            assert Account.from_key(bytes(material.private_key)).address == ADDRESS
            buffer = material.private_key
        assert all(b == 0 for b in buffer)
        assert material.private_key == bytearray()

    def test_unlocked_key_zeroed_on_error(self):
        d = KeyDerivation()
        with pytest.raises(RuntimeError):
            with d.unlocked_key(PHRASE, 0, ADDRESS) as material:
                buffer = material.private_key
                raise RuntimeError("boom")
        assert all(b == 0 for b in buffer)
