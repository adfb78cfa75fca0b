"""Unit tests for security/signing.py."""

import pytest

from soc_agent.core.exceptions import ConfigError
from soc_agent.security.signing import (
    EventSigner, canonical_json, generate_key_pair, private_key_to_pem, verify_signature,
)


@pytest.fixture(scope='module')
def key():
    return generate_key_pair()


# ---------------------------------------------------------------------------
# TestSigning
# ---------------------------------------------------------------------------


class TestSigning:
    def test_canonical_json_ignores_key_order(self):
        assert canonical_json({'b': 1, 'a': 2}) == canonical_json({'a': 2, 'b': 1}) == b'{"a":2,"b":1}'

    def test_signature_verifies(self, key):
        payload = {'eventType': 'process', 'severity': 'high', 'details': {'pid': 4242}}
        signature = EventSigner(key).sign(payload)
        assert verify_signature(payload, signature, key.public_key())

    def test_tampered_payload_rejected(self, key):
        payload = {'eventType': 'process', 'severity': 'high'}
        signature = EventSigner(key).sign(payload)
        assert not verify_signature({**payload, 'severity': 'low'}, signature, key.public_key())

    def test_signature_from_other_key_rejected(self, key):
        payload = {'eventType': 'file'}
        signature = EventSigner(generate_key_pair()).sign(payload)
        assert not verify_signature(payload, signature, key.public_key())


# ---------------------------------------------------------------------------
# TestFromFile
# ---------------------------------------------------------------------------


class TestFromFile:
    def test_loads_pem_key(self, tmp_path, key):
        path = tmp_path / 'agent.pem'
        path.write_bytes(private_key_to_pem(key))
        signer = EventSigner.from_file(str(path))
        assert verify_signature({'a': 1}, signer.sign({'a': 1}), key.public_key())

    def test_missing_key_raises_config_error(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot load private key"):
            EventSigner.from_file(str(tmp_path / 'missing.pem'))

    def test_garbage_key_raises_config_error(self, tmp_path):
        path = tmp_path / 'agent.pem'
        path.write_text('not a key', encoding='utf-8')
        with pytest.raises(ConfigError):
            EventSigner.from_file(str(path))
