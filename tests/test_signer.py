from __future__ import annotations

import pytest
from eth_account import Account

from gitstream.clearnode.signer import EthRawSigner, RawSigner, recover_signer
from gitstream.errors import ValidationError

from .conftest import OPERATOR_KEY


def test_address_matches_key(signer):
    assert signer.address == Account.from_key(OPERATOR_KEY).address
    assert isinstance(signer, RawSigner)
    assert OPERATOR_KEY not in repr(signer)


def test_signature_is_65_bytes_and_recoverable(signer):
    message = b'[1,"get_channels",{},2]'
    sig = signer.sign_raw(message)
    raw = bytes.fromhex(sig[2:])
    assert len(raw) == 65
    assert raw[64] in (27, 28)
    assert recover_signer(message, sig) == signer.address


def test_signing_is_deterministic(signer):
    assert signer.sign_raw(b"payload") == signer.sign_raw(b"payload")
    assert recover_signer(b"other", signer.sign_raw(b"payload")) != signer.address


@pytest.mark.parametrize("key", ["0x1234", "not-a-key", "0x" + "ab" * 31])
def test_bad_keys_raise_validation_error(key):
    with pytest.raises(ValidationError) as ei:
        EthRawSigner(key)
    assert key not in ei.value.message


def test_recover_rejects_short_signatures():
    with pytest.raises(ValidationError):
        recover_signer(b"x", "0x" + "ab" * 10)
