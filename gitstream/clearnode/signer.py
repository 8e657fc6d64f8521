"""
gitstream.clearnode.signer
==========================

Signing capability for ClearNode requests.

The client only needs two things from a key holder: its account address and a
deterministic signature over arbitrary bytes. :class:`RawSigner` captures that
boundary so key management stays pluggable (env key, KMS, hardware wallet).

:class:`EthRawSigner` is the default secp256k1 implementation. It signs the
Keccak-256 digest of the payload *directly* (no ``"\\x19Ethereum Signed
Message"`` prefix), which is the scheme ClearNode verifies for RPC payloads.
Signatures are 65 bytes ``r || s || v`` with ``v`` in {27, 28}, hex encoded.
"""

from __future__ import annotations

from typing import Protocol, Union, runtime_checkable

from eth_account import Account
from eth_keys import keys
from eth_utils import keccak, to_checksum_address

from ..errors import ValidationError

__all__ = ["RawSigner", "EthRawSigner", "recover_signer"]


@runtime_checkable
class RawSigner(Protocol):
    @property
    def address(self) -> str: ...

    def sign_raw(self, message: bytes) -> str:
        """Return a 0x-hex signature over ``message``."""
        ...


class EthRawSigner:
    def __init__(self, private_key: Union[str, bytes]) -> None:
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            # never echo the key itself
            raise ValidationError("Operator private key is not a valid secp256k1 key") from e

    def __repr__(self) -> str:
        return f"EthRawSigner(address={self.address})"

    @property
    def address(self) -> str:
        return self._account.address

    def sign_raw(self, message: bytes) -> str:
        digest = keccak(message)
        signed = self._account.unsafe_sign_hash(digest)
        return "0x" + bytes(signed.signature).hex()


def recover_signer(message: bytes, signature: str) -> str:
    """Checksum address whose key produced ``signature`` over keccak(message)."""
    raw = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
    if len(raw) != 65:
        raise ValidationError("Signature must be 65 bytes")
    v = raw[64]
    if v >= 27:
        v -= 27
    sig = keys.Signature(raw[:64] + bytes([v]))
    public_key = sig.recover_public_key_from_msg_hash(keccak(message))
    return to_checksum_address(public_key.to_canonical_address())
