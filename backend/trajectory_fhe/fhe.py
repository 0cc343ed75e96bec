"""Homomorphic arithmetic capability.

The engine only talks to the ``FHEBackend`` protocol: opaque ciphertext
handles, arithmetic on them, and an exchangeable byte form. Real FHE
primitives live outside this package; ``SimulatedFHEBackend`` stands in for
them in tests and local runs. It models encrypted unsigned 64-bit integers
(wrap-around arithmetic, like the euint64 type of FHE coprocessors) and masks
the exported bytes with a keyed keystream so they are not readable without
the context key.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import struct
from typing import Protocol

from trajectory_fhe.errors import CiphertextContextError

UINT64_MASK = (1 << 64) - 1

_MAGIC = b"TFH1"
_CONTEXT_ID_LEN = 8
_NONCE_LEN = 8
_TAG_LEN = 16
EXPORT_LEN = len(_MAGIC) + _CONTEXT_ID_LEN + _NONCE_LEN + 8 + _TAG_LEN


class Ciphertext:
    """Opaque handle to an encrypted scalar bound to one encryption context."""

    __slots__ = ("_context_id", "_value")

    def __init__(self, context_id: bytes, value: int):
        self._context_id = context_id
        self._value = value & UINT64_MASK

    @property
    def context_id(self) -> bytes:
        return self._context_id

    def __repr__(self) -> str:
        return f"Ciphertext(context={self._context_id.hex()})"


class FHEBackend(Protocol):
    context_id: bytes

    def encrypt(self, value: int) -> Ciphertext:
        ...

    def const(self, value: int) -> Ciphertext:
        ...

    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        ...

    def sub(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        ...

    def mul(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        ...

    def div(self, a: Ciphertext, divisor: int) -> Ciphertext:
        ...

    def gt(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        ...

    def select(self, predicate: Ciphertext, if_true: Ciphertext, if_false: Ciphertext) -> Ciphertext:
        ...

    def export_ciphertext(self, ct: Ciphertext) -> bytes:
        ...

    def import_ciphertext(self, data: bytes) -> Ciphertext:
        ...

    def decrypt(self, ct: Ciphertext) -> int:
        ...


class SimulatedFHEBackend:
    """Reference backend with FHE semantics but no actual lattice crypto."""

    def __init__(self, context_key: str | bytes | None = None):
        if context_key is None:
            context_key = secrets.token_bytes(32)
        if isinstance(context_key, str):
            context_key = context_key.encode()
        self._key = hashlib.blake2b(context_key, digest_size=32, person=b"trajfhe-ctx").digest()
        self.context_id = hashlib.blake2b(
            self._key, digest_size=_CONTEXT_ID_LEN, person=b"trajfhe-id"
        ).digest()

    def _check(self, *cts: Ciphertext) -> None:
        for ct in cts:
            if not isinstance(ct, Ciphertext) or ct.context_id != self.context_id:
                raise CiphertextContextError("ciphertext is not bound to this encryption context")

    def _wrap(self, value: int) -> Ciphertext:
        return Ciphertext(self.context_id, value)

    # --- client side ---

    def encrypt(self, value: int) -> Ciphertext:
        if value < 0 or value > UINT64_MASK:
            raise ValueError(f"value {value} out of uint64 range")
        return self._wrap(value)

    def const(self, value: int) -> Ciphertext:
        """Trivially encrypt a public constant."""
        return self.encrypt(value)

    # --- homomorphic arithmetic ---

    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        self._check(a, b)
        return self._wrap(a._value + b._value)

    def sub(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        self._check(a, b)
        return self._wrap(a._value - b._value)

    def mul(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        self._check(a, b)
        return self._wrap(a._value * b._value)

    def div(self, a: Ciphertext, divisor: int) -> Ciphertext:
        """Unsigned integer division by a public (plaintext) divisor."""
        self._check(a)
        if divisor <= 0:
            raise ValueError("divisor must be a positive public constant")
        return self._wrap(a._value // divisor)

    def gt(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        self._check(a, b)
        return self._wrap(int(a._value > b._value))

    def select(self, predicate: Ciphertext, if_true: Ciphertext, if_false: Ciphertext) -> Ciphertext:
        # Arithmetic mux: both operands always contribute to the result
        self._check(predicate, if_true, if_false)
        p = predicate._value & 1
        return self._wrap(p * if_true._value + (1 - p) * if_false._value)

    # --- exchangeable byte form ---

    def _keystream(self, nonce: bytes) -> int:
        digest = hashlib.blake2b(nonce, key=self._key, digest_size=8).digest()
        return struct.unpack(">Q", digest)[0]

    def _tag(self, body: bytes) -> bytes:
        return hmac.new(self._key, body, hashlib.sha256).digest()[:_TAG_LEN]

    def export_ciphertext(self, ct: Ciphertext) -> bytes:
        self._check(ct)
        nonce = secrets.token_bytes(_NONCE_LEN)
        masked = ct._value ^ self._keystream(nonce)
        body = _MAGIC + self.context_id + nonce + struct.pack(">Q", masked)
        return body + self._tag(body)

    def import_ciphertext(self, data: bytes) -> Ciphertext:
        if len(data) != EXPORT_LEN or not data.startswith(_MAGIC):
            raise CiphertextContextError("malformed ciphertext")
        body, tag = data[:-_TAG_LEN], data[-_TAG_LEN:]
        offset = len(_MAGIC)
        context_id = body[offset:offset + _CONTEXT_ID_LEN]
        if context_id != self.context_id:
            raise CiphertextContextError("ciphertext was produced under a different encryption context")
        if not hmac.compare_digest(tag, self._tag(body)):
            raise CiphertextContextError("ciphertext integrity check failed")
        offset += _CONTEXT_ID_LEN
        nonce = body[offset:offset + _NONCE_LEN]
        (masked,) = struct.unpack(">Q", body[offset + _NONCE_LEN:])
        return self._wrap(masked ^ self._keystream(nonce))

    # --- key holder side (oracle only) ---

    def decrypt(self, ct: Ciphertext) -> int:
        self._check(ct)
        return ct._value
