"""Decryption oracle adapters.

The oracle is the only party able to turn ciphertexts into cleartexts. It
takes an ordered ciphertext batch plus a callback tag, hands back an opaque
request id, and later invokes the tagged callback with
``(request_id, cleartexts, proof)``. ``verify`` must pass before the
cleartexts are trusted.

Wire format of ``cleartexts``: one 32-byte big-endian unsigned word per
ciphertext, in batch order. ``proof`` is HMAC-SHA256 under the oracle's
signer key over ``request_id || 0x00 || cleartexts``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence

import httpx

from trajectory_fhe.errors import InvalidCleartexts, OracleUnavailable
from trajectory_fhe.fhe import Ciphertext, FHEBackend

logger = logging.getLogger(__name__)

WORD_SIZE = 32

DecryptionCallback = Callable[[str, bytes, bytes], Any]


def encode_cleartexts(values: Sequence[int]) -> bytes:
    return b"".join(int(v).to_bytes(WORD_SIZE, "big") for v in values)


def decode_cleartexts(data: bytes, count: int) -> list[int]:
    """Split ``data`` into ``count`` words, rejecting any other length."""
    if len(data) != count * WORD_SIZE:
        raise InvalidCleartexts(f"expected {count} words ({count * WORD_SIZE} bytes), got {len(data)} bytes")
    return [int.from_bytes(data[i:i + WORD_SIZE], "big") for i in range(0, len(data), WORD_SIZE)]


def _signer(key: str | bytes) -> bytes:
    return key.encode() if isinstance(key, str) else key


def sign_proof(signer_key: str | bytes, request_id: str, cleartexts: bytes) -> bytes:
    return hmac.new(_signer(signer_key), request_id.encode() + b"\x00" + cleartexts, hashlib.sha256).digest()


def verify_proof(signer_key: str | bytes, request_id: str, cleartexts: bytes, proof: bytes) -> bool:
    return hmac.compare_digest(sign_proof(signer_key, request_id, cleartexts), proof)


class DecryptionOracle(Protocol):
    def request_decryption(self, handles: Sequence[Ciphertext], callback_tag: str) -> str:
        ...

    def verify(self, request_id: str, cleartexts: bytes, proof: bytes) -> bool:
        ...

    def register_callback(self, tag: str, callback: DecryptionCallback) -> None:
        ...


@dataclass
class _Job:
    handles: list[Ciphertext]
    callback_tag: str


class LocalDecryptionOracle:
    """In-process oracle: queues requests and delivers them on ``fulfill``.

    Delivery is explicit so the request and callback stay two separate steps,
    with any number of other operations allowed in between.
    """

    name = "local"

    def __init__(self, fhe: FHEBackend, signer_key: str | bytes):
        self.fhe = fhe
        self._signer_key = _signer(signer_key)
        self._callbacks: dict[str, DecryptionCallback] = {}
        self._jobs: OrderedDict[str, _Job] = OrderedDict()
        self._lock = threading.Lock()

    def register_callback(self, tag: str, callback: DecryptionCallback) -> None:
        self._callbacks[tag] = callback

    def request_decryption(self, handles: Sequence[Ciphertext], callback_tag: str) -> str:
        request_id = uuid.uuid4().hex
        with self._lock:
            self._jobs[request_id] = _Job(handles=list(handles), callback_tag=callback_tag)
        logger.debug("Oracle accepted request %s (%d ciphertexts)", request_id, len(handles))
        return request_id

    def verify(self, request_id: str, cleartexts: bytes, proof: bytes) -> bool:
        return verify_proof(self._signer_key, request_id, cleartexts, proof)

    def pending_request_ids(self) -> list[str]:
        with self._lock:
            return list(self._jobs)

    def decrypt_batch(self, request_id: str) -> tuple[bytes, bytes]:
        """Decrypt a queued batch without delivering it. Returns (cleartexts, proof)."""
        with self._lock:
            job = self._jobs.get(request_id)
        if job is None:
            raise KeyError(request_id)
        cleartexts = encode_cleartexts([self.fhe.decrypt(ct) for ct in job.handles])
        return cleartexts, sign_proof(self._signer_key, request_id, cleartexts)

    def fulfill(self, request_id: str) -> Any:
        """Decrypt one queued batch and invoke its callback."""
        cleartexts, proof = self.decrypt_batch(request_id)
        with self._lock:
            job = self._jobs.pop(request_id)
        callback = self._callbacks.get(job.callback_tag)
        if callback is None:
            raise OracleUnavailable(f"no callback registered for tag {job.callback_tag!r}")
        logger.info("Oracle delivering request %s", request_id)
        return callback(request_id, cleartexts, proof)

    def fulfill_all(self) -> int:
        """Deliver every queued request in issue order. Returns the number delivered."""
        delivered = 0
        for request_id in self.pending_request_ids():
            self.fulfill(request_id)
            delivered += 1
        return delivered


class HTTPDecryptionOracle:
    """Client for a remote decryption relayer.

    Ciphertexts are shipped in their exported byte form; the relayer posts
    results back to ``callback_url``. Proofs are checked locally against the
    shared signer key.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        fhe: FHEBackend,
        signer_key: str | bytes,
        callback_url: str | None = None,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.fhe = fhe
        self.callback_url = callback_url
        self._signer_key = _signer(signer_key)
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def register_callback(self, tag: str, callback: DecryptionCallback) -> None:
        """No-op: the relayer delivers over HTTP to ``/api/oracle/callback``."""
        logger.debug("Relayer deliveries for %r arrive via %s", tag, self.callback_url)

    def request_decryption(self, handles: Sequence[Ciphertext], callback_tag: str) -> str:
        payload = {
            "ciphertexts": [base64.b64encode(self.fhe.export_ciphertext(ct)).decode() for ct in handles],
            "callback_tag": callback_tag,
            "callback_url": self.callback_url,
        }
        try:
            resp = self._client.post(f"{self.base_url}/v1/decrypt", json=payload)
            resp.raise_for_status()
            request_id = resp.json()["request_id"]
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.error("Decryption relayer request failed: %s", exc)
            raise OracleUnavailable(f"decryption relayer request failed: {exc}") from exc
        logger.info("Relayer accepted request %s (%d ciphertexts)", request_id, len(handles))
        return str(request_id)

    def verify(self, request_id: str, cleartexts: bytes, proof: bytes) -> bool:
        return verify_proof(self._signer_key, request_id, cleartexts, proof)

    def close(self) -> None:
        self._client.close()
