"""
test_fhe.py - Tests for the simulated homomorphic backend.
"""

import pytest

from trajectory_fhe.errors import CiphertextContextError
from trajectory_fhe.fhe import EXPORT_LEN, UINT64_MASK, SimulatedFHEBackend


@pytest.fixture
def backend():
    return SimulatedFHEBackend("unit-test-key")


# =============================================================================
# ARITHMETIC
# =============================================================================

def test_add_sub_mul(backend):
    a, b = backend.encrypt(7), backend.encrypt(5)
    assert backend.decrypt(backend.add(a, b)) == 12
    assert backend.decrypt(backend.sub(a, b)) == 2
    assert backend.decrypt(backend.mul(a, b)) == 35


def test_sub_wraps_like_uint64(backend):
    diff = backend.sub(backend.encrypt(3), backend.encrypt(5))
    assert backend.decrypt(diff) == UINT64_MASK - 1


def test_square_of_wrapped_difference_is_exact(backend):
    """(3-5)² computed with wrap-around still equals 4."""
    diff = backend.sub(backend.encrypt(3), backend.encrypt(5))
    assert backend.decrypt(backend.mul(diff, diff)) == 4


def test_div_by_public_constant_floors(backend):
    assert backend.decrypt(backend.div(backend.encrypt(2999), 1000)) == 2
    assert backend.decrypt(backend.div(backend.encrypt(25), 1000)) == 0


def test_div_rejects_non_positive_divisor(backend):
    with pytest.raises(ValueError):
        backend.div(backend.encrypt(10), 0)


def test_gt_and_select(backend):
    one, zero = backend.const(1), backend.const(0)
    yes = backend.gt(backend.encrypt(110), backend.const(100))
    no = backend.gt(backend.encrypt(100), backend.const(100))
    assert backend.decrypt(yes) == 1
    assert backend.decrypt(no) == 0
    assert backend.decrypt(backend.select(yes, one, zero)) == 1
    assert backend.decrypt(backend.select(no, one, zero)) == 0


def test_encrypt_rejects_out_of_range(backend):
    with pytest.raises(ValueError):
        backend.encrypt(-1)
    with pytest.raises(ValueError):
        backend.encrypt(UINT64_MASK + 1)


def test_repr_does_not_leak_value(backend):
    assert "123456" not in repr(backend.encrypt(123456))


# =============================================================================
# CONTEXT BINDING & EXCHANGE FORMAT
# =============================================================================

def test_export_import_preserves_value(backend):
    data = backend.export_ciphertext(backend.encrypt(4242))
    assert len(data) == EXPORT_LEN
    assert backend.decrypt(backend.import_ciphertext(data)) == 4242


def test_export_is_randomized(backend):
    ct = backend.encrypt(1)
    assert backend.export_ciphertext(ct) != backend.export_ciphertext(ct)


def test_foreign_context_rejected(backend):
    other = SimulatedFHEBackend("another-key")
    foreign = other.encrypt(1)
    with pytest.raises(CiphertextContextError):
        backend.add(foreign, backend.encrypt(1))
    with pytest.raises(CiphertextContextError):
        backend.import_ciphertext(other.export_ciphertext(foreign))


def test_tampered_ciphertext_rejected(backend):
    data = bytearray(backend.export_ciphertext(backend.encrypt(9)))
    data[-20] ^= 0xFF
    with pytest.raises(CiphertextContextError):
        backend.import_ciphertext(bytes(data))


def test_malformed_ciphertext_rejected(backend):
    with pytest.raises(CiphertextContextError):
        backend.import_ciphertext(b"not a ciphertext")
