#!/usr/bin/env python3
import argparse
import base64
import logging
from collections import deque
from concurrent.futures import Executor, ThreadPoolExecutor
from random import Random, SystemRandom
from typing import Callable, Deque, List, Optional

from util import BLOCK_SIZE, cbc_decrypt, cbc_encrypt, chunkify, is_valid_pkcs7, new_block_cipher, unpad_pkcs7

"""
The CBC padding oracle

This is the best-known attack on modern block-cipher cryptography.

The first function should select at random one of the following 10 strings, generate a random AES key (which
it should save for all future encryptions), pad the string out to the 16-byte AES block size and CBC-encrypt
it under that key, providing the caller the ciphertext and IV.

The second function should consume the ciphertext produced by the first function, decrypt it, check its
padding, and return true or false depending on whether the padding is valid.

The fundamental insight behind this attack is that the byte 01h is valid padding, and occur in 1/256 trials of
"randomized" plaintexts produced by decrypting a tampered ciphertext.

02h in isolation is not valid padding.

02h 02h is valid padding, but is much less likely to occur randomly than 01h.

03h 03h 03h is even less likely.

So you can assume that if you corrupt a decryption AND it had valid padding, you know what that padding byte is.
"""

log = logging.getLogger(__name__)

FLAGS = [
    "MDAwMDAwTm93IHRoYXQgdGhlIHBhcnR5IGlzIGp1bXBpbmc=",
    "MDAwMDAxV2l0aCB0aGUgYmFzcyBraWNrZWQgaW4gYW5kIHRoZSBWZWdhJ3MgYXJlIHB1bXBpbic=",
    "MDAwMDAyUXVpY2sgdG8gdGhlIHBvaW50LCB0byB0aGUgcG9pbnQsIG5vIGZha2luZw==",
    "MDAwMDAzQ29va2luZyBNQydzIGxpa2UgYSBwb3VuZCBvZiBiYWNvbg==",
    "MDAwMDA0QnVybmluZyAnZW0sIGlmIHlvdSBhaW4ndCBxdWljayBhbmQgbmltYmxl",
    "MDAwMDA1SSBnbyBjcmF6eSB3aGVuIEkgaGVhciBhIGN5bWJhbA==",
    "MDAwMDA2QW5kIGEgaGlnaCBoYXQgd2l0aCBhIHNvdXBlZCB1cCB0ZW1wbw==",
    "MDAwMDA3SSdtIG9uIGEgcm9sbCwgaXQncyB0aW1lIHRvIGdvIHNvbG8=",
    "MDAwMDA4b2xsaW4nIGluIG15IGZpdmUgcG9pbnQgb2g=",
    "MDAwMDA5aXRoIG15IHJhZy10b3AgZG93biBzbyBteSBoYWlyIGNhbiBibG93",
]


class CBCPaddingOracle:
    """
    Holds a plaintext encrypted under a fixed random key. Hands out IV || ciphertext with a fresh IV each time,
    and tells anyone who asks whether IV || ciphertext decrypts to valid padding

    >>> oracle = CBCPaddingOracle(b"Hack the planet", rng=Random(0))
    >>> ct = oracle.encrypt()
    >>> len(ct)
    32
    >>> ct == oracle.encrypt()
    False
    >>> oracle.decrypt_and_check_padding(ct)
    True
    >>> oracle.decrypt_and_check_padding(ct[:15] + bytes([ct[15] ^ 0x80]) + ct[16:])
    False
    >>> oracle.decrypt_and_check_padding(ct[:-1])
    Traceback (most recent call last):
    ValueError: The length of the provided data is not a multiple of the block length.
    """

    def __init__(self, pt: bytes, block_size: int = BLOCK_SIZE, rng: Optional[Random] = None):
        self._rng = rng if rng is not None else SystemRandom()
        self._cipher = new_block_cipher(block_size, self._rng)
        self._pt = pt

    def encrypt(self) -> bytes:
        iv = self._rng.randbytes(self._cipher.block_size)
        return iv + cbc_encrypt(self._pt, self._cipher, iv)

    def decrypt_and_check_padding(self, ct: bytes) -> bool:
        block_size = self._cipher.block_size
        if len(ct) % block_size:
            raise ValueError("The length of the provided data is not a multiple of the block length.")
        iv, ct = ct[:block_size], ct[block_size:]
        pt = cbc_decrypt(ct, self._cipher, iv, unpad=False)
        return is_valid_pkcs7(pt, block_size)


class PaddingOracleAttackError(Exception):
    pass


def _first_valid_guess(check: Callable[[int], bool], guesses: List[int],
                       executor: Optional[Executor] = None, batch_size: int = 1) -> Optional[int]:
    """
    >>> _first_valid_guess(lambda guess: guess > 4, list(range(10)))
    5

    With an executor, guesses go out batch_size at a time and nothing past the batch holding the first hit is
    checked

    >>> checked = []
    >>> def check(guess):
    ...     checked.append(guess)
    ...     return guess in (5, 6)
    >>> with ThreadPoolExecutor(max_workers=4) as executor:
    ...     _first_valid_guess(check, list(range(256)), executor, batch_size=4)
    5
    >>> sorted(checked)
    [0, 1, 2, 3, 4, 5, 6, 7]
    """
    if executor is None:
        return next((guess for guess in guesses if check(guess)), None)
    for start in range(0, len(guesses), batch_size):
        batch = guesses[start:start + batch_size]
        # map() hands back results in submission order, so the pick is the same as the sequential scan
        for guess, valid in zip(batch, list(executor.map(check, batch))):
            if valid:
                return guess
    return None


def leak_block_from_padding_oracle(oracle: Callable[[bytes], bool], prev_block: bytes, block: bytes,
                                   executor: Optional[Executor] = None, batch_size: int = 1) -> bytes:
    """
    Recover the plaintext of one block of CBC ciphertext, given the ciphertext block (or IV) that came before it

    @param oracle: A function which takes IV || ciphertext and returns True if the PKCS#7 padding was correct
    @param prev_block: The block XORed into block's decryption
    @param block: The block to recover the plaintext of
    @param executor: (Optional) an executor to check the 256 guesses for each byte with
    @param batch_size: How many guesses to hand the executor at once
    """
    block_size = len(block)
    known: Deque[int] = deque()

    for position in reversed(range(block_size)):
        padding_value = block_size - position

        # Make every byte we've already recovered decrypt to padding_value
        forged = bytearray(prev_block)
        for offset, b in enumerate(known, start=position + 1):
            forged[offset] ^= b ^ padding_value

        def check(guess: int, forged: bytearray = forged, position: int = position,
                  padding_value: int = padding_value) -> bool:
            attempt = bytearray(forged)
            attempt[position] ^= guess ^ padding_value
            if not oracle(bytes(attempt) + block):
                return False
            if position == block_size - 1 and position > 0:
                # This might be a longer padding that happened to line up (e.g. \x02\x02). Mangling the second to
                # last byte only leaves a \x01 padding standing
                attempt[position - 1] ^= 0x01
                return oracle(bytes(attempt) + block)
            return True

        if known:
            guesses = list(range(256))
        else:
            # Guessing padding_value leaves prev_block untouched, which we know decrypts to good padding when this
            # is the last block. Try it last
            guesses = [g for g in range(256) if g != padding_value] + [padding_value]

        guess = _first_valid_guess(check, guesses, executor, batch_size)
        if guess is None:
            raise PaddingOracleAttackError(f"Failed to attack oracle over the given block: {block!r}")
        known.appendleft(guess)

    return bytes(known)


def leak_pt_from_padding_oracle(oracle: Callable[[bytes], bool], ciphertext: bytes, block_size: int = BLOCK_SIZE,
                                max_workers: Optional[int] = None) -> bytes:
    """
    @param oracle: A function which takes IV || ciphertext and returns True if the PKCS#7 padding was correct, else False
    @param ciphertext: A known-good IV || ciphertext
    @param block_size: The cipher's block size
    @param max_workers: (Optional) scan guesses using a thread pool of this many workers
    @return: The plaintext corresponding to IV and ciphertext

    >>> flag = b"Hack the planet"
    >>> oracle = CBCPaddingOracle(flag, rng=Random(1))
    >>> leak_pt_from_padding_oracle(oracle.decrypt_and_check_padding, oracle.encrypt())
    b'Hack the planet'

    >>> for line in FLAGS[:3]:
    ...     oracle = CBCPaddingOracle(base64.b64decode(line), rng=Random(2))
    ...     print(leak_pt_from_padding_oracle(oracle.decrypt_and_check_padding, oracle.encrypt()).decode())
    000000Now that the party is jumping
    000001With the bass kicked in and the Vega's are pumpin'
    000002Quick to the point, to the point, no faking

    >>> flags = [base64.b64decode(line) for line in FLAGS]
    >>> oracles = [CBCPaddingOracle(flag, rng=Random(3)) for flag in flags]
    >>> [leak_pt_from_padding_oracle(o.decrypt_and_check_padding, o.encrypt()) for o in oracles] == flags
    True

    Every padding length, for both block sizes

    >>> rng = Random(4)
    >>> def roundtrip(pt, block_size):
    ...     oracle = CBCPaddingOracle(pt, block_size=block_size, rng=rng)
    ...     return leak_pt_from_padding_oracle(oracle.decrypt_and_check_padding, oracle.encrypt(), block_size)
    >>> all(roundtrip(pt, block_size) == pt
    ...     for block_size in (8, 16)
    ...     for pt in (rng.randbytes(n) for n in range(block_size, 2 * block_size)))
    True

    Blocks that decrypt to something which is already almost valid padding don't trip us up

    >>> tricky = [b"0123456789abcd\\x02Z", b"0123456789abc\\x03\\x03Z", b"0123456789abcd\\x02\\x02", b"\\x01" * 16]
    >>> all(roundtrip(pt + b"trailing block", 16) == pt + b"trailing block" for pt in tricky)
    True
    >>> all(roundtrip(pt, 16) == pt for pt in tricky)
    True

    A thread pool gets the same answer

    >>> oracle = CBCPaddingOracle(flags[4], rng=rng)
    >>> leak_pt_from_padding_oracle(oracle.decrypt_and_check_padding, oracle.encrypt(), max_workers=8) == flags[4]
    True

    and only overshoots the sequential scan by what's left of each byte's last batch of guesses

    >>> oracle = CBCPaddingOracle(b"Hack the planet", rng=Random(5))
    >>> ct = oracle.encrypt()
    >>> def count_queries(max_workers):
    ...     queries = []
    ...     def counting_oracle(attempt):
    ...         queries.append(attempt)
    ...         return oracle.decrypt_and_check_padding(attempt)
    ...     assert leak_pt_from_padding_oracle(counting_oracle, ct, max_workers=max_workers) == b"Hack the planet"
    ...     return len(queries)
    >>> sequential, threaded = count_queries(None), count_queries(8)
    >>> sequential <= threaded <= sequential + 16 * (8 - 1) * 2
    True
    >>> threaded < 16 * 256
    True

    An oracle which never gives anything away can't be attacked

    >>> ct = oracle.encrypt()
    >>> try:
    ...     leak_pt_from_padding_oracle(lambda attempt: attempt == ct, ct)
    ... except PaddingOracleAttackError:
    ...     print("Failed")
    Failed

    >>> leak_pt_from_padding_oracle(oracle.decrypt_and_check_padding, ct[:16])
    Traceback (most recent call last):
    ValueError: Need an IV and at least one block of ciphertext
    >>> leak_pt_from_padding_oracle(oracle.decrypt_and_check_padding, ct[:31])
    Traceback (most recent call last):
    ValueError: Ciphertext length 31 is not a multiple of the block size 16
    """
    if len(ciphertext) % block_size:
        raise ValueError(f"Ciphertext length {len(ciphertext)} is not a multiple of the block size {block_size}")
    ct_chunks = list(chunkify(ciphertext, block_size))
    if len(ct_chunks) < 2:
        raise ValueError("Need an IV and at least one block of ciphertext")
    if not oracle(ciphertext):
        raise ValueError(f"Oracle is returning False for ciphertext={ciphertext!r}. Bad oracle, or bad ciphertext")

    executor = ThreadPoolExecutor(max_workers=max_workers) if max_workers else None
    try:
        pt: Deque[bytes] = deque()
        for prev_block, block in reversed(list(zip(ct_chunks, ct_chunks[1:]))):
            pt.appendleft(leak_block_from_padding_oracle(oracle, prev_block, block, executor, max_workers or 1))
            log.debug("Recovered block %r", pt[0])
    finally:
        if executor is not None:
            executor.shutdown()

    return unpad_pkcs7(b"".join(pt))


def main():
    parser = argparse.ArgumentParser(description="CBC padding oracle attack against a local oracle")
    parser.add_argument("--block-size", type=int, choices=(8, 16), default=BLOCK_SIZE)
    parser.add_argument("--workers", type=int, default=None, help="Scan guesses using this many threads")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    # Pick a line from the challenge input
    flag = base64.b64decode(SystemRandom().choice(FLAGS))

    oracle = CBCPaddingOracle(pt=flag, block_size=args.block_size)
    pt = leak_pt_from_padding_oracle(oracle=oracle.decrypt_and_check_padding,
                                     ciphertext=oracle.encrypt(),
                                     block_size=args.block_size,
                                     max_workers=args.workers)

    print(pt)


if __name__ == "__main__":
    main()
