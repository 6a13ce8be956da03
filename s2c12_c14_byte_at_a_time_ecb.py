#!/usr/bin/env python3
import argparse
import base64
import logging
from random import Random, SystemRandom
from typing import Callable, Dict, Optional, Tuple

from interrogate import Interrogation, determine_oracle_ecb_vs_cbc, discover_block_size, interrogate_appending_oracle
from util import BLOCK_SIZE, BlockCipherMode, ecb_encrypt, is_valid_pkcs7, new_block_cipher, unpad_pkcs7

# Solves both s2c12 and s2c14

"""
[+] s2c12 Byte-at-a-time ECB decryption (Simple)

Take a function that encrypts buffers under ECB mode using a consistent but unknown key, and have it append
an unknown string to the plaintext before encrypting. What you have now is a function that produces:

AES-128-ECB(your-string || unknown-string, random-key)

It turns out: you can decrypt "unknown-string" with repeated calls to the oracle function!

[+] s2c14 Byte-at-a-time ECB decryption (Harder)

Now generate a random count of random bytes and prepend this string to every plaintext. You are now doing:

AES-128-ECB(random-prefix || attacker-controlled || target-bytes, random-key)

Same goal: decrypt the target-bytes.
"""

log = logging.getLogger(__name__)

FLAG = base64.b64decode(
    "Um9sbGluJyBpbiBteSA1LjAKV2l0aCBteSByYWctdG9wIGRvd24gc28gbXkgaGFpciBjYW4gYmxvdwpUaGUgZ2lybGllcyBvbiBzdGFuZGJ5IHdh"
    "dmluZyBqdXN0IHRvIHNheSBoaQpEaWQgeW91IHN0b3A/IE5vLCBJIGp1c3QgZHJvdmUgYnkK"
)

# Pads the oracle's prefix out to a block boundary
ALIGNING_BYTE = b"Y"

# Pushes the next unknown suffix byte into the last position of a block
FILLER_BYTE = b"A"


class EcbSuffixOracle:
    """
    ECB-encrypts prefix || attacker input || suffix under a fixed random key. The prefix is random bytes,
    of a random length picked from prepended_minmax (inclusive), and stays the same for the oracle's lifetime

    >>> oracle = EcbSuffixOracle(suffix=b"secret", rng=Random(0))
    >>> oracle.encrypt(b"A" * 10) == oracle.encrypt(b"A" * 10)
    True
    >>> len(oracle.encrypt(b"A" * 10))
    32
    >>> len(EcbSuffixOracle(suffix=b"secret", prepended_minmax=(20, 20), rng=Random(0)).encrypt(b"A" * 10))
    48

    >>> EcbSuffixOracle(suffix=b"", prepended_minmax=(5, 4))
    Traceback (most recent call last):
    ValueError: prefix_max must be >= prefix_min
    """

    def __init__(self, suffix: bytes, prepended_minmax: Tuple[int, int] = (0, 0), block_size: int = BLOCK_SIZE,
                 rng: Optional[Random] = None):
        rng = rng if rng is not None else SystemRandom()
        prefix_min, prefix_max = prepended_minmax
        if prefix_min < 0:
            raise ValueError("prefix_min must be >= 0")
        if prefix_max < prefix_min:
            raise ValueError("prefix_max must be >= prefix_min")
        self._cipher = new_block_cipher(block_size, rng)
        self._prefix = rng.randbytes(rng.randint(prefix_min, prefix_max))
        self._suffix = suffix

    def encrypt(self, plaintext: bytes) -> bytes:
        return ecb_encrypt(self._prefix + plaintext + self._suffix, self._cipher)


class EcbOracleAttackError(Exception):
    pass


def build_lookup_table(oracle: Callable[[bytes], bytes], block_size: int, known_tail: bytes) -> Dict[bytes, int]:
    """
    Encrypt known_tail followed by every possible byte as the first block, and map each resulting ciphertext
    block back to the byte that produced it. known_tail must be one byte short of a block

    >>> oracle = EcbSuffixOracle(suffix=b"", rng=Random(1))
    >>> table = build_lookup_table(oracle.encrypt, 16, b"A" * 15)
    >>> len(table)
    256
    >>> table[oracle.encrypt(b"A" * 15 + b"Z")[:16]] == ord("Z")
    True
    """
    if len(known_tail) != block_size - 1:
        raise ValueError(f"known_tail must be {block_size - 1} bytes long")
    table: Dict[bytes, int] = {}
    for candidate in range(256):
        ct = oracle(known_tail + bytes([candidate]))
        table.setdefault(ct[:block_size], candidate)
    return table


def leak_suffix_from_appending_ecb_oracle(oracle: Callable[[bytes], bytes],
                                          interrogation: Optional[Interrogation] = None) -> bytes:
    """
    Recover the hidden suffix an ECB oracle appends to our input, one byte at a time.

    We send just enough filler that exactly one unknown byte lands at the end of a block, then compare that
    block against a table of every possible last byte. Once what we've recovered ends in valid PKCS#7 padding
    (and is as long as the suffix should be) we've walked off the end of the suffix and into the oracle's own
    padding.

    >>> oracle = EcbSuffixOracle(suffix=FLAG, rng=Random(2))
    >>> leak_suffix_from_appending_ecb_oracle(oracle.encrypt) == FLAG
    True

    A prefix which is partial-block, multi-block, or an exact multiple of the block size

    >>> rng = Random(3)
    >>> all(leak_suffix_from_appending_ecb_oracle(
    ...         EcbSuffixOracle(suffix=FLAG, prepended_minmax=(n, n), rng=rng).encrypt) == FLAG
    ...     for n in (5, 16, 40))
    True

    >>> oracle = EcbSuffixOracle(suffix=FLAG, prepended_minmax=(5, 20), block_size=8, rng=rng)
    >>> leak_suffix_from_appending_ecb_oracle(oracle.encrypt) == FLAG
    True

    Suffixes which look like they end in padding part-way through still come out whole

    >>> suffix = b"ends early?\\x01 no\\x02\\x02 not yet"
    >>> leak_suffix_from_appending_ecb_oracle(EcbSuffixOracle(suffix=suffix, rng=rng).encrypt) == suffix
    True
    >>> leak_suffix_from_appending_ecb_oracle(EcbSuffixOracle(suffix=b"", rng=rng).encrypt)
    b''

    Hidden data made of our own filler and aligning bytes doesn't get mixed up with what we send

    >>> suffix = FILLER_BYTE * 20 + ALIGNING_BYTE * 5
    >>> oracle = EcbSuffixOracle(suffix=suffix, rng=rng)
    >>> oracle._prefix = ALIGNING_BYTE * 3
    >>> leak_suffix_from_appending_ecb_oracle(oracle.encrypt) == suffix
    True

    We only attack ECB oracles, and refuse to make up bytes when the oracle doesn't behave like one

    >>> from util import EncryptionOracle
    >>> cbc_oracle = EncryptionOracle(mode=BlockCipherMode.CBC, rng=rng)
    >>> try:
    ...     leak_suffix_from_appending_ecb_oracle(cbc_oracle.encrypt)
    ... except EcbOracleAttackError as e:
    ...     print(e)
    Oracle isn't encrypting using ECB

    >>> oracle = EcbSuffixOracle(suffix=FLAG, rng=rng)
    >>> wrong_prefix = Interrogation(block_size=16, prefix_length=3, suffix_length=len(FLAG))
    >>> try:
    ...     leak_suffix_from_appending_ecb_oracle(oracle.encrypt, wrong_prefix)
    ... except EcbOracleAttackError as e:
    ...     print(e)
    Failed... Got up to b''
    """
    if interrogation is None:
        info = discover_block_size(oracle)
        if determine_oracle_ecb_vs_cbc(oracle, info.block_size) is not BlockCipherMode.ECB:
            raise EcbOracleAttackError("Oracle isn't encrypting using ECB")
        interrogation = interrogate_appending_oracle(oracle, info)
    block_size, prefix_length, suffix_length = interrogation

    # Fill out the prefix's last block so that our input starts on a block boundary, and throw away the
    # ciphertext for everything up to that boundary. From then on it's as if there's no prefix at all
    aligning_chunk = ALIGNING_BYTE * (-prefix_length % block_size)
    skip = prefix_length + len(aligning_chunk)

    def aligned_oracle(plaintext: bytes) -> bytes:
        return oracle(aligning_chunk + plaintext)[skip:]

    known = bytearray()
    while True:
        filler = FILLER_BYTE * (block_size - 1 - len(known) % block_size)

        # The next unknown byte is the last byte of this block
        start = block_size * (len(known) // block_size)
        target_block = aligned_oracle(filler)[start:start + block_size]

        known_tail = (filler + known)[-(block_size - 1):]
        table = build_lookup_table(aligned_oracle, block_size, known_tail)
        try:
            known.append(table[target_block])
        except KeyError:
            raise EcbOracleAttackError(f"Failed... Got up to {bytes(known)!r}") from None
        log.debug("Recovered %r", bytes(known))

        if is_valid_pkcs7(known, block_size):
            unpadded = unpad_pkcs7(bytes(known))
            if len(unpadded) == suffix_length:
                return unpadded


def main():
    parser = argparse.ArgumentParser(description="Byte-at-a-time ECB decryption against a local oracle")
    parser.add_argument("--block-size", type=int, choices=(8, 16), default=BLOCK_SIZE)
    parser.add_argument("--prefix-length", type=int, default=None,
                        help="Length of the random prefix (default: random, 0-99)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.prefix_length is None:
        prepended_minmax = (0, 99)
    else:
        prepended_minmax = (args.prefix_length, args.prefix_length)

    oracle = EcbSuffixOracle(suffix=FLAG, prepended_minmax=prepended_minmax, block_size=args.block_size)
    res = leak_suffix_from_appending_ecb_oracle(oracle.encrypt)
    assert res == FLAG, "Oops"
    print(res.decode())


if __name__ == "__main__":
    main()
