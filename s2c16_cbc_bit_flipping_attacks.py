#!/usr/bin/env python3
import argparse
import logging
from random import Random, SystemRandom
from typing import Callable, Dict, Optional
from urllib.parse import quote

from interrogate import discover_block_size
from util import BLOCK_SIZE, cbc_decrypt, cbc_encrypt, new_block_cipher

"""
CBC bitflipping attacks

The first function should take an arbitrary input string, prepend the string:

"comment1=cooking%20MCs;userdata="

.. and append the string:

";comment2=%20like%20a%20pound%20of%20bacon"

The function should quote out the ";" and "=" characters, pad out the input to the block length and encrypt it
under a random key.

The second function should decrypt the string and look for the characters ";admin=true;" (or, equivalently,
decrypt, split the string on ";", convert each resulting string into 2-tuples, and look for the "admin" tuple).

If you've written the first function properly, it should not be possible to provide user input to it that will
generate the string the second function is looking for. Instead, modify the ciphertext (without knowledge of the
key) to accomplish this.

You're relying on the fact that in CBC mode, a 1-bit error in a ciphertext block:

    Completely scrambles the block the error occurs in
    Produces the identical 1-bit error(/edit) in the next ciphertext block.
"""

log = logging.getLogger(__name__)

PREFIX = "comment1=cooking%20MCs;userdata="
SUFFIX = ";comment2=%20like%20a%20pound%20of%20bacon"

FILLER_BYTE = b"A"


def parse_fields(pt: bytes) -> Dict[bytes, bytes]:
    """
    >>> parse_fields(b"comment1=x;admin=true;comment2")
    {b'comment1': b'x', b'admin': b'true', b'comment2': b''}
    """
    return dict(field.partition(b"=")[::2] for field in pt.split(b";"))


class SandwichOracle:
    """
    >>> oracle = SandwichOracle(rng=Random(0))
    >>> oracle.decrypt(oracle.encrypt(b"AAAA"))
    b'comment1=cooking%20MCs;userdata=AAAA;comment2=%20like%20a%20pound%20of%20bacon'
    >>> oracle.encrypt(b"AAAA") == oracle.encrypt(b"AAAA")
    False
    """

    def __init__(self, block_size: int = BLOCK_SIZE, rng: Optional[Random] = None):
        self._rng = rng if rng is not None else SystemRandom()
        self._cipher = new_block_cipher(block_size, self._rng)

    def encrypt(self, userdata: bytes) -> bytes:
        """
        Take some userdata, sandwich it into the comment format, encrypt using CBC with the Oracle's key and a
        random IV, return iv || ciphertext
        """
        pt = self.sandwich(userdata).encode()
        iv = self._rng.randbytes(self._cipher.block_size)
        log.debug("Encrypt: %r --> %r", userdata, pt)
        return iv + cbc_encrypt(pt, self._cipher, iv)

    def decrypt(self, ciphertext: bytes) -> bytes:
        block_size = self._cipher.block_size
        iv, ct = ciphertext[:block_size], ciphertext[block_size:]
        return cbc_decrypt(ct, self._cipher, iv)

    def decrypt_and_parse(self, ciphertext: bytes) -> bool:
        """
        Take a ciphertext (iv||ct), decrypt it, parse it, and return True if the plaintext's 'admin' is precisely
        "true", else return False

        >>> oracle = SandwichOracle(rng=Random(1))
        >>> oracle.decrypt_and_parse(oracle.encrypt(b"AAAA"))
        False
        >>> oracle.decrypt_and_parse(oracle.encrypt(b";admin=true;"))
        False
        """
        pt = self.decrypt(ciphertext)
        data = parse_fields(pt)
        log.debug("Decrypt: %r --> %r", pt, data)
        return data.get(b"admin") == b"true"

    @staticmethod
    def sandwich(userdata: bytes) -> str:
        """
        >>> SandwichOracle.sandwich(b"AAAA")
        'comment1=cooking%20MCs;userdata=AAAA;comment2=%20like%20a%20pound%20of%20bacon'
        >>> SandwichOracle.sandwich(b"AAAA;foo=bar")
        'comment1=cooking%20MCs;userdata=AAAA%3Bfoo%3Dbar;comment2=%20like%20a%20pound%20of%20bacon'
        """
        return PREFIX + quote(userdata) + SUFFIX


def craft_ct_with_chosen_pt(encrypt_oracle: Callable[[bytes], bytes], chosen: bytes,
                            prefix_length: int = len(PREFIX)) -> bytes:
    """
    Send two blocks of filler, then flip bits in the first filler block's ciphertext so that the second one
    decrypts with chosen at its very end. The first filler block decrypts to garbage.

    @param encrypt_oracle: A function which sandwiches our input and returns iv || ciphertext
    @param chosen: What the end of our input should decrypt to
    @param prefix_length: How much the oracle puts in front of our input

    >>> oracle = SandwichOracle(rng=Random(2))
    >>> ct = craft_ct_with_chosen_pt(oracle.encrypt, b";admin=true")
    >>> oracle.decrypt_and_parse(ct)
    True
    >>> oracle.decrypt(ct).endswith(b"AAAAA;admin=true" + SUFFIX.encode())
    True

    A prefix that doesn't end on a block boundary

    >>> oracle = SandwichOracle(block_size=8, rng=Random(3))
    >>> ct = craft_ct_with_chosen_pt(lambda userdata: oracle.encrypt(b"xyz" + userdata), b";admin=1",
    ...                              prefix_length=len(PREFIX) + 3)
    >>> oracle.decrypt(ct).endswith(b";admin=1" + SUFFIX.encode())
    True

    >>> craft_ct_with_chosen_pt(oracle.encrypt, b";admin=true")
    Traceback (most recent call last):
    ValueError: Chosen plaintext b';admin=true' doesn't fit in a 8 byte block
    """
    block_size = discover_block_size(encrypt_oracle).block_size
    if len(chosen) > block_size:
        raise ValueError(f"Chosen plaintext {chosen!r} doesn't fit in a {block_size} byte block")

    aligning_chunk = FILLER_BYTE * (-prefix_length % block_size)
    ct = bytearray(encrypt_oracle(aligning_chunk + FILLER_BYTE * block_size * 2))

    # iv || ct is one block ahead of the plaintext, so the block at this index is the ciphertext of our first
    # filler block, which gets XORed into the second
    flip_index = (prefix_length + len(aligning_chunk)) // block_size + 1
    start = flip_index * block_size + block_size - len(chosen)
    for offset, b in enumerate(chosen, start=start):
        ct[offset] ^= FILLER_BYTE[0] ^ b
    log.info("Flipped %d bytes of block %d", len(chosen), flip_index)

    return bytes(ct)


def main():
    parser = argparse.ArgumentParser(description="CBC bit-flipping against a local oracle")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    # ";admin=true" needs a block of at least 11 bytes, so no 8 byte block option here
    oracle = SandwichOracle()
    ct = craft_ct_with_chosen_pt(encrypt_oracle=oracle.encrypt, chosen=b";admin=true")
    print(oracle.decrypt(ct))
    print(f"Are we admin?: {oracle.decrypt_and_parse(ct)}")


if __name__ == "__main__":
    main()
