#!/usr/bin/env python3
import argparse
import logging
from random import Random, SystemRandom
from typing import Callable, Optional
from urllib.parse import parse_qsl, urlencode

from interrogate import discover_block_size
from util import BLOCK_SIZE, chunkify, ecb_decrypt, ecb_encrypt, new_block_cipher

"""
ECB cut-and-paste

Write a k=v parsing routine, as if for a structured cookie, and a function that encodes a user profile in that
format given an email address:

profile_for("foo@bar.com") --> email=foo@bar.com&uid=10&role=user

profile_for should not allow encoding metacharacters (& and =).

Encrypt the encoded user profile under a random key and "provide" that to the "attacker". Decrypt the encoded
user profile and parse it.

Using only the user input to profile_for() (as an oracle to generate "valid" ciphertexts) and the ciphertexts
themselves, make a role=admin profile.
"""

log = logging.getLogger(__name__)

EMAIL_FIELD = "email="

# What comes after the email in every profile, up to and including the name of the role field
ROLE_FIELD_LEAD_IN = "&uid=10&role="

FILLER = "A"


def qs_to_dict(qs: str) -> dict:
    """
    >>> qs_to_dict("foo=bar&baz=qux&zap=zazzle")
    {'foo': 'bar', 'baz': 'qux', 'zap': 'zazzle'}

    Fields with no value are dropped

    >>> qs_to_dict("uid=10&role=&rol")
    {'uid': '10'}
    """
    return dict(parse_qsl(qs))


def email_to_qs(email: str, uid: int = 10, role: str = "user") -> str:
    """
    >>> email_to_qs("foo@bar.com")
    'email=foo%40bar.com&uid=10&role=user'

    >>> email_to_qs("foo@bar.com=&\\x0b")
    'email=foo%40bar.com%3D%26%0B&uid=10&role=user'
    """
    profile = {
        "email": email,
        "uid": uid,
        "role": role,
    }
    return urlencode(profile)


class ProfileOracle:
    """
    Hands out ECB-encrypted user profiles for any email address, and reads the role back out of them

    >>> oracle = ProfileOracle(rng=Random(0))
    >>> oracle.decrypt(oracle.encrypt("foo@bar.com"))
    'user'
    >>> oracle.decrypt(oracle.encrypt("foo@bar.com&role=admin"))
    'user'
    """

    def __init__(self, block_size: int = BLOCK_SIZE, rng: Optional[Random] = None):
        self._cipher = new_block_cipher(block_size, rng if rng is not None else SystemRandom())

    def encrypt(self, email: str) -> bytes:
        """
        Serialize email into a profile querystring, encrypt it using ECB, and return it
        """
        profile_qs = email_to_qs(email)
        ct = ecb_encrypt(profile_qs.encode(), self._cipher)
        log.debug("Encrypt: %r --> %r", email, profile_qs)
        return ct

    def decrypt(self, encrypted_qs: bytes) -> str:
        """
        Decrypt using ECB, deserialize to a dict, and return the dict's "role" value
        """
        pt = ecb_decrypt(encrypted_qs, self._cipher).decode()
        profile = qs_to_dict(pt)
        log.debug("Decrypt: %r --> %r", pt, profile)
        return profile["role"]


def craft_profile_ct(oracle: Callable[[str], bytes], role: str) -> bytes:
    """
    Glue together blocks from different profiles so that the one which follows "role=" starts with our role and
    is followed by a block of nothing but padding

    >>> oracle = ProfileOracle(rng=Random(1))
    >>> profile = craft_profile_ct(oracle=oracle.encrypt, role="admin")
    >>> oracle.decrypt(profile)
    'admin'

    >>> oracle = ProfileOracle(block_size=8, rng=Random(2))
    >>> oracle.decrypt(craft_profile_ct(oracle=oracle.encrypt, role="admin"))
    'admin'

    >>> oracle = ProfileOracle(rng=Random(3))
    >>> profile = craft_profile_ct(oracle=oracle.encrypt, role="Z"*2)
    Traceback (most recent call last):
    ValueError: Role 'ZZ' must have a certain length or the attack fails

    >>> profile = craft_profile_ct(oracle=oracle.encrypt, role="Z"*20)
    Traceback (most recent call last):
    ValueError: Role 'ZZZZZZZZZZZZZZZZZZZZ' must have a certain length or the attack fails

    >>> profile = craft_profile_ct(oracle=oracle.encrypt, role="ad min")
    Traceback (most recent call last):
    ValueError: Role 'ad min' would be mangled by the profile encoding
    """
    info = discover_block_size(lambda pt: oracle(pt.decode()))
    block_size = info.block_size

    if urlencode({"role": role}) != "role=" + role:
        raise ValueError(f"Role {role!r} would be mangled by the profile encoding")
    # Whatever follows our role in its block mustn't set a role of its own
    leftover = email_to_qs("")[len(EMAIL_FIELD):][:block_size - len(role)]
    if not 0 < len(role) <= block_size or "role" in qs_to_dict(leftover):
        raise ValueError(f"Role {role!r} must have a certain length or the attack fails")

    # Build a block that starts with the given role, and ends with '&uid=10&rol' (ish)
    email_filler = FILLER * (-len(EMAIL_FIELD) % block_size)
    role_block_index = (len(EMAIL_FIELD) + len(email_filler)) // block_size
    block_role = list(chunkify(oracle(email_filler + role), block_size))[role_block_index]

    # Just enough input to tip the oracle into a whole block of padding
    block_of_all_padding = oracle(FILLER * info.input_size_to_full_padding)[-block_size:]

    # Find a padding_len such that a block ends with 'role='
    padding_len = -len(EMAIL_FIELD + ROLE_FIELD_LEAD_IN) % block_size
    ct = oracle(FILLER * padding_len)
    log.info("Splicing the role block in after %d blocks", len(ct) // block_size - 1)

    return ct[:-block_size] + block_role + block_of_all_padding


def main():
    parser = argparse.ArgumentParser(description="ECB cut-and-paste against a local profile oracle")
    parser.add_argument("--block-size", type=int, choices=(8, 16), default=BLOCK_SIZE)
    parser.add_argument("--role", default="admin")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    oracle = ProfileOracle(block_size=args.block_size)
    profile = craft_profile_ct(oracle=oracle.encrypt, role=args.role)
    role = oracle.decrypt(profile)
    print(f"Role: {role!r}")


if __name__ == "__main__":
    main()
