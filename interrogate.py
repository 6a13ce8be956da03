import logging
from collections import namedtuple
from dataclasses import dataclass
from typing import Callable, List, Optional

from util import BlockCipherMode, chunkify, identify_ciphertexts_encrypted_with_ecb

"""
Black-box interrogation of an encryption oracle.

Everything here learns about an oracle purely by feeding it plaintext and looking at what comes back: how big
its blocks are, whether it's ECB or CBC, and how much hidden data it wraps around our input.
"""

log = logging.getLogger(__name__)

# PKCS#7 can't describe a block bigger than this, so the ciphertext must have grown by then
MAX_BLOCK_SIZE = 255

# How many identical blocks we submit when looking for ECB redundancy. One of them might be eaten by a
# misaligned prefix, which still leaves two to compare
DETECTION_BLOCKS = 3


@dataclass(frozen=True)
class BlockSizeInfo:
    block_size: int
    input_size_to_full_padding: int
    base_length: int


Interrogation = namedtuple("Interrogation", ["block_size", "prefix_length", "suffix_length"])


def discover_block_size(oracle: Callable[[bytes], bytes]) -> BlockSizeInfo:
    """
    Feed the oracle ever-longer runs of the same byte until the ciphertext grows. The size of the jump is the
    block size, and the number of bytes it took is how much input tips the oracle into a whole block of padding.

    >>> from random import Random
    >>> from util import EncryptionOracle
    >>> discover_block_size(EncryptionOracle(block_size=16, rng=Random(0)).encrypt)
    BlockSizeInfo(block_size=16, input_size_to_full_padding=16, base_length=16)
    >>> discover_block_size(EncryptionOracle(block_size=8, rng=Random(0)).encrypt)
    BlockSizeInfo(block_size=8, input_size_to_full_padding=8, base_length=8)

    An oracle whose output never changes length gives nothing away

    >>> discover_block_size(lambda pt: bytes(16))
    Traceback (most recent call last):
    ValueError: Ciphertext length never grew. Oracle probably isn't a padded block cipher
    """
    base_length = len(oracle(b""))
    for i in range(1, MAX_BLOCK_SIZE + 1):
        new_length = len(oracle(b"A" * i))
        if new_length > base_length:
            info = BlockSizeInfo(block_size=new_length - base_length,
                                 input_size_to_full_padding=i,
                                 base_length=base_length)
            log.info("Discovered block size %d", info.block_size)
            return info
    raise ValueError("Ciphertext length never grew. Oracle probably isn't a padded block cipher")


def determine_oracle_ecb_vs_cbc(oracle: Callable[[bytes], bytes], block_size: int = 16) -> BlockCipherMode:
    """
    Determines if the callable oracle is encrypting using ECB or CBC

    Accounts for the fact that the oracle may be prepending a random number of random bytes

    >>> from random import Random
    >>> from util import EcbCbcOracle
    >>> oracle = EcbCbcOracle(rng=Random(5))
    >>> guessed_mode = determine_oracle_ecb_vs_cbc(oracle.encrypt)
    >>> guessed_mode is oracle.mode
    True

    Never gets it wrong when the mode is forced

    >>> rng = Random(6)
    >>> all(determine_oracle_ecb_vs_cbc(EcbCbcOracle(mode=mode, block_size=block_size, rng=rng).encrypt,
    ...                                 block_size=block_size) is mode
    ...     for mode in (BlockCipherMode.ECB, BlockCipherMode.CBC)
    ...     for block_size in (8, 16)
    ...     for _ in range(100))
    True
    """
    ciphertext = oracle(b"A" * block_size * DETECTION_BLOCKS)
    if identify_ciphertexts_encrypted_with_ecb([ciphertext], block_size=block_size):
        return BlockCipherMode.ECB
    else:
        return BlockCipherMode.CBC


def repeated_block_runs(ciphertext: bytes, block_size: int, count: int) -> List[int]:
    """
    Return the index of every block which starts a run of count identical consecutive blocks

    >>> repeated_block_runs(b"XXAAAAAAYY", 2, 3)
    [1]
    >>> repeated_block_runs(b"AAAAAAAAYY", 2, 3)
    [0, 1]
    >>> repeated_block_runs(b"AAAAYY", 2, 3)
    []
    >>> repeated_block_runs(b"AAAAA", 2, 2)
    Traceback (most recent call last):
    ValueError: Need a multiple of the block size
    """
    if len(ciphertext) % block_size:
        raise ValueError("Need a multiple of the block size")
    chunks = list(chunkify(ciphertext, block_size))
    return [i for i in range(len(chunks) - count + 1)
            if all(chunk == chunks[i] for chunk in chunks[i + 1:i + count])]


def discover_prefix_length(oracle: Callable[[bytes], bytes], block_size: int) -> int:
    """
    Find the length of whatever fixed data an ECB oracle puts in front of our input.

    We push DETECTION_BLOCKS blocks of the same byte along one byte at a time. Once they're block-aligned
    they encrypt to a run of identical blocks, and where that run starts tells us how long the prefix is. The
    run might instead be coincidental redundancy in the oracle's own data, so we confirm by changing our
    content and checking that the run at the same place changes with it.

    >>> from random import Random
    >>> from s2c12_c14_byte_at_a_time_ecb import EcbSuffixOracle
    >>> rng = Random(7)
    >>> all(discover_prefix_length(EcbSuffixOracle(b"A" * 20, prepended_minmax=(n, n),
    ...                                            block_size=block_size, rng=rng).encrypt, block_size) == n
    ...     for block_size in (8, 16)
    ...     for n in range(2 * block_size))
    True

    A prefix full of the same bytes we send doesn't fool it

    >>> oracle = EcbSuffixOracle(b"", prepended_minmax=(0, 0), rng=rng)
    >>> oracle._prefix = b"A" * 37
    >>> discover_prefix_length(oracle.encrypt, 16)
    37

    >>> from util import EncryptionOracle
    >>> discover_prefix_length(EncryptionOracle(mode=BlockCipherMode.CBC, rng=rng).encrypt, 16)
    Traceback (most recent call last):
    ValueError: Failed to determine prefix length. Oracle probably isn't ECB
    """
    run_length = block_size * DETECTION_BLOCKS
    for i in range(block_size):
        padding = bytes(i)
        ct = oracle(padding + b"A" * run_length)
        locations = repeated_block_runs(ct, block_size, DETECTION_BLOCKS)
        if not locations:
            continue

        confirmation = oracle(padding + b"B" * run_length)
        confirmed_locations = repeated_block_runs(confirmation, block_size, DETECTION_BLOCKS)
        for location in locations:
            start = location * block_size
            if location in confirmed_locations \
                    and ct[start:start + block_size] != confirmation[start:start + block_size]:
                prefix_length = start - i
                log.info("Discovered prefix length %d", prefix_length)
                return prefix_length
        log.debug("Repeated blocks at %r with %d bytes of padding were not ours", locations, i)

    raise ValueError("Failed to determine prefix length. Oracle probably isn't ECB")


def interrogate_appending_oracle(oracle: Callable[[bytes], bytes],
                                 info: Optional[BlockSizeInfo] = None) -> Interrogation:
    """
    Work out the block size of an ECB oracle and how much hidden data it puts either side of our input. The
    block size is discovered first unless the caller already has it

    >>> from random import Random
    >>> from s2c12_c14_byte_at_a_time_ecb import EcbSuffixOracle
    >>> rng = Random(8)
    >>> interrogate_appending_oracle(EcbSuffixOracle(suffix=b"A" * 8, rng=rng).encrypt)
    Interrogation(block_size=16, prefix_length=0, suffix_length=8)

    >>> interrogate_appending_oracle(EcbSuffixOracle(suffix=b"A" * 24, rng=rng).encrypt)
    Interrogation(block_size=16, prefix_length=0, suffix_length=24)

    >>> oracle = EcbSuffixOracle(suffix=b"A" * 8, prepended_minmax=(45, 45), block_size=8, rng=rng)
    >>> interrogate_appending_oracle(oracle.encrypt)
    Interrogation(block_size=8, prefix_length=45, suffix_length=8)
    """
    if info is None:
        info = discover_block_size(oracle)
    prefix_length = discover_prefix_length(oracle, info.block_size)
    suffix_length = info.base_length - info.input_size_to_full_padding - prefix_length
    log.info("Oracle suffix is %d bytes", suffix_length)
    return Interrogation(block_size=info.block_size,
                         prefix_length=prefix_length,
                         suffix_length=suffix_length)
