from enum import Enum
from random import Random, SystemRandom
from typing import List, Generator, Optional, Tuple
from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES
from cryptography.hazmat.primitives.ciphers import BlockCipherAlgorithm, Cipher, algorithms, modes


BLOCK_SIZE = 16

# The ambiguous oracle bookends attacker input with this many random bytes on each side
BOOKEND_MINMAX = (5, 10)


def fixed_xor(b1: bytes, b2: bytes) -> bytes:
    """
    Take two bytes arguments of equal length, return their XOR

    >>> arg1 = bytes.fromhex('1c0111001f010100061a024b53535009181c')
    >>> arg2 = bytes.fromhex('686974207468652062756c6c277320657965')
    >>> fixed_xor(arg1, arg2).hex()
    '746865206b696420646f6e277420706c6179'

    >>> fixed_xor(b"AAAA", b"AAA")
    Traceback (most recent call last):
    ValueError: Arguments are of different length
    """
    if len(b1) != len(b2):
        raise ValueError("Arguments are of different length")
    return bytes(a ^ b for a, b in zip(b1, b2))


def chunkify(b: bytes, chunk_size: int) -> Generator[bytes, None, None]:
    """
    Yield chunk_size sized chunks from b

    >>> list(chunkify(b"ABCD", 2))
    [b'AB', b'CD']

    >>> list(chunkify(b"ABCDE", 2))
    [b'AB', b'CD', b'E']
    """
    for i in range(0, len(b), chunk_size):
        yield b[i:i + chunk_size]


def pad_pkcs7(data: bytes, block_size: int) -> bytes:
    """
    >>> pad_pkcs7(b"YELLOW SUBMARINE", 20)
    b'YELLOW SUBMARINE\\x04\\x04\\x04\\x04'
    >>> pad_pkcs7(b"YELLOW SUBMARINE", 16)
    b'YELLOW SUBMARINE\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10'
    >>> pad_pkcs7(b"YELLOW SUBMARINE", 17)
    b'YELLOW SUBMARINE\\x01'
    >>> pad_pkcs7(b"", 4)
    b'\\x04\\x04\\x04\\x04'

    The padding byte has to fit in a byte

    >>> pad_pkcs7(b"AAAA", 256)
    Traceback (most recent call last):
    ValueError: block_size must be between 1 and 255, got 256
    >>> pad_pkcs7(b"AAAA", 0)
    Traceback (most recent call last):
    ValueError: block_size must be between 1 and 255, got 0
    """
    if not 0 < block_size <= 255:
        raise ValueError(f"block_size must be between 1 and 255, got {block_size}")
    num_padding_bytes = block_size - len(data) % block_size
    return data + bytes([num_padding_bytes] * num_padding_bytes)


def is_valid_pkcs7(data: bytes, block_size: int) -> bool:
    """
    Return True if data ends in PKCS#7 padding that could have been produced for block_size.
    A padding byte equal to block_size (a whole block of padding) is valid.

    >>> is_valid_pkcs7(b"Hello, world!\\x03\\x03\\x03", 16)
    True
    >>> is_valid_pkcs7(b"Hello, world!\\x02\\x03", 16)
    False
    >>> is_valid_pkcs7(b"\\x10" * 16, 16)
    True
    >>> is_valid_pkcs7(b"\\x11" * 17, 16)
    False
    >>> is_valid_pkcs7(b"Hello, world!\\x00", 16)
    False
    >>> is_valid_pkcs7(b"", 16)
    False

    Everything pad_pkcs7 produces is valid, and unpads back to the original

    >>> all(is_valid_pkcs7(pad_pkcs7(data, b), b) and unpad_pkcs7(pad_pkcs7(data, b)) == data
    ...     for b in range(1, 256)
    ...     for data in (b"", b"A", b"\\x01", b"A" * 255, b"A" * 256))
    True
    """
    if not data:
        return False
    num_padding_bytes = data[-1]
    if not 1 <= num_padding_bytes <= block_size or num_padding_bytes > len(data):
        return False
    return all(b == num_padding_bytes for b in data[-num_padding_bytes:])


class PaddingError(Exception):
    pass


def unpad_pkcs7(data: bytes, strict: bool = True) -> bytes:
    """
    Remove PKCS#7 padding from data.

    When strict, the padding must be well formed or PaddingError is raised. When not strict, the trailing
    byte is trusted as the padding length, unless it claims more bytes than there are, in which case data
    is returned as-is.

    >>> unpad_pkcs7(b"Hello, world!\\x02\\x02")
    b'Hello, world!'
    >>> unpad_pkcs7(pad_pkcs7(b"Beware of the hazmat", 100))
    b'Beware of the hazmat'
    >>> unpad_pkcs7(b"Hello, world!\\x02")
    Traceback (most recent call last):
    util.PaddingError: Bad padding in b'Hello, world!\\x02'
    >>> unpad_pkcs7(b"\\x05\\x05")
    Traceback (most recent call last):
    util.PaddingError: Bad padding in b'\\x05\\x05'

    >>> unpad_pkcs7(b"Hello, world!\\x02", strict=False)
    b'Hello, world'
    >>> unpad_pkcs7(b"\\x05\\x05", strict=False)
    b'\\x05\\x05'
    >>> unpad_pkcs7(b"", strict=False)
    b''
    """
    if not data:
        if strict:
            raise PaddingError("Can't unpad empty data")
        return data
    num_padding_bytes = data[-1]
    if strict:
        if num_padding_bytes == 0 or num_padding_bytes > len(data) \
                or any(b != num_padding_bytes for b in data[-num_padding_bytes:]):
            raise PaddingError(f"Bad padding in {data!r}")
    elif num_padding_bytes > len(data):
        return data
    return data[:len(data) - num_padding_bytes]


class BlockCipher:
    """
    A bare block cipher primitive. Transforms whole blocks independently, no chaining and no padding. The
    modes of operation below are built on top of this.

    >>> cipher = BlockCipher.aes128(bytes(range(16)))
    >>> cipher.block_size
    16
    >>> cipher.encrypt(bytes.fromhex('00112233445566778899aabbccddeeff')).hex()
    '69c4e0d86a7b0430d8cdb78070b4c55a'
    >>> cipher.decrypt(bytes.fromhex('69c4e0d86a7b0430d8cdb78070b4c55a')).hex()
    '00112233445566778899aabbccddeeff'

    >>> BlockCipher.triple_des(b"YELLOW SUBMARINE12345678").block_size
    8

    >>> cipher.decrypt(b"too short")
    Traceback (most recent call last):
    ValueError: The length of the provided data is not a multiple of the block length.

    >>> BlockCipher.aes128(b"too short")
    Traceback (most recent call last):
    ValueError: Invalid key size (72) for AES.
    """
    block_size: int

    def __init__(self, algorithm: BlockCipherAlgorithm):
        self._cipher = Cipher(algorithm, modes.ECB())
        self.block_size = algorithm.block_size // 8

    @classmethod
    def aes128(cls, key: bytes) -> "BlockCipher":
        return cls(algorithms.AES128(key))

    @classmethod
    def triple_des(cls, key: bytes) -> "BlockCipher":
        return cls(TripleDES(key))

    def _check_length(self, data: bytes):
        if len(data) % self.block_size:
            raise ValueError("The length of the provided data is not a multiple of the block length.")

    def encrypt(self, data: bytes) -> bytes:
        self._check_length(data)
        encryptor = self._cipher.encryptor()
        return encryptor.update(data) + encryptor.finalize()

    def decrypt(self, data: bytes) -> bytes:
        self._check_length(data)
        decryptor = self._cipher.decryptor()
        return decryptor.update(data) + decryptor.finalize()

    def __repr__(self):
        return f"BlockCipher(block_size={self.block_size})"


def new_block_cipher(block_size: int = BLOCK_SIZE, rng: Optional[Random] = None) -> BlockCipher:
    """
    Return a block cipher keyed with a random key. AES-128 for 16 byte blocks, 3DES for 8 byte blocks

    >>> new_block_cipher(8, rng=Random(0))
    BlockCipher(block_size=8)
    >>> new_block_cipher(12)
    Traceback (most recent call last):
    ValueError: No block cipher with a 12 byte block
    """
    rng = rng if rng is not None else SystemRandom()
    if block_size == 16:
        return BlockCipher.aes128(rng.randbytes(16))
    if block_size == 8:
        return BlockCipher.triple_des(rng.randbytes(24))
    raise ValueError(f"No block cipher with a {block_size} byte block")


def ecb_encrypt(plaintext: bytes, cipher: BlockCipher) -> bytes:
    """
    Encrypt plaintext in ECB mode. Automatically pads plaintext using PKCS#7

    >>> cipher = BlockCipher.aes128(b"YELLOW SUBMARINE")
    >>> ciphertext = ecb_encrypt(b"A" * 32, cipher)
    >>> len(ciphertext)
    48
    >>> ciphertext[:16] == ciphertext[16:32]
    True
    """
    return cipher.encrypt(pad_pkcs7(plaintext, cipher.block_size))


def ecb_decrypt(ciphertext: bytes, cipher: BlockCipher, unpad: bool = True) -> bytes:
    """
    Decrypt ciphertext in ECB mode. Strips PKCS#7 padding unless unpad is False

    >>> cipher = BlockCipher.aes128(b"YELLOW SUBMARINE")
    >>> ecb_decrypt(ecb_encrypt(b"Beware of hazardous materials", cipher), cipher)
    b'Beware of hazardous materials'
    >>> ecb_decrypt(ecb_encrypt(b"", cipher), cipher, unpad=False)
    b'\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10\\x10'

    >>> ecb_decrypt(b"too short", cipher)
    Traceback (most recent call last):
    ValueError: The length of the provided data is not a multiple of the block length.

    Round trips for any length, for both block sizes

    >>> rng = Random(1)
    >>> ciphers = [new_block_cipher(16, rng), new_block_cipher(8, rng)]
    >>> all(ecb_decrypt(ecb_encrypt(buf, c), c) == buf
    ...     for c in ciphers
    ...     for buf in (rng.randbytes(n) for n in range(0, 1001, 7)))
    True
    """
    plaintext = cipher.decrypt(ciphertext)
    if unpad:
        plaintext = unpad_pkcs7(plaintext, strict=False)
    return plaintext


def _check_iv(iv: bytes, cipher: BlockCipher):
    if len(iv) != cipher.block_size:
        raise ValueError(f"IV must be {cipher.block_size} bytes long, got {len(iv)}")


def cbc_encrypt(plaintext: bytes, cipher: BlockCipher, iv: bytes) -> bytes:
    """
    Encrypt plaintext in CBC mode (the hard way). Automatically pads plaintext using PKCS#7. The IV is not
    included in the returned ciphertext

    >>> cipher = BlockCipher.aes128(b"YELLOW SUBMARINE")
    >>> iv = bytes(16)
    >>> ciphertext = cbc_encrypt(b"A" * 32, cipher, iv)
    >>> ciphertext[:16] == ciphertext[16:32]
    False

    The first block is ECB of the plaintext XOR the IV

    >>> cbc_encrypt(b"YELLOW SUBMARINE", cipher, iv)[:16] == cipher.encrypt(b"YELLOW SUBMARINE")
    True

    >>> cbc_encrypt(b"AAAA", cipher, iv=b"too short")
    Traceback (most recent call last):
    ValueError: IV must be 16 bytes long, got 9
    """
    _check_iv(iv, cipher)
    plaintext = pad_pkcs7(plaintext, cipher.block_size)

    ciphertext: List[bytes] = []
    prev_block = iv
    for chunk in chunkify(plaintext, cipher.block_size):
        prev_block = cipher.encrypt(fixed_xor(chunk, prev_block))
        ciphertext.append(prev_block)

    return b"".join(ciphertext)


def cbc_decrypt(ciphertext: bytes, cipher: BlockCipher, iv: bytes, unpad: bool = True) -> bytes:
    """
    Decrypt ciphertext in CBC mode (the hard way). Strips PKCS#7 padding unless unpad is False

    >>> cipher = BlockCipher.aes128(b"YELLOW SUBMARINE")
    >>> iv = bytes(16)
    >>> plaintext = b"That's a lotta words, too bad I ain't reading em"
    >>> cbc_decrypt(cbc_encrypt(plaintext, cipher, iv), cipher, iv) == plaintext
    True

    >>> cbc_decrypt(b"too short", cipher, iv)
    Traceback (most recent call last):
    ValueError: The length of the provided data is not a multiple of the block length.

    Round trips for any length, for both block sizes

    >>> rng = Random(2)
    >>> setups = [(c, rng.randbytes(c.block_size)) for c in (new_block_cipher(16, rng), new_block_cipher(8, rng))]
    >>> all(cbc_decrypt(cbc_encrypt(buf, c, iv), c, iv) == buf
    ...     for c, iv in setups
    ...     for buf in (rng.randbytes(n) for n in range(0, 1001, 7)))
    True
    """
    _check_iv(iv, cipher)
    if len(ciphertext) % cipher.block_size:
        raise ValueError("The length of the provided data is not a multiple of the block length.")

    plaintext: List[bytes] = []
    prev_block = iv
    for chunk in chunkify(ciphertext, cipher.block_size):
        plaintext.append(fixed_xor(cipher.decrypt(chunk), prev_block))
        # Prepare to XOR this block into the next decryption operation
        prev_block = chunk

    result = b"".join(plaintext)
    if unpad:
        result = unpad_pkcs7(result, strict=False)
    return result


def identify_ciphertexts_encrypted_with_ecb(ciphertexts: List[bytes], block_size: int) -> List[bytes]:
    """
    Given a list of ciphertexts, return the ciphertexts which were suspected to have been encrypted using
    a block cipher in ECB mode.

    This function assumes that _any_ redundancy on a block basis indicates ECB encryption.

    >>> cipher = BlockCipher.aes128(b"YELLOW SUBMARINE")
    >>> ecb = ecb_encrypt(b"X" * 5 + b"A" * 48, cipher)
    >>> cbc = cbc_encrypt(b"X" * 5 + b"A" * 48, cipher, iv=bytes(16))
    >>> identify_ciphertexts_encrypted_with_ecb([cbc, ecb], 16) == [ecb]
    True
    """
    sus: List[bytes] = []
    for ciphertext in ciphertexts:
        chunks = list(chunkify(ciphertext, block_size))
        if len(set(chunks)) < len(chunks):
            sus.append(ciphertext)
    return sus


class BlockCipherMode(Enum):
    ECB = 0
    CBC = 1


class EncryptionOracle:
    """
    Encrypts whatever it's given under a fixed random key in the given mode. In CBC mode a fresh IV is used
    for every call (and not returned)

    >>> oracle = EncryptionOracle(rng=Random(3))
    >>> oracle.encrypt(b"A" * 16) == oracle.encrypt(b"A" * 16)
    True
    >>> len(oracle.encrypt(b"A" * 16))
    32

    >>> oracle = EncryptionOracle(mode=BlockCipherMode.CBC, block_size=8, rng=Random(3))
    >>> oracle.encrypt(b"A" * 8) == oracle.encrypt(b"A" * 8)
    False
    """
    mode: BlockCipherMode

    def __init__(self, mode: BlockCipherMode = BlockCipherMode.ECB, block_size: int = BLOCK_SIZE,
                 rng: Optional[Random] = None):
        self._rng = rng if rng is not None else SystemRandom()
        self._cipher = new_block_cipher(block_size, self._rng)
        self.mode = mode

    def _encrypt(self, plaintext: bytes) -> bytes:
        if self.mode is BlockCipherMode.ECB:
            return ecb_encrypt(plaintext, self._cipher)
        else:
            assert self.mode is BlockCipherMode.CBC, "What the hell happened here?"
            iv = self._rng.randbytes(self._cipher.block_size)
            return cbc_encrypt(plaintext, self._cipher, iv)

    def encrypt(self, plaintext: bytes) -> bytes:
        return self._encrypt(plaintext)


class EcbCbcOracle(EncryptionOracle):
    """
    An oracle that randomly picks ECB or CBC mode (50/50 split) when it's created, unless told which mode to
    use, and then encrypts data in that mode under a fixed random key (and a random IV per call in the case of
    CBC mode), bookending the plaintext with 5-10 random bytes

    >>> modes = {EcbCbcOracle(rng=Random(seed)).mode for seed in range(20)}
    >>> modes == {BlockCipherMode.ECB, BlockCipherMode.CBC}
    True

    >>> oracle = EcbCbcOracle(mode=BlockCipherMode.ECB, rng=Random(4))
    >>> oracle.mode
    <BlockCipherMode.ECB: 0>
    >>> len(oracle.encrypt(b"")) in (16, 32)
    True
    """

    def __init__(self, mode: Optional[BlockCipherMode] = None, block_size: int = BLOCK_SIZE,
                 rng: Optional[Random] = None, bookend_minmax: Tuple[int, int] = BOOKEND_MINMAX):
        rng = rng if rng is not None else SystemRandom()
        if mode is None:
            mode = rng.choice((BlockCipherMode.ECB, BlockCipherMode.CBC))
        super().__init__(mode=mode, block_size=block_size, rng=rng)
        self._bookend_minmax = bookend_minmax

    def _bookend(self) -> bytes:
        return self._rng.randbytes(self._rng.randint(*self._bookend_minmax))

    def encrypt(self, plaintext: bytes) -> bytes:
        """
        Bookend plaintext with 5-10 random bytes on each side and encrypt it in self.mode
        """
        return self._encrypt(self._bookend() + plaintext + self._bookend())
