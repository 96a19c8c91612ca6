"""Identity primitives: secret URI derivation, signing and verification.

Ed25519 runs on PyNaCl (libsodium binding); sr25519 on the schnorrkel
bindings from ``py-sr25519-bindings``, imported on first use. Keys come from
a *secret URI*::

    <mnemonic | 0x-hex-seed | empty>[//hard | /soft]*[///password]

A BIP-39 mnemonic is turned into a 32-byte mini secret with
PBKDF2-HMAC-SHA512 over the phrase *entropy* (not the phrase text), salted
with ``"mnemonic" + password``. Addresses are SS58-encoded.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass

from mnemonic import Mnemonic
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from inkprobe.errors import InvalidPhraseError, SignatureSelfCheckError
from inkprobe.types import (
    DEFAULT_SS58_FORMAT,
    KeyAlgorithm,
    SignedMessage,
    public_key_from_address,
    ss58_encode,
)

log = logging.getLogger(__name__)

DEV_PHRASE = "bottom drive obey lake curtain smoke basket hold race lonely fit walk"

_SURI_RE = re.compile(
    r"^(?P<phrase>0x[0-9a-fA-F]+|\w+(?: \w+)*)?"
    r"(?P<path>(?://?[^/]+)*)"
    r"(?:///(?P<password>.*))?$"
)
_JUNCTION_RE = re.compile(r"/(/?)([^/]+)")
_ED25519_HDKD = b"\x2cEd25519HDKD"  # SCALE: compact length prefix + "Ed25519HDKD"
_PBKDF2_ROUNDS = 2048
_SIGNATURE_LEN = 64


# ---------------------------------------------------------------------------
# Secret URI parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Junction:
    """One derivation step of a secret URI."""

    chain_code: bytes
    hard: bool


def _scale_compact_len(n: int) -> bytes:
    if n < 1 << 6:
        return bytes([n << 2])
    if n < 1 << 14:
        return ((n << 2) | 0b01).to_bytes(2, "little")
    return ((n << 2) | 0b10).to_bytes(4, "little")


def junction_chain_code(code: str) -> bytes:
    """Chain code for a junction: u64 for digits, SCALE string otherwise."""
    if code.isdigit():
        raw = int(code).to_bytes(8, "little")
    else:
        data = code.encode("utf-8")
        raw = _scale_compact_len(len(data)) + data
    if len(raw) > 32:
        return hashlib.blake2b(raw, digest_size=32).digest()
    return raw.ljust(32, b"\x00")


def parse_suri(suri: str) -> tuple[str, list[Junction], str]:
    """Split a secret URI into ``(phrase, junctions, password)``.

    An empty phrase selects the well-known development phrase.

    Raises:
        InvalidPhraseError: If *suri* does not follow the grammar.
    """
    match = _SURI_RE.match(suri.strip())
    if match is None:
        raise InvalidPhraseError("secret URI is not well formed")
    phrase = match.group("phrase") or DEV_PHRASE
    junctions = [
        Junction(chain_code=junction_chain_code(code), hard=bool(slash))
        for slash, code in _JUNCTION_RE.findall(match.group("path") or "")
    ]
    return phrase, junctions, match.group("password") or ""


def mini_secret_from_phrase(phrase: str, password: str = "") -> bytes:
    """Derive the 32-byte mini secret for a mnemonic or a ``0x`` hex seed.

    Raises:
        InvalidPhraseError: If the mnemonic fails its checksum or the seed is
            not 32 bytes.
    """
    if phrase.startswith("0x"):
        try:
            seed = bytes.fromhex(phrase[2:])
        except ValueError as exc:
            raise InvalidPhraseError("hex seed is not valid hex") from exc
        if len(seed) != 32:
            raise InvalidPhraseError(f"hex seed must be 32 bytes, got {len(seed)}")
        return seed

    words = " ".join(phrase.split())
    wordlist = Mnemonic("english")
    if not wordlist.check(words):
        raise InvalidPhraseError("recovery phrase is not a valid BIP-39 mnemonic")
    entropy = bytes(wordlist.to_entropy(words))
    salt = ("mnemonic" + password).encode("utf-8")
    return hashlib.pbkdf2_hmac("sha512", entropy, salt, _PBKDF2_ROUNDS)[:32]


# ---------------------------------------------------------------------------
# Per-algorithm key handling
# ---------------------------------------------------------------------------


def _ed25519_keypair(mini_secret: bytes, junctions: list[Junction]) -> tuple[SigningKey, bytes]:
    seed = mini_secret
    for junction in junctions:
        if not junction.hard:
            raise InvalidPhraseError("ed25519 keys support hard derivation only")
        seed = hashlib.blake2b(_ED25519_HDKD + seed + junction.chain_code, digest_size=32).digest()
    signing_key = SigningKey(seed)
    return signing_key, bytes(signing_key.verify_key)


def _sr25519_keypair(mini_secret: bytes, junctions: list[Junction]) -> tuple[tuple[bytes, bytes], bytes]:
    import sr25519

    public, private = sr25519.pair_from_seed(mini_secret)
    for junction in junctions:
        derive = sr25519.hard_derive_keypair if junction.hard else sr25519.derive_keypair
        _, public, private = derive((junction.chain_code, public, private), b"")
    return (public, private), bytes(public)


def _verify_ed25519(public_key: bytes, message: bytes, signature: bytes) -> bool:
    try:
        VerifyKey(public_key).verify(message, signature)
    except (BadSignatureError, ValueError, TypeError):
        return False
    return True


def _verify_sr25519(public_key: bytes, message: bytes, signature: bytes) -> bool:
    import sr25519

    try:
        return bool(sr25519.verify(signature, message, public_key))
    except (ValueError, TypeError):
        return False


_VERIFIERS = {
    KeyAlgorithm.ED25519: _verify_ed25519,
    KeyAlgorithm.SR25519: _verify_sr25519,
}


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class Identity:
    """An in-memory signing keypair with its SS58 address.

    Identities are created with :func:`derive`. The secret key is held in a
    private slot and never serialised; the recovery phrase is not retained.
    """

    __slots__ = ("_algorithm", "_label", "_public_key", "_address", "_secret")

    def __init__(
        self,
        algorithm: KeyAlgorithm,
        secret: object,
        public_key: bytes,
        *,
        label: str = "",
        ss58_format: int = DEFAULT_SS58_FORMAT,
    ) -> None:
        self._algorithm = KeyAlgorithm(algorithm)
        self._secret = secret
        self._public_key = public_key
        self._label = label
        self._address = ss58_encode(public_key, ss58_format)

    def __repr__(self) -> str:
        return f"Identity(label={self._label!r}, algorithm={self._algorithm.value}, address={self._address})"

    @property
    def algorithm(self) -> KeyAlgorithm:
        return self._algorithm

    @property
    def label(self) -> str:
        return self._label

    @property
    def public_key(self) -> bytes:
        """The raw 32-byte public key."""
        return self._public_key

    @property
    def address(self) -> str:
        """The SS58-encoded address."""
        return self._address

    def sign(self, message: bytes) -> bytes:
        """Sign *message*, returning a 64-byte signature.

        Ed25519 signatures are deterministic; sr25519 signatures are
        randomised, so two signatures over the same message differ.
        """
        if self._algorithm is KeyAlgorithm.ED25519:
            return self._secret.sign(message).signature
        import sr25519

        return bytes(sr25519.sign(self._secret, message))

    def sign_message(self, message: bytes) -> SignedMessage:
        return SignedMessage(message=message, signature=self.sign(message), signer=self._address)

    def verify(self, message: bytes, signature: bytes) -> bool:
        return verify(self._address, message, signature, self._algorithm)


def derive(
    suri: str,
    algorithm: KeyAlgorithm | str = KeyAlgorithm.ED25519,
    label: str = "",
    *,
    ss58_format: int = DEFAULT_SS58_FORMAT,
) -> Identity:
    """Derive an :class:`Identity` from a secret URI.

    Args:
        suri: Mnemonic or ``0x`` seed, optionally followed by ``//hard`` and
            ``/soft`` junctions and a ``///password``.
        algorithm: ``ed25519`` or ``sr25519``.
        label: Human-readable name carried alongside the keypair.
        ss58_format: Network prefix for the address.

    Returns:
        The derived identity. The same ``(suri, algorithm)`` pair always
        yields the same keypair.

    Raises:
        InvalidPhraseError: If the URI does not parse into key material for
            *algorithm*.
    """
    try:
        algorithm = KeyAlgorithm(algorithm)
    except ValueError as exc:
        raise InvalidPhraseError(f"unsupported key algorithm {algorithm!r}") from exc

    phrase, junctions, password = parse_suri(suri)
    mini_secret = mini_secret_from_phrase(phrase, password)
    if algorithm is KeyAlgorithm.ED25519:
        secret, public_key = _ed25519_keypair(mini_secret, junctions)
    else:
        secret, public_key = _sr25519_keypair(mini_secret, junctions)
    del mini_secret
    return Identity(algorithm, secret, public_key, label=label, ss58_format=ss58_format)


def verify(
    address: str,
    message: bytes,
    signature: bytes,
    algorithm: KeyAlgorithm | str | None = None,
) -> bool:
    """Check *signature* over *message* against the key behind *address*.

    Never raises: malformed addresses, signatures or algorithm names yield
    ``False``. Without *algorithm* every supported scheme is tried.
    """
    if not isinstance(address, str):
        return False
    try:
        public_key = public_key_from_address(address)
    except (ValueError, TypeError):
        return False
    if not isinstance(signature, (bytes, bytearray)) or len(signature) != _SIGNATURE_LEN:
        return False
    if algorithm is None:
        candidates = list(KeyAlgorithm)
    else:
        try:
            candidates = [KeyAlgorithm(algorithm)]
        except ValueError:
            return False
    for candidate in candidates:
        try:
            if _VERIFIERS[candidate](public_key, bytes(message), bytes(signature)):
                return True
        except ImportError:
            continue
    return False


def self_check(identity: Identity, message: bytes) -> SignedMessage:
    """Sign *message* and verify it again before any network use.

    Returns:
        The verified :class:`SignedMessage`.

    Raises:
        SignatureSelfCheckError: If the fresh signature does not verify with
            the identity's own algorithm.
    """
    signed = identity.sign_message(message)
    if not verify(signed.signer, signed.message, signed.signature, identity.algorithm):
        raise SignatureSelfCheckError(
            f"{identity.algorithm.value} signature by {identity.address} failed local verification"
        )
    log.info("message 0x%s", signed.message.hex())
    log.info("signature 0x%s is valid", signed.signature.hex())
    return signed
