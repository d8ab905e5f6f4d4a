"""Identity and signing for the provider agent.

The agent's keypair is derived from the provider's seed phrase: the phrase
is stretched into a 64-byte seed (PBKDF2-HMAC-SHA512, salt ``"mnemonic"``,
2048 rounds) and the first 32 bytes become an Ed25519 private key. The
published address is the hex-encoded public key, so the control plane can
verify any signature with nothing but the address that came with it.
"""

from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from mnemonic import Mnemonic

from kumulus_agent.core.config import Settings, get_settings
from kumulus_agent.core.errors import IdentityError
from kumulus_agent.models.telemetry import SignedEnvelope

logger = logging.getLogger(__name__)

SEED_PHRASE_WORD_COUNTS = frozenset({12, 15, 18, 21, 24})
SEED_SALT = b"mnemonic"
SEED_ITERATIONS = 2048


@dataclass(frozen=True)
class Signature:
    """Hex signature plus the address that produced it."""

    signature: str
    address: str


@dataclass(frozen=True)
class AgentIdentity:
    """Keypair derived from the seed phrase, and its public address."""

    private_key: Ed25519PrivateKey
    address: str

    def sign(self, message: bytes) -> Signature:
        """Sign raw bytes with this identity."""
        return Signature(
            signature=_to_hex(self.private_key.sign(message)),
            address=self.address,
        )


def _to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def _from_hex(value: str) -> bytes:
    if value.startswith(("0x", "0X")):
        value = value[2:]
    return bytes.fromhex(value)


def generate_seed_phrase(word_count: int = 12) -> str:
    """Generate a fresh English BIP-39 seed phrase for a new provider.

    Args:
        word_count: Number of words (12, 15, 18, 21 or 24)

    Returns:
        Space-separated seed phrase

    Raises:
        IdentityError: If the word count is not supported
    """
    if word_count not in SEED_PHRASE_WORD_COUNTS:
        raise IdentityError(
            f"Seed phrase must have 12, 15, 18, 21 or 24 words, got {word_count}"
        )
    # 32 bits of entropy per 3 words
    return Mnemonic("english").generate(strength=word_count * 32 // 3)


def normalize_seed_phrase(seed_phrase: str | None) -> str:
    """Normalize and validate a seed phrase.

    Args:
        seed_phrase: Raw phrase from configuration

    Returns:
        NFKD-normalized, lower-cased phrase with single spaces

    Raises:
        IdentityError: If the phrase is empty or not mnemonic-shaped
    """
    if not seed_phrase or not seed_phrase.strip():
        raise IdentityError("Seed phrase is not set")

    words = unicodedata.normalize("NFKD", seed_phrase).lower().split()
    if len(words) not in SEED_PHRASE_WORD_COUNTS:
        raise IdentityError(
            f"Seed phrase must have 12, 15, 18, 21 or 24 words, got {len(words)}"
        )
    if not all(word.isascii() and word.isalpha() for word in words):
        raise IdentityError("Seed phrase may only contain letters")

    return " ".join(words)


def derive_identity(seed_phrase: str | None) -> AgentIdentity:
    """Derive the agent identity from a seed phrase.

    Derivation is deterministic: the same phrase always yields the same
    keypair and address.

    Args:
        seed_phrase: The provider's secret seed phrase

    Returns:
        AgentIdentity holding the private key and public address

    Raises:
        IdentityError: If the seed phrase is empty or malformed
    """
    phrase = normalize_seed_phrase(seed_phrase)

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=64,
        salt=SEED_SALT,
        iterations=SEED_ITERATIONS,
    )
    seed = kdf.derive(phrase.encode("utf-8"))

    private_key = Ed25519PrivateKey.from_private_bytes(seed[:32])
    public_bytes = private_key.public_key().public_bytes(
        encoding=Encoding.Raw,
        format=PublicFormat.Raw,
    )
    return AgentIdentity(private_key=private_key, address=_to_hex(public_bytes))


def verify_signature(message: bytes | str, signature: str, address: str) -> bool:
    """Verify a signature against the signer's published address.

    Args:
        message: The signed message
        signature: Hex signature (``0x`` prefix optional)
        address: Hex public key of the signer (``0x`` prefix optional)

    Returns:
        True if the signature is valid, False otherwise (including malformed input)
    """
    if isinstance(message, str):
        message = message.encode("utf-8")

    try:
        public_key = Ed25519PublicKey.from_public_bytes(_from_hex(address))
        public_key.verify(_from_hex(signature), message)
        return True
    except (InvalidSignature, ValueError):
        return False


class IdentityService:
    """Holds the agent identity and signs outgoing messages.

    The identity is derived once, on first need, and reused for the process
    lifetime. A missing or malformed seed phrase makes each signing call fail
    with IdentityError; the caller decides how far that failure reaches.

    Example:
        ```python
        identity = IdentityService(settings)
        envelope = identity.sign_envelope('{"cpu_usage": 3.5}')
        assert verify_signature(envelope.message, envelope.signature, envelope.address)
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the IdentityService.

        Args:
            settings: Application settings (uses default if not provided)
        """
        self.settings = settings or get_settings()
        self._identity: AgentIdentity | None = None

    @property
    def is_derived(self) -> bool:
        return self._identity is not None

    def get_identity(self) -> AgentIdentity:
        """Return the identity, deriving it from settings on first use.

        Raises:
            IdentityError: If no valid seed phrase is configured
        """
        if self._identity is None:
            self._identity = derive_identity(self.settings.mnemonic)
            logger.info(f"Derived agent identity {self._identity.address}")
        return self._identity

    @property
    def address(self) -> str:
        """Public address of the agent."""
        return self.get_identity().address

    def sign(self, message: bytes) -> Signature:
        """Sign raw bytes.

        Raises:
            IdentityError: If no valid seed phrase is configured
        """
        return self.get_identity().sign(message)

    def sign_envelope(self, message: str) -> SignedEnvelope:
        """Sign a text payload and wrap it for transport.

        Raises:
            IdentityError: If no valid seed phrase is configured
        """
        signed = self.sign(message.encode("utf-8"))
        return SignedEnvelope(
            message=message,
            signature=signed.signature,
            address=signed.address,
        )
