"""
BIP32 HD key derivation for multisig wallets.

Keys may be private or public-only. Public-only keys (the backup and
cosigner keys, and the primary keys while the wallet is locked) can only
follow normal derivation steps.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from functools import total_ordering

import base58
from coincurve import PrivateKey, PublicKey

from btwallet.constants import HARDENED_OFFSET
from btwallet.errors import DerivationError, PrivateKeyRequiredError
from btwallet.wallet.address import hash160
from btwallet.wallet.models import NetworkType

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

# Extended key version bytes: (public, private)
EXTENDED_KEY_VERSIONS = {
    NetworkType.MAINNET: (bytes.fromhex("0488B21E"), bytes.fromhex("0488ADE4")),
    NetworkType.TESTNET: (bytes.fromhex("043587CF"), bytes.fromhex("04358394")),
    NetworkType.REGTEST: (bytes.fromhex("043587CF"), bytes.fromhex("04358394")),
}


@total_ordering
@dataclass(frozen=True, eq=False)
class BIP32Path:
    """
    Immutable derivation path.

    Hardened indices are stored with the hardened offset applied. ``public``
    only records the notation (``M/`` vs ``m/``); equality and ordering
    compare the indices.
    """

    indices: tuple[int, ...] = ()
    public: bool = False

    @classmethod
    def parse(cls, path: str | BIP32Path) -> BIP32Path:
        """Parse "m/44'/0/1" style notation; ' and h both mark hardened steps."""
        if isinstance(path, BIP32Path):
            return path
        if not path or path[0] not in ("m", "M") or (len(path) > 1 and path[1] != "/"):
            raise DerivationError(f"Path must start with 'm/' or 'M/': {path!r}")

        indices: list[int] = []
        for part in path.split("/")[1:]:
            hardened = part.endswith("'") or part.endswith("h")
            index_str = part[:-1] if hardened else part
            if not (index_str.isascii() and index_str.isdigit()):
                raise DerivationError(f"Invalid path component {part!r} in {path!r}")
            index = int(index_str)
            if index >= HARDENED_OFFSET:
                raise DerivationError(f"Path index out of range: {part!r}")
            indices.append(index + HARDENED_OFFSET if hardened else index)

        return cls(tuple(indices), public=path[0] == "M")

    def __str__(self) -> str:
        parts = ["M" if self.public else "m"]
        for index in self.indices:
            if index >= HARDENED_OFFSET:
                parts.append(f"{index - HARDENED_OFFSET}'")
            else:
                parts.append(str(index))
        return "/".join(parts)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BIP32Path):
            return NotImplemented
        return self.indices == other.indices

    def __lt__(self, other: BIP32Path) -> bool:
        return self.indices < other.indices

    def __hash__(self) -> int:
        return hash(self.indices)

    def __len__(self) -> int:
        return len(self.indices)

    def child(self, index: int, hardened: bool = False) -> BIP32Path:
        if hardened:
            index += HARDENED_OFFSET
        return BIP32Path(self.indices + (index,), public=self.public)

    def parent(self) -> BIP32Path:
        if not self.indices:
            raise DerivationError("Root path has no parent")
        return BIP32Path(self.indices[:-1], public=self.public)

    def tail(self, depth: int) -> BIP32Path:
        """Path relative to the node at ``depth``"""
        return BIP32Path(self.indices[depth:], public=self.public)

    def unhardened(self) -> BIP32Path:
        """Same path with every hardened step made normal (backup key derivation)"""
        return BIP32Path(
            tuple(i - HARDENED_OFFSET if i >= HARDENED_OFFSET else i for i in self.indices),
            public=self.public,
        )

    def as_public(self) -> BIP32Path:
        return BIP32Path(self.indices, public=True)

    def is_hardened(self, position: int) -> bool:
        return self.indices[position] >= HARDENED_OFFSET

    @property
    def key_index(self) -> int:
        """Cosigner key-index encoded as the first, hardened, path component"""
        if not self.indices or not self.is_hardened(0):
            raise DerivationError(f"Path {self} does not start with a hardened key-index")
        return self.indices[0] - HARDENED_OFFSET


class HDKey:
    """
    Hierarchical Deterministic Key for Bitcoin.
    Implements BIP32 derivation for private and public-only nodes.
    """

    def __init__(
        self,
        chain_code: bytes,
        private_key: PrivateKey | None = None,
        public_key: PublicKey | None = None,
        depth: int = 0,
        parent_fingerprint: bytes = b"\x00\x00\x00\x00",
        child_number: int = 0,
    ):
        if private_key is None and public_key is None:
            raise DerivationError("HDKey needs a private or a public key")
        self._private_key = private_key
        self._public_key = private_key.public_key if private_key is not None else public_key
        self._chain_code = chain_code
        self._depth = depth
        self._parent_fingerprint = parent_fingerprint
        self._child_number = child_number

    @property
    def private_key(self) -> PrivateKey | None:
        """Return the coincurve PrivateKey instance, None for public-only keys."""
        return self._private_key

    @property
    def public_key(self) -> PublicKey:
        """Return the coincurve PublicKey instance."""
        return self._public_key

    @property
    def chain_code(self) -> bytes:
        return self._chain_code

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def parent_fingerprint(self) -> bytes:
        return self._parent_fingerprint

    @property
    def child_number(self) -> int:
        return self._child_number

    @property
    def is_private(self) -> bool:
        return self._private_key is not None

    @property
    def fingerprint(self) -> bytes:
        return hash160(self.get_public_key_bytes())[:4]

    @classmethod
    def from_seed(cls, seed: bytes) -> HDKey:
        """Create master HD key from seed"""
        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        chain_code = hmac_result[32:]

        private_key = PrivateKey(key_bytes)

        return cls(chain_code, private_key=private_key, depth=0)

    @classmethod
    def from_extended_key(cls, extended_key: str) -> HDKey:
        """Parse an xpub/xprv/tpub/tprv string"""
        try:
            payload = base58.b58decode_check(extended_key)
        except ValueError as e:
            raise DerivationError(f"Invalid extended key checksum: {e}") from e
        if len(payload) != 78:
            raise DerivationError(f"Invalid extended key length: {len(payload)}")

        version = payload[:4]
        depth = payload[4]
        parent_fingerprint = payload[5:9]
        child_number = int.from_bytes(payload[9:13], "big")
        chain_code = payload[13:45]
        key_data = payload[45:]

        public_versions = {pub for pub, _ in EXTENDED_KEY_VERSIONS.values()}
        private_versions = {prv for _, prv in EXTENDED_KEY_VERSIONS.values()}

        try:
            if version in private_versions:
                if key_data[0] != 0:
                    raise DerivationError("Invalid private key padding")
                return cls(
                    chain_code,
                    private_key=PrivateKey(key_data[1:]),
                    depth=depth,
                    parent_fingerprint=parent_fingerprint,
                    child_number=child_number,
                )
            if version in public_versions:
                return cls(
                    chain_code,
                    public_key=PublicKey(key_data),
                    depth=depth,
                    parent_fingerprint=parent_fingerprint,
                    child_number=child_number,
                )
        except ValueError as e:
            raise DerivationError(f"Invalid key material in extended key: {e}") from e

        raise DerivationError(f"Unknown extended key version: {version.hex()}")

    def to_extended_key(
        self, network: NetworkType = NetworkType.MAINNET, private: bool | None = None
    ) -> str:
        """
        Serialize to xpub/xprv (tpub/tprv on test networks).

        ``private`` defaults to whether this key holds a private component.
        """
        if private is None:
            private = self.is_private
        if private and self._private_key is None:
            raise PrivateKeyRequiredError(self._child_number)

        public_version, private_version = EXTENDED_KEY_VERSIONS[NetworkType(network)]
        if private:
            version = private_version
            key_data = b"\x00" + self._private_key.secret
        else:
            version = public_version
            key_data = self.get_public_key_bytes()

        payload = (
            version
            + bytes([self._depth])
            + self._parent_fingerprint
            + self._child_number.to_bytes(4, "big")
            + self._chain_code
            + key_data
        )
        return base58.b58encode_check(payload).decode("ascii")

    def neutered(self) -> HDKey:
        """Public-only copy of this key"""
        return HDKey(
            self._chain_code,
            public_key=self._public_key,
            depth=self._depth,
            parent_fingerprint=self._parent_fingerprint,
            child_number=self._child_number,
        )

    def derive(self, path: str | BIP32Path) -> HDKey:
        """
        Derive child key from path notation (e.g., "m/0'/0/5"), relative to this key.
        ' indicates hardened derivation.
        """
        key = self
        for index in BIP32Path.parse(path).indices:
            key = key.derive_child(index)
        return key

    def derive_child(self, index: int) -> HDKey:
        """Derive a child key at the given index"""
        hardened = index >= HARDENED_OFFSET

        if hardened:
            if self._private_key is None:
                raise PrivateKeyRequiredError(index - HARDENED_OFFSET)
            data = b"\x00" + self._private_key.secret + index.to_bytes(4, "big")
        else:
            data = self.get_public_key_bytes() + index.to_bytes(4, "big")

        hmac_result = hmac.new(self._chain_code, data, hashlib.sha512).digest()
        key_offset = hmac_result[:32]
        child_chain = hmac_result[32:]

        offset_int = int.from_bytes(key_offset, "big")
        if offset_int >= SECP256K1_N:
            raise DerivationError(f"Invalid child key at index {index}")

        if self._private_key is not None:
            parent_key_int = int.from_bytes(self._private_key.secret, "big")
            child_key_int = (parent_key_int + offset_int) % SECP256K1_N

            if child_key_int == 0:
                raise DerivationError(f"Invalid child key at index {index}")

            child_private_key = PrivateKey(child_key_int.to_bytes(32, "big"))
            return HDKey(
                child_chain,
                private_key=child_private_key,
                depth=self._depth + 1,
                parent_fingerprint=self.fingerprint,
                child_number=index,
            )

        # point(parse256(IL)) + Kpar
        try:
            child_public_key = self._public_key.add(key_offset)
        except ValueError as e:
            raise DerivationError(f"Invalid child key at index {index}") from e

        return HDKey(
            child_chain,
            public_key=child_public_key,
            depth=self._depth + 1,
            parent_fingerprint=self.fingerprint,
            child_number=index,
        )

    def get_private_key_bytes(self) -> bytes:
        """Get private key as 32 bytes"""
        if self._private_key is None:
            raise PrivateKeyRequiredError(self._child_number)
        return self._private_key.secret

    def get_public_key_bytes(self, compressed: bool = True) -> bytes:
        """Get public key bytes"""
        return self._public_key.format(compressed=compressed)

    def sign(self, digest: bytes) -> bytes:
        """Sign a 32-byte digest (no further hashing), DER encoded."""
        if self._private_key is None:
            raise PrivateKeyRequiredError(self._child_number)
        return self._private_key.sign(digest, hasher=None)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HDKey):
            return NotImplemented
        return (
            self._chain_code == other._chain_code
            and self.get_public_key_bytes() == other.get_public_key_bytes()
            and self.is_private == other.is_private
        )

    def __hash__(self) -> int:
        return hash((self._chain_code, self.get_public_key_bytes()))

    def __repr__(self) -> str:
        kind = "private" if self.is_private else "public"
        return f"HDKey({kind}, depth={self._depth}, pub={self.get_public_key_bytes().hex()})"


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    Convert BIP39 mnemonic to seed.
    The mnemonic is not checked against the wordlist.
    """
    import unicodedata
    from hashlib import pbkdf2_hmac

    mnemonic = unicodedata.normalize("NFKD", " ".join(mnemonic.split()))
    passphrase = unicodedata.normalize("NFKD", passphrase)
    mnemonic_bytes = mnemonic.encode("utf-8")
    salt = ("mnemonic" + passphrase).encode("utf-8")

    seed = pbkdf2_hmac("sha512", mnemonic_bytes, salt, 2048, dklen=64)
    return seed
