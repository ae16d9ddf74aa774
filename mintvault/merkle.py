"""Merkle allowlist utilities.

The allowlist is committed as a single root digest; membership is shown with a
list of sibling digests, so the full list never has to be stored or revealed.

Hashing:
- SHA-256
- Domain separation:
  - leaf = SHA256(0x00 || address_bytes)      (20 raw address bytes)
  - node = SHA256(0x01 || min(a, b) || max(a, b))

Pairs are sorted before hashing, so a proof is just the sibling digests from
leaf to root with no left/right position bits.

The leaf commits to the holder's identity only. A valid proof therefore
authorises any issuance amount up to the holder's allowlist quota, across any
number of calls; the quantity is not bound into the proof.

"""

from __future__ import annotations

import hashlib
import pathlib
from typing import Any, Iterable, List, Sequence

import yaml

from mintvault.hardening import CryptoUtils, Validators


def _sha256(b: bytes) -> bytes:
    return hashlib.sha256(b).digest()


def _is_hex_32(s: Any) -> bool:
    if not isinstance(s, str):
        return False
    ss = s.strip().lower()
    if len(ss) != 64:
        return False
    try:
        bytes.fromhex(ss)
        return True
    except ValueError:
        return False


def leaf_hash(address: str) -> str:
    """Compute the allowlist leaf for an address (0x + 40 hex)."""
    normalized = Validators.validate_address(address).unwrap()
    return _sha256(b"\x00" + bytes.fromhex(normalized[2:])).hex()


def node_hash(left_hex: str, right_hex: str) -> str:
    """Compute a parent digest from two child digests (order-independent)."""
    if not _is_hex_32(left_hex) or not _is_hex_32(right_hex):
        raise ValueError("left_hex and right_hex must be 64 hex chars")
    a = bytes.fromhex(left_hex.strip().lower())
    b = bytes.fromhex(right_hex.strip().lower())
    lo, hi = (a, b) if a <= b else (b, a)
    return _sha256(b"\x01" + lo + hi).hex()


def verify(proof: Sequence[str], root: str, leaf: str) -> bool:
    """Verify that ``leaf`` is committed under ``root``.

    Pure: returns False for any malformed input instead of raising.
    """
    if not _is_hex_32(root) or not _is_hex_32(leaf):
        return False
    if isinstance(proof, (str, bytes)):
        return False
    try:
        siblings = list(proof)
    except TypeError:
        return False
    if not all(_is_hex_32(s) for s in siblings):
        return False

    current = leaf.strip().lower()
    for sibling in siblings:
        current = node_hash(current, sibling)
    return CryptoUtils.secure_compare_str(current, root.strip().lower())


def verify_address(proof: Sequence[str], root: str, address: str) -> bool:
    """Verify membership of ``address``; False if the address is malformed."""
    result = Validators.validate_address(address)
    if not result.is_valid:
        return False
    return verify(proof, root, leaf_hash(result.sanitized_value))


def _leaves(addresses: Iterable[str]) -> List[str]:
    leaves = sorted({leaf_hash(a) for a in addresses})
    if not leaves:
        raise ValueError("allowlist must contain at least one address")
    return leaves


def build_levels(leaves: List[str]) -> List[List[str]]:
    """Build every tree level bottom-up; an odd trailing node is promoted unchanged."""
    levels = [list(leaves)]
    while len(levels[-1]) > 1:
        current = levels[-1]
        nxt = []
        for i in range(0, len(current), 2):
            if i + 1 < len(current):
                nxt.append(node_hash(current[i], current[i + 1]))
            else:
                nxt.append(current[i])
        levels.append(nxt)
    return levels


def build_allowlist(addresses: Iterable[str]) -> dict:
    """Compute the root committing to ``addresses`` (duplicates ignored)."""
    leaves = _leaves(addresses)
    levels = build_levels(leaves)
    return {
        "root": levels[-1][0],
        "size": len(leaves),
        "leaves": leaves,
    }


def build_proof(addresses: Iterable[str], address: str) -> List[str]:
    """Build the membership proof for ``address`` against the allowlist root."""
    leaves = _leaves(addresses)
    target = leaf_hash(address)
    try:
        index = leaves.index(target)
    except ValueError:
        raise ValueError(f"{address} is not on the allowlist") from None

    proof: List[str] = []
    for level in build_levels(leaves)[:-1]:
        sibling = index ^ 1
        if sibling < len(level):
            proof.append(level[sibling])
        index //= 2
    return proof


def load_addresses(path: pathlib.Path) -> List[str]:
    """Load allowlist addresses from YAML/JSON (a list) or plain text (one per line)."""
    text = pathlib.Path(path).read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError:
        data = None

    if isinstance(data, dict) and isinstance(data.get("addresses"), list):
        data = data["addresses"]

    if isinstance(data, list):
        out = []
        for entry in data:
            # YAML 1.1 resolves unquoted 0x... scalars to ints.
            if isinstance(entry, int) and not isinstance(entry, bool):
                entry = "0x%040x" % entry
            out.append(str(entry))
        return out

    return [line.strip() for line in text.splitlines() if line.strip() and not line.startswith("#")]
