"""
Encrypted Record Codec — The on-disk format of one vault record.

Format (line oriented, UTF-8):

    CLAUDIA-ENCRYPTED-v1
    [METADATA]
    <CipherBlob of the YAML frontmatter>
    [CONTENT]
    <CipherBlob of the markdown body>

Metadata and content are encrypted independently so listing records only
needs the metadata section. Files written before encryption existed use a
plain ``---`` YAML frontmatter header; they stay readable but are never
produced by an encrypting write path.

Security Note:
    Never log decrypted metadata or bodies. Format problems raise
    ``MalformedRecord``; crypto problems raise ``DecryptionFailed``.
"""
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import yaml
from pydantic import BaseModel

from .config import KdfParams
from .crypto import decrypt, encrypt
from .exceptions import MalformedRecord

logger = logging.getLogger("claudia.vault")

FORMAT_HEADER = "CLAUDIA-ENCRYPTED-v1"
METADATA_MARKER = "[METADATA]"
CONTENT_MARKER = "[CONTENT]"

FRONTMATTER_DELIMITER = "---"


@dataclass(frozen=True)
class EncryptedFile:
    """The two CipherBlobs of a parsed record."""

    metadata: str
    content: str


# ---------------------------------------------------------------------------
# Format detection / parsing
# ---------------------------------------------------------------------------

def is_encrypted_format(raw: str) -> bool:
    """True if the first non-blank line is the format header."""
    for line in raw.splitlines():
        stripped = line.strip()
        if stripped:
            return stripped == FORMAT_HEADER
    return False


def _join_section(lines: list[str]) -> str:
    return "".join(s for s in (line.strip() for line in lines) if s)


def parse_encrypted_file(raw: str) -> EncryptedFile:
    """Split a raw record into its metadata and content blobs.

    Raises:
        MalformedRecord: If the header is not on line 1, a marker is missing,
            the markers are out of order, or a section is empty.
    """
    lines = raw.splitlines()
    if not lines or lines[0].strip() != FORMAT_HEADER:
        raise MalformedRecord("Invalid file format: missing header")

    metadata_start = content_start = None
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped == METADATA_MARKER and metadata_start is None:
            metadata_start = i + 1
        elif stripped == CONTENT_MARKER and content_start is None:
            content_start = i + 1

    if metadata_start is None:
        raise MalformedRecord("Missing [METADATA] section")
    if content_start is None:
        raise MalformedRecord("Missing [CONTENT] section")
    if metadata_start >= content_start:
        raise MalformedRecord("Invalid format: [METADATA] must come before [CONTENT]")

    metadata = _join_section(lines[metadata_start:content_start - 1])
    content = _join_section(lines[content_start:])
    if not metadata:
        raise MalformedRecord("Empty [METADATA] section")
    if not content:
        raise MalformedRecord("Empty [CONTENT] section")
    return EncryptedFile(metadata=metadata, content=content)


def to_encrypted_file(metadata_blob: str, content_blob: str) -> str:
    """Render two blobs in the on-disk layout."""
    return (
        f"{FORMAT_HEADER}\n{METADATA_MARKER}\n{metadata_blob}\n"
        f"{CONTENT_MARKER}\n{content_blob}\n"
    )


# ---------------------------------------------------------------------------
# Section encryption
# ---------------------------------------------------------------------------

def decrypt_metadata(blob: str, password: str, params: KdfParams | None = None) -> str:
    """Decrypt the metadata section back to its YAML text."""
    return decrypt(blob, password, params)


def decrypt_content(blob: str, password: str, params: KdfParams | None = None) -> str:
    """Decrypt the content section back to the body text."""
    return decrypt(blob, password, params)


def create_encrypted_file(
    metadata_yaml: str,
    body: str,
    password: str,
    params: KdfParams | None = None,
) -> str:
    """Encrypt metadata and body independently and render the record."""
    metadata_blob = encrypt(metadata_yaml, password, params)
    content_blob = encrypt(body, password, params)
    return to_encrypted_file(metadata_blob, content_blob)


# ---------------------------------------------------------------------------
# Frontmatter helpers
# ---------------------------------------------------------------------------

def dump_frontmatter(frontmatter: Mapping[str, Any] | BaseModel) -> str:
    """Serialize structured metadata to YAML."""
    if isinstance(frontmatter, BaseModel):
        frontmatter = frontmatter.model_dump(mode="json")
    return yaml.safe_dump(
        dict(frontmatter), sort_keys=False, allow_unicode=True,
    )


def load_frontmatter(text: str) -> dict[str, Any]:
    """Parse YAML metadata into a dict.

    Raises:
        MalformedRecord: If the YAML is invalid or not a mapping.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as err:
        raise MalformedRecord(f"Invalid YAML metadata: {err}") from err
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise MalformedRecord(
            f"Metadata must be a mapping, got {type(data).__name__}"
        )
    return data


def parse_frontmatter(raw: str) -> tuple[dict[str, Any], str]:
    """Read a legacy plaintext record (``---`` YAML header + body).

    Raises:
        MalformedRecord: If there is no frontmatter block.
    """
    content = raw.strip()
    if not content.startswith(FRONTMATTER_DELIMITER):
        raise MalformedRecord("Missing frontmatter header")
    rest = content[len(FRONTMATTER_DELIMITER):]
    end = rest.find("\n" + FRONTMATTER_DELIMITER)
    if end < 0:
        raise MalformedRecord("Unterminated frontmatter header")
    metadata = load_frontmatter(rest[:end].strip())
    body = rest[end + len(FRONTMATTER_DELIMITER) + 1:].strip()
    return metadata, body


def to_markdown(frontmatter: Mapping[str, Any] | BaseModel, body: str) -> str:
    """Render the legacy plaintext layout."""
    return f"---\n{dump_frontmatter(frontmatter)}---\n\n{body}"


# ---------------------------------------------------------------------------
# Record-level API used by collaborators
# ---------------------------------------------------------------------------

def serialize_and_encrypt(
    frontmatter: Mapping[str, Any] | BaseModel,
    body: str,
    password: str,
    params: KdfParams | None = None,
) -> str:
    """YAML-serialize the frontmatter, then encrypt it with the body."""
    return create_encrypted_file(dump_frontmatter(frontmatter), body, password, params)


encrypt_record = serialize_and_encrypt


def decrypt_record(
    raw: str, password: str, params: KdfParams | None = None,
) -> tuple[dict[str, Any], str]:
    """Decrypt an encrypted record into ``(metadata, body)``.

    Raises:
        MalformedRecord: If ``raw`` is not in the encrypted format.
        DecryptionFailed: If either section fails to decrypt.
    """
    encrypted = parse_encrypted_file(raw)
    metadata = load_frontmatter(decrypt_metadata(encrypted.metadata, password, params))
    body = decrypt_content(encrypted.content, password, params)
    return metadata, body


def read_metadata(
    raw: str, password: str, params: KdfParams | None = None,
) -> dict[str, Any]:
    """Metadata only, for listings. Accepts both formats."""
    if is_encrypted_format(raw):
        encrypted = parse_encrypted_file(raw)
        return load_frontmatter(decrypt_metadata(encrypted.metadata, password, params))
    metadata, _ = parse_frontmatter(raw)
    return metadata


def read_record(
    raw: str, password: str, params: KdfParams | None = None,
) -> tuple[dict[str, Any], str]:
    """Read a record in either the encrypted or the legacy layout."""
    if is_encrypted_format(raw):
        return decrypt_record(raw, password, params)
    logger.debug("Reading legacy plaintext record")
    return parse_frontmatter(raw)


def require_encrypted(raw: str) -> EncryptedFile:
    """Parse ``raw``, refusing legacy plaintext.

    Used on paths where plaintext must never be accepted (password records).
    """
    if not is_encrypted_format(raw):
        raise MalformedRecord("Record is not encrypted")
    return parse_encrypted_file(raw)
