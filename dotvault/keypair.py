"""SSH key pairs stored as a single remote entry.

The remote entry holds the private key block followed by the public key
line. The private key's ``-----END ... PRIVATE KEY-----`` line is the
sentinel that separates the two halves.
"""

import re
from pathlib import Path

# OpenSSH, PEM (RSA, EC, DSA) and PKCS#8 (plain or ENCRYPTED) blocks
_BEGIN = re.compile(r"-----BEGIN (?:[A-Z0-9]+ )?PRIVATE KEY-----")
_END = re.compile(r"-----END (?:[A-Z0-9]+ )?PRIVATE KEY-----")
_PUBLIC_PREFIXES = ("ssh-ed25519 ", "ssh-rsa ", "ecdsa-sha2-", "ssh-dss ", "sk-ssh-", "sk-ecdsa-sha2-")


def public_key_path(private_path: Path) -> Path:
    """Conventional location of the public half."""
    return private_path.with_name(private_path.name + ".pub")


def pack(private_key: str, public_key: str | None = None) -> str:
    """Combine both halves into one entry."""
    packed = private_key.rstrip("\n") + "\n"
    if public_key and public_key.strip():
        packed += public_key.strip() + "\n"
    return packed


def unpack(content: str) -> tuple[str, str | None]:
    """Split an entry into ``(private_key, public_key)``.

    Returns:
        The private key block with a trailing newline (empty string when no
        block is present) and the public key line, or None.
    """
    private_lines: list[str] = []
    public_key = None
    in_key = False

    for line in content.splitlines():
        if _BEGIN.search(line):
            in_key = True
        if in_key:
            private_lines.append(line)
            if _END.search(line):
                in_key = False
            continue
        stripped = line.strip()
        if public_key is None and stripped.startswith(_PUBLIC_PREFIXES):
            public_key = stripped + "\n"

    private_key = "\n".join(private_lines) + "\n" if private_lines else ""
    return private_key, public_key


def read_pair(private_path: Path) -> str | None:
    """Read a key pair from disk and pack it, or None if the private key is absent."""
    if not private_path.exists():
        return None
    private_key = private_path.read_text(encoding="utf-8")
    pub_path = public_key_path(private_path)
    public_key = pub_path.read_text(encoding="utf-8") if pub_path.exists() else None
    return pack(private_key, public_key)
