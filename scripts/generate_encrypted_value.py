#!/usr/bin/env python3
"""
Generate an encrypted credential token for a new instance record.

Usage: ENCRYPTION_KEY=... python scripts/generate_encrypted_value.py "secret"
"""

import sys

from dbexec.errors import VaultError
from dbexec.settings import load_settings
from dbexec.vault import CredentialVault


def main() -> int:
    if len(sys.argv) != 2:
        print('Usage: python scripts/generate_encrypted_value.py "your-secret-value"')
        return 1

    settings = load_settings()
    try:
        token = CredentialVault(settings.encryption_key).encrypt(sys.argv[1])
    except VaultError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print("Encrypted value:")
    print(token)
    return 0


if __name__ == "__main__":
    sys.exit(main())
