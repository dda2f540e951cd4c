#!/usr/bin/env python3
"""Generate a random master key, or derive one from a passphrase."""
import getpass
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from byok.crypto.encryption import derive_key, generate_master_key


def main(argv):
    if len(argv) > 1 and argv[1] == "--derive":
        salt = argv[2] if len(argv) > 2 else None
        passphrase = getpass.getpass("Passphrase: ")
        if not passphrase:
            print("❌ Passphrase cannot be empty")
            return 1
        master_key = derive_key(passphrase, salt)
        print("\n🔑 Derived master key (same passphrase and salt give the same key):")
    else:
        master_key = generate_master_key()
        print("\n🔑 Master key (SAVE THIS - keys encrypted with it cannot be recovered without it!):")

    print(f"   {master_key}")
    print("\n💡 Keep it client-side only. The server never stores it.")
    return 0


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] in ("-h", "--help"):
        print("Usage: python scripts/generate_master_key.py [--derive [salt]]")
        sys.exit(0)
    sys.exit(main(sys.argv))
