#!/usr/bin/env python3
"""
Generate a bcrypt hash for ADMIN_PASSWORD_HASH.

Usage:
    python scripts/hash_password.py            # prompts for the password
    python scripts/hash_password.py --stdin    # reads it from stdin
"""

import argparse
import getpass
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dashproxy.api.security import hash_password


def main():
    parser = argparse.ArgumentParser(description="Generate a bcrypt hash for ADMIN_PASSWORD_HASH")
    parser.add_argument("--stdin", action="store_true", help="Read the password from stdin")
    args = parser.parse_args()

    if args.stdin:
        password = sys.stdin.readline().rstrip("\n")
    else:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Repeat: "):
            print("ERROR: passwords do not match")
            sys.exit(1)

    if not password:
        print("ERROR: empty password")
        sys.exit(1)

    print(hash_password(password))


if __name__ == "__main__":
    main()
