"""
Generate the RSA key pair used to sign bearer tokens.

Usage:
  python scripts/generate_keys.py [--out keys] [--bits 2048]

Writes private_key.pem (PKCS#8) and public_key.pem (SubjectPublicKeyInfo).
"""

import argparse
import os
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def main():
    parser = argparse.ArgumentParser(description="Generate token signing keys")
    parser.add_argument("--out", default=str(Path(__file__).resolve().parent.parent / "keys"))
    parser.add_argument("--bits", type=int, default=2048)
    args = parser.parse_args()

    out = Path(args.out)
    out.mkdir(parents=True, exist_ok=True)
    private_path = out / "private_key.pem"
    public_path = out / "public_key.pem"
    if private_path.exists():
        print(f"{private_path} already exists. Remove it first to rotate keys.")
        return

    key = rsa.generate_private_key(public_exponent=65537, key_size=args.bits)
    private_path.write_bytes(key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    os.chmod(private_path, 0o600)
    public_path.write_bytes(key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ))
    print(f"Wrote {private_path} and {public_path}")


if __name__ == "__main__":
    main()
