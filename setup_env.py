import os
import secrets

from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives import serialization

def generate_rsa_keys():
    print("Generating RSA Key Pair (3072 bits) for session tokens...")
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=3072,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )

    # Escape newlines for .env
    private_key_str = private_pem.decode('utf-8').replace('\n', '\\n')
    public_key_str = public_pem.decode('utf-8').replace('\n', '\\n')

    return private_key_str, public_key_str

def setup_env():
    if os.path.exists(".env"):
        response = input("A .env file already exists. Overwrite it? (y/N): ")
        if response.lower() != 'y':
            print("Aborted.")
            return

    if not os.path.exists(".env.example"):
        print("Error: .env.example not found.")
        return

    print("Reading .env.example...")
    with open(".env.example", "r") as f:
        env_content = f.read()

    private_key, public_key = generate_rsa_keys()
    generated = {
        "SERVER_PRIVATE_KEY": f'"{private_key}"',
        "SERVER_PUBLIC_KEY": f'"{public_key}"',
        "JWT_SECRET_KEY": secrets.token_urlsafe(48),
        "PASSWORD_PEPPER": secrets.token_urlsafe(32),
    }

    new_lines = []
    for line in env_content.splitlines():
        key = line.split("=", 1)[0]
        if key in generated:
            new_lines.append(f"{key}={generated[key]}")
        else:
            new_lines.append(line)

    with open(".env", "w") as f:
        f.write("\n".join(new_lines))
        f.write("\n") # Ensure trailing newline

    print("SUCCESS: .env file created with new RSA keys, JWT secret and password pepper.")
    print("Set ADMIN_PASSWORD before the first start to create the bootstrap administrator.")

if __name__ == "__main__":
    setup_env()
