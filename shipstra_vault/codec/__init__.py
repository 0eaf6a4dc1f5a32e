"""Secret Codec — Authenticated encryption for credentials stored as text.

Security Note (Threat Model):
    The codec protects values at rest in a plaintext-readable column.
    Anyone holding the shared secret can decrypt every stored value, so
    the secret must live in process configuration and never in the
    database. Each purpose (tokens, installation ids, install state)
    uses its own secret.
"""

from .secret_codec import SecretCodec
from .config import CodecConfig, load_shared_secret, generate_shared_secret

__all__ = [
    "SecretCodec",
    "CodecConfig",
    "load_shared_secret",
    "generate_shared_secret",
]
