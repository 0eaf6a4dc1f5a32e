"""
Secret Rotation — Batch re-encryption of stored credentials.

Re-encrypts every stored value of one column from an old codec to a new
codec in configurable batches. Each batch runs in its own transaction for
resumability. The operation is idempotent: values the new codec already
decrypts are skipped.

With ``migrate_legacy=True`` the same pass upgrades values written by the
old base64 token helper (which was never encryption) into codec format.

Security Note:
    Plaintext exists in memory only during re-encryption of each row.
    Never log plaintext or ciphertext values.
"""
import base64
import binascii
import re
import logging
from typing import Any

from .codec import SecretCodec
from .exceptions import AuthenticationError, DecodingError, SecretCodecError

logger = logging.getLogger("shipstra.vault")

ROTATABLE_COLUMNS = frozenset({
    "github_encrypted_token",
    "github_app_installation_id",
})

_HEX_ONLY = re.compile(r"[0-9a-fA-F]*")

# SQL statements; {column} is restricted to ROTATABLE_COLUMNS
_SELECT_BATCH = """
SELECT id, user_id, {column} AS value
FROM user_security_settings
WHERE {column} IS NOT NULL
ORDER BY id
LIMIT $1
OFFSET $2
"""

_UPDATE_VALUE = """
UPDATE user_security_settings
SET {column} = $1, updated_at = NOW()
WHERE id = $2
"""


def _decode_legacy(value: str) -> str:
    """Read a value stored by the legacy base64 helper.

    Pure hex values are damaged codec output, never legacy base64.
    """
    if _HEX_ONLY.fullmatch(value):
        raise DecodingError("value looks like damaged codec output, not legacy base64")
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as err:
        raise DecodingError(f"value is neither codec nor legacy base64: {err}") from None


def _is_current(value: str, codec: SecretCodec) -> bool:
    try:
        codec.decrypt(value)
    except (DecodingError, AuthenticationError):
        return False
    return True


async def rotate_secrets(
    db_pool: Any,
    column: str,
    old_codec: SecretCodec,
    new_codec: SecretCodec,
    batch_size: int = 100,
    migrate_legacy: bool = False,
) -> dict:
    """Re-encrypt all values of ``column`` from old_codec to new_codec.

    Args:
        db_pool: asyncpg-compatible connection pool.
        column: Encrypted column to rotate.
        old_codec: Codec the values are currently encrypted with.
        new_codec: Codec to re-encrypt with.
        batch_size: Number of rows to process per batch/transaction.
        migrate_legacy: Also upgrade legacy base64 values.

    Returns:
        Stats dict with keys: total, rotated, migrated, skipped, errors.

    Raises:
        ValueError: If column is not a rotatable credential column.
    """
    if column not in ROTATABLE_COLUMNS:
        raise ValueError(f"Column {column!r} is not a rotatable secret column")
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    select_sql = _SELECT_BATCH.format(column=column)
    update_sql = _UPDATE_VALUE.format(column=column)
    stats = {"total": 0, "rotated": 0, "migrated": 0, "skipped": 0, "errors": 0}
    offset = 0

    logger.info(
        "Starting secret rotation of %s (batch_size=%d, migrate_legacy=%s)",
        column, batch_size, migrate_legacy,
    )

    while True:
        async with db_pool.acquire() as conn:
            rows = await conn.fetch(select_sql, batch_size, offset)

        if not rows:
            break

        batch_num = (offset // batch_size) + 1
        logger.info("Processing batch %d (%d rows)", batch_num, len(rows))

        async with db_pool.acquire() as conn:
            tx = conn.transaction()
            await tx.start()
            try:
                for row in rows:
                    stats["total"] += 1
                    row_id = row["id"]
                    value = row["value"]

                    if _is_current(value, new_codec):
                        stats["skipped"] += 1
                        continue

                    outcome = "rotated"
                    try:
                        try:
                            plaintext = old_codec.decrypt(value)
                        except DecodingError:
                            if not migrate_legacy:
                                raise
                            plaintext = _decode_legacy(value)
                            outcome = "migrated"
                        await conn.execute(
                            update_sql, new_codec.encrypt(plaintext), row_id,
                        )
                        stats[outcome] += 1
                    except SecretCodecError as err:
                        logger.error(
                            "Error rotating %s for id=%s user=%s: %s",
                            column, row_id, row["user_id"], type(err).__name__,
                        )
                        stats["errors"] += 1

                await tx.commit()
            except Exception:
                await tx.rollback()
                raise

        offset += len(rows)

    logger.info("Secret rotation of %s complete: %s", column, stats)
    return stats
