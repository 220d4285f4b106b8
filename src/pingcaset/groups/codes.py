"""Join code generation for security groups.

Codes look like GRP-7QX2: a fixed prefix plus 4 characters from A-Z0-9,
drawn from a cryptographic random source.
"""

from __future__ import annotations

import secrets
import string

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pingcaset.db.models import SecurityGroup

CODE_PREFIX = "GRP-"
CODE_CHARSET = string.ascii_uppercase + string.digits
CODE_LENGTH = 4


def generate_group_code() -> str:
    return CODE_PREFIX + "".join(secrets.choice(CODE_CHARSET) for _ in range(CODE_LENGTH))


def normalize_group_code(code: str) -> str:
    """Trim and uppercase; accepts codes typed without the GRP- prefix."""
    normalized = code.strip().upper()
    if not normalized.startswith(CODE_PREFIX):
        normalized = CODE_PREFIX + normalized
    return normalized


async def generate_unique_group_code(db: AsyncSession) -> str:
    """Generate a code that doesn't already exist in the database."""
    for _ in range(10):
        code = generate_group_code()
        existing = await db.execute(select(SecurityGroup.id).where(SecurityGroup.code == code))
        if existing.scalar_one_or_none() is None:
            return code
    raise RuntimeError("Failed to generate unique group code after 10 attempts")
