"""StoredBlob: one named blob of serialized engine state.

Keys look like `sekolah_rbac:custom_roles`; values are UTF-8 JSON.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from sekolah_rbac.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredBlob(Base):
    __tablename__ = "stored_blobs"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )
