"""Column mixins for the flow tables: CUID ids, UTC timestamps, soft delete."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, declared_attr, mapped_column
from sqlalchemy.sql import func

from flowengine.shared.utils.datetime import utc_now
from flowengine.shared.utils.generators import generate_cuid


def _utc_timestamp(*, touch_on_update: bool = False) -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now if touch_on_update else None,
    )


class CuidMixin:
    @declared_attr
    def id(cls) -> Mapped[str]:
        return mapped_column(String, primary_key=True, default=generate_cuid)


class TimestampMixin:
    """created_at/updated_at, set client-side so SQLite and PostgreSQL agree."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return _utc_timestamp()

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return _utc_timestamp(touch_on_update=True)


class SoftDeleteMixin:
    """deleted_at; trashed rows are hidden unless a query asks for them."""

    @declared_attr
    def deleted_at(cls) -> Mapped[datetime | None]:
        return mapped_column(DateTime(timezone=True), nullable=True, index=True)
