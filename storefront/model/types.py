# storefront/model/types.py
import uuid
from sqlalchemy.types import TypeDecorator, CHAR
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def as_uuid(value) -> uuid.UUID | None:
    """Parse a path/body id into a UUID; None when it is not one."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (TypeError, ValueError, AttributeError):
        return None


class GUID(TypeDecorator):
    """UUID column: native on PostgreSQL, CHAR(36) text everywhere else."""
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        parsed = as_uuid(value)
        if parsed is None:
            raise ValueError(f"not a valid UUID: {value!r}")
        return parsed if dialect.name == "postgresql" else str(parsed)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
