from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation used across the store"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class WorkerModel(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_api(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
