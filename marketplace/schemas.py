from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# ======================================================
# Configuration Commune Pydantic
# ======================================================

class EntityModel(BaseModel):
    """Base des entités du workflow: immuables, exposées en camelCase."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        from_attributes=True,
        use_enum_values=False,
    )


class RequestModel(BaseModel):
    """Base des payloads d'API (acceptent camelCase ou snake_case)."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )
