from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConnectionRequest(CamelModel):
    host: str = Field(min_length=1)
    port: int = Field(5432, ge=1, le=65535)
    database: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = ""
    ssl_mode: Optional[str] = None
    schema_name: Optional[str] = Field(None, alias="schema")


class ConnectionResponse(CamelModel):
    connection_id: str
    schema_name: str = Field(alias="schema")


class ComparisonRequestModel(CamelModel):
    source_connection_id: str
    target_connection_id: str
    source_environment_name: str = "SOURCE"
    target_environment_name: str = "TARGET"
    schema_name: str = Field("public", alias="schema")
    specific_tables: Optional[List[str]] = None

    @field_validator("source_connection_id", "target_connection_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("source_environment_name", "target_environment_name", "schema_name")
    @classmethod
    def _default_when_blank(cls, value: str, info) -> str:
        if value.strip():
            return value.strip()
        defaults = {
            "source_environment_name": "SOURCE",
            "target_environment_name": "TARGET",
            "schema_name": "public",
        }
        return defaults[info.field_name]
