"""Runtime settings read from ``ENVDRIFT_*`` environment variables."""

import os
import re
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "ENVDRIFT_"

_QUALIFIED_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*(\.[A-Za-z_][A-Za-z0-9_$]*)?$")


class Settings(BaseModel):
    log_file: str = "envdrift.log"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    connect_timeout: int = Field(5, ge=1)
    connection_ttl_minutes: int = Field(15, ge=1)
    max_match_items: int = Field(100, ge=0)
    ledger_table: str = "public.flyway_schema_history"

    @field_validator("ledger_table")
    @classmethod
    def _plain_identifier(cls, value: str) -> str:
        # interpolated into catalog SQL, so only bare [schema.]name is accepted
        if not _QUALIFIED_NAME.match(value):
            raise ValueError(f"not a plain [schema.]table name: {value!r}")
        return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from the environment.

    Unset variables keep their defaults; malformed values raise
    ``pydantic.ValidationError``.
    """
    environ = os.environ if environ is None else environ
    values = {}
    for name in Settings.model_fields:
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None and raw.strip():
            values[name] = raw.strip()
    return Settings(**values)
