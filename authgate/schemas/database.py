"""
AuthGate — Database Client Entry Schema
========================================

What:  Pydantic model for one entry of the registry document.
How:   ConnectionRegistry hands each raw JSON entry to
       `DatabaseClientConfig.from_entry()`; any problem becomes a
       ClientValidationError that skips only that entry.

Document shape (first present array among the aliases wins):
    {
        "dbs": [
            {
                "name": "default",
                "rdbms": "postgresql",
                "host": "127.0.0.1", "port": 5432, "dbname": "app",
                "user": "app", "passwd": "secret",
                "sslmode": "require",
                "connection_number": 4
            },
            {
                "name": "reporting",
                "connection_info": "host=10.0.0.7 dbname=reports user=ro password=...",
                "number_of_connections": 2
            }
        ]
    }
"""

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError as PydanticValidationError
from pydantic import field_validator, model_validator

from authgate.exceptions import ClientValidationError

# Top-level keys searched, in order, for the array of client specs
CLIENT_LIST_ALIASES = ("dbs", "db_clients", "databases")

SUPPORTED_RDBMS = frozenset({"postgresql"})

DEFAULT_CLIENT_NAME = "default"

# Discrete connection fields required when connection_info is absent
DISCRETE_FIELDS = ("host", "port", "dbname", "user", "passwd")


class DatabaseClientConfig(BaseModel):
    """
    One named pooled client.

    Either `connection_info` (precomposed) or every field in
    DISCRETE_FIELDS must be present. Secret fields are excluded from repr.
    """

    name: str = Field(default=DEFAULT_CLIENT_NAME, min_length=1)
    rdbms: str = Field(default="postgresql")

    connection_info: Optional[str] = Field(default=None, repr=False)

    host: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    dbname: Optional[str] = None
    user: Optional[str] = None
    passwd: Optional[str] = Field(default=None, repr=False)

    sslmode: str = Field(default="require")

    pool_size: int = Field(
        default=1,
        ge=1,
        le=1000,
        validation_alias=AliasChoices("connection_number", "number_of_connections", "pool_size"),
    )

    # Per-entry connect timeout override (seconds)
    timeout: Optional[float] = Field(default=None, gt=0)

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("name must not be blank")
        return stripped

    @field_validator("rdbms")
    @classmethod
    def validate_rdbms(cls, v: str) -> str:
        kind = v.strip().lower()
        if kind not in SUPPORTED_RDBMS:
            raise ValueError(f"unsupported rdbms '{v}' (supported: postgresql)")
        return kind

    @field_validator("connection_info")
    @classmethod
    def blank_connection_info_is_absent(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def require_connection_fields(self) -> "DatabaseClientConfig":
        if self.connection_info is None:
            missing = [field for field in DISCRETE_FIELDS if getattr(self, field) is None]
            if missing:
                raise ValueError(
                    "missing connection fields: " + ", ".join(missing)
                    + " (or provide connection_info)"
                )
        return self

    @classmethod
    def from_entry(cls, entry: Any) -> "DatabaseClientConfig":
        """
        Validates one raw registry entry.

        Raises:
            ClientValidationError: the entry is not usable. The context
            lists failing fields and messages only, never input values.
        """
        if not isinstance(entry, dict):
            raise ClientValidationError(
                message="Client entry must be an object",
                context={"entry_type": type(entry).__name__},
            )

        raw_name = entry.get("name", DEFAULT_CLIENT_NAME)
        client_name = raw_name if isinstance(raw_name, str) else None

        try:
            return cls.model_validate(entry)
        except PydanticValidationError as e:
            problems = [
                {
                    "field": ".".join(str(part) for part in err["loc"]) or "entry",
                    "problem": err["msg"],
                }
                for err in e.errors()
            ]
            raise ClientValidationError(
                message="Invalid database client entry",
                client_name=client_name,
                context={"problems": problems},
            ) from None
