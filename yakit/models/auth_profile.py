"""Remote connection profile model."""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class RemoteAuthProfile(BaseModel):
    """Credentials for connecting to a remote engine.

    Serialised with the field names the desktop shell has always written
    (``caPem`` rather than ``ca_pem``).
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    host: str = ""
    port: int | str = ""
    tls: bool = False
    password: str = ""
    ca_pem: str = Field(default="", alias="caPem")

    @field_validator("tls", mode="before")
    @classmethod
    def _coerce_tls(cls, value: object) -> bool:
        # Older files hold 0/1, booleans or their string forms
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    @field_validator("password", "ca_pem", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value

    @model_validator(mode="after")
    def _default_name(self) -> "RemoteAuthProfile":
        if not self.name:
            self.name = f"{self.host}:{self.port}"
        return self

    @property
    def is_complete(self) -> bool:
        """True when both host and port are set."""
        return bool(self.host) and self.port not in ("", 0, None)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)
