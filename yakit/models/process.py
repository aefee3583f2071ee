"""Process directory models."""

from pydantic import BaseModel


class ProcessRecord(BaseModel):
    """An engine process discovered at query time."""

    pid: int
    name: str
    command_line: str = ""
    port: int = 0  # 0 when no listening port could be attributed


class LaunchResult(BaseModel):
    """Outcome of starting the engine."""

    port: int
    pid: int | None = None
    elevated: bool = False
