# placement_engine/workload/config.py
"""Game server configuration, validated when the Workload Unit is built."""

import logging
import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from placement_engine.core.errors import WorkloadConfigError
from placement_engine.workload.models import (
    RCON_PORT,
    HealthResponderSpec,
    PrimaryProcessSpec,
    WorkloadUnitSpec,
)

logger = logging.getLogger(__name__)


# Environment variable -> key inside the secret bundle
REQUIRED_CREDENTIALS = {
    "STEAMUSER": "STEAMUSER",
    "STEAMPASS": "STEAMPASS",
    "CS2_PW": "CS2_PW",
    "CS2_RCONPW": "CS2_RCONPW",
}


class GameServerConfig(BaseModel):
    """
    Game server settings.

    Accepts either field names or the container environment names
    (``CS2_SERVERNAME`` and friends).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="forbid")

    server_name: str = Field(..., min_length=1, alias="CS2_SERVERNAME")
    start_map: str = Field(..., min_length=1, alias="CS2_STARTMAP")
    map_group: str = Field(default="mg_dust", min_length=1, alias="CS2_MAPGROUP")
    game_alias: str = Field(default="deathmatch", min_length=1, alias="CS2_GAMEALIAS")
    bot_quota: int = Field(..., ge=0, alias="CS2_BOT_QUOTA")
    rcon_port: int = Field(..., alias="CS2_RCON_PORT")

    credential_refs: Dict[str, str] = Field(default_factory=lambda: dict(REQUIRED_CREDENTIALS))

    @field_validator("rcon_port")
    @classmethod
    def _rcon_on_stream_port(cls, value: int) -> int:
        if value != RCON_PORT:
            raise ValueError(f"RCON port must be the stream port {RCON_PORT}, got {value}")
        return value

    @field_validator("credential_refs")
    @classmethod
    def _all_credentials_referenced(cls, value: Dict[str, str]) -> Dict[str, str]:
        missing = [name for name in REQUIRED_CREDENTIALS if not value.get(name)]
        if missing:
            raise ValueError(f"Missing credential references: {', '.join(missing)}")
        return value

    def to_environment(self) -> Dict[str, str]:
        """Render the plain (non-secret) container environment."""
        return {
            "CS2_SERVERNAME": self.server_name,
            "CS2_STARTMAP": self.start_map,
            "CS2_MAPGROUP": self.map_group,
            "CS2_GAMEALIAS": self.game_alias,
            "CS2_BOT_QUOTA": str(self.bot_quota),
            "CS2_RCON_PORT": str(self.rcon_port),
        }


def load_game_server_config(values: Mapping[str, Any]) -> GameServerConfig:
    """
    Validate raw values into a GameServerConfig.

    Raises:
        WorkloadConfigError: On missing or invalid required values
    """
    try:
        return GameServerConfig.model_validate(dict(values))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise WorkloadConfigError(f"Invalid game server config: {problems}") from e


def build_workload_unit(
    config: GameServerConfig,
    *,
    name: str = "cs2",
    primary_image: Optional[str] = None,
    responder_image: Optional[str] = None,
    volume_mount_path: Optional[str] = None,
) -> WorkloadUnitSpec:
    """Create the Workload Unit spec for a validated config."""
    primary = PrimaryProcessSpec(
        environment=config.to_environment(),
        secret_refs=dict(config.credential_refs),
        volume_mount_path=volume_mount_path,
    )
    if primary_image:
        primary.image = primary_image

    responder = HealthResponderSpec()
    if responder_image:
        responder.image = responder_image

    spec = WorkloadUnitSpec(name=name, primary=primary, health_responder=responder)

    logger.info(
        f"[workload] built unit '{name}': {primary.image} "
        f"({spec.datagram_port.key()}, {spec.stream_port.key()}), "
        f"responder on {spec.probe_port}/tcp"
    )
    return spec


# Values the original deployment shipped with
DEFAULT_GAME_SERVER_ENV = {
    "CS2_SERVERNAME": "Private Server",
    "CS2_STARTMAP": "de_dust2",
    "CS2_MAPGROUP": "mg_dust",
    "CS2_GAMEALIAS": "deathmatch",
    "CS2_BOT_QUOTA": "0",
    "CS2_RCON_PORT": str(RCON_PORT),
}


def load_game_server_config_from_env(environ: Optional[Mapping[str, str]] = None) -> GameServerConfig:
    """Build the config from ``CS2_*`` environment variables over the defaults."""
    environ = os.environ if environ is None else environ
    values = dict(DEFAULT_GAME_SERVER_ENV)
    for key in DEFAULT_GAME_SERVER_ENV:
        if environ.get(key):
            values[key] = environ[key]
    return load_game_server_config(values)
