import configparser
import dataclasses
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

PROTOCOL_NATIVE = "native"
PROTOCOL_HTTP = "http"
DEFAULT_DATABASE = "default"
CONNECTION_SECTION_PREFIX = "connection:"

_DEFAULT_PORTS = {
    (PROTOCOL_NATIVE, False): 9000,
    (PROTOCOL_NATIVE, True): 9440,
    (PROTOCOL_HTTP, False): 8123,
    (PROTOCOL_HTTP, True): 8443,
}


@dataclass(frozen=True)
class ConnectionProfile:
    host: str
    port: int
    name: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    database: str = ""
    protocol: str = PROTOCOL_NATIVE
    use_tls: bool = False

    @property
    def address(self) -> str:
        return "%s:%s" % (self.host, self.port)

    @property
    def is_http(self) -> bool:
        return (self.protocol or "").strip().lower() == PROTOCOL_HTTP


@dataclass
class ToolConfig:
    connections: Dict[str, ConnectionProfile] = field(default_factory=dict)
    default_connection: Optional[str] = None
    timeout_seconds: Optional[float] = 30.0
    log_level: str = "INFO"


def with_database(profile: ConnectionProfile, database: Optional[str]) -> ConnectionProfile:
    """
    Copy of `profile` scoped to `database`; an empty override keeps the profile's own.
    """
    if not database:
        return profile
    return dataclasses.replace(profile, database=database)


def with_default_database(profile: ConnectionProfile) -> ConnectionProfile:
    if profile.database:
        return profile
    return dataclasses.replace(profile, database=DEFAULT_DATABASE)


def load_config(path: str) -> ToolConfig:
    parser = configparser.ConfigParser(interpolation=None)
    read = parser.read(path)
    if not read:
        raise FileNotFoundError("Config file not found: %s" % path)

    settings_raw = _section_to_dict(parser, "settings")
    connections: Dict[str, ConnectionProfile] = {}
    for section in parser.sections():
        if not section.startswith(CONNECTION_SECTION_PREFIX):
            continue
        name = section[len(CONNECTION_SECTION_PREFIX):].strip()
        if not name:
            raise ValueError("Connection section without a name: [%s]" % section)
        connections[name] = _profile_from_section(name, _section_to_dict(parser, section))

    if not connections:
        raise ValueError(
            "No connections configured; add a [%sNAME] section to %s"
            % (CONNECTION_SECTION_PREFIX, path)
        )

    default_connection = settings_raw.get("default_connection") or None
    if default_connection and default_connection not in connections:
        raise ValueError("default_connection %r is not configured" % default_connection)
    if not default_connection and len(connections) == 1:
        default_connection = next(iter(connections))

    return ToolConfig(
        connections=connections,
        default_connection=default_connection,
        timeout_seconds=_to_timeout(settings_raw.get("timeout_seconds", "30")),
        log_level=settings_raw.get("log_level", "INFO").upper(),
    )


def _profile_from_section(name: str, raw: Dict[str, str]) -> ConnectionProfile:
    _require_keys(raw, ["host"], CONNECTION_SECTION_PREFIX + name)
    protocol = raw.get("protocol", PROTOCOL_NATIVE).strip().lower() or PROTOCOL_NATIVE
    if protocol not in (PROTOCOL_NATIVE, PROTOCOL_HTTP):
        raise ValueError(
            "Unsupported protocol %r for connection %s (expected native or http)"
            % (protocol, name)
        )
    use_tls = _to_bool(raw.get("use_tls", "false"))
    if raw.get("port"):
        port = int(raw["port"])
    else:
        port = _DEFAULT_PORTS[(protocol, use_tls)]
    return ConnectionProfile(
        name=name,
        host=raw["host"],
        port=port,
        username=raw.get("username", ""),
        password=raw.get("password", ""),
        database=raw.get("database", ""),
        protocol=protocol,
        use_tls=use_tls,
    )


def _section_to_dict(parser: configparser.ConfigParser, section: str) -> Dict[str, str]:
    if not parser.has_section(section):
        return {}
    return {k: v for k, v in parser.items(section)}


def _require_keys(data: Dict[str, Any], keys: List[str], section: str) -> None:
    missing = [k for k in keys if not data.get(k)]
    if missing:
        raise ValueError(
            "Missing required config keys in %s: %s" % (section, ", ".join(missing))
        )


def env_override(config: ToolConfig) -> ToolConfig:
    """
    Allow env overrides for credentials to avoid committing secrets.
    """
    timeout = os.environ.get("CH_TOOL_TIMEOUT")
    log_level = os.environ.get("CH_TOOL_LOG_LEVEL")
    if timeout:
        config.timeout_seconds = _to_timeout(timeout)
    if log_level:
        config.log_level = log_level.upper()
    for name, profile in list(config.connections.items()):
        password = os.environ.get(password_env_var(name))
        if password:
            config.connections[name] = dataclasses.replace(profile, password=password)
    return config


def password_env_var(name: str) -> str:
    return "CH_PASSWORD_" + name.upper().replace("-", "_")


def _to_timeout(value: str) -> Optional[float]:
    seconds = float(value)
    # 0 disables the deadline
    if seconds <= 0:
        return None
    return seconds


def _to_bool(value: str) -> bool:
    return str(value).lower() in ("1", "true", "yes", "on")
