"""Pure helpers for server identifiers and path/package classification.

Nothing in this module spawns processes or touches the filesystem, so every
function here is deterministic and cheap to test.
"""

import re
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath, PurePosixPath, PureWindowsPath
from typing import Iterable, Optional, Sequence

from ..models.config import ServerConfig, SpawnSpec
from .error_handler import ConfigurationError

PYTHON_SUFFIXES = (".py",)
NODE_SUFFIXES = (".js", ".mjs", ".cjs", ".ts")

_ID_PREFIXES = ("mcp-", "server-")

# @scope/name, name, name@1.2.3, @scope/name@latest
_PACKAGE_RE = re.compile(
    r"^(?:@[a-z0-9][a-z0-9._~-]*/)?[a-z0-9][a-z0-9._~-]*(?:@[A-Za-z0-9._^~<>=*+-]+)?$",
    re.IGNORECASE,
)


class ServerKind(str, Enum):
    """How a server reference is turned into a process."""

    KNOWN_ID = "known_id"
    PYTHON_SCRIPT = "python_script"
    NODE_SCRIPT = "node_script"
    PACKAGE = "package"


@dataclass(frozen=True)
class ServerTarget:
    """Result of classifying a user-supplied server reference."""

    kind: ServerKind
    reference: str
    server_id: str
    spawn_spec: Optional[SpawnSpec] = None


def normalize_server_id(server_id: str) -> str:
    """Canonical identity key for a server id.

    Lower-cases and strips leading ``mcp-``/``server-`` prefixes until none
    remain, so ``normalize_server_id(normalize_server_id(x))`` equals
    ``normalize_server_id(x)``.
    """
    normalized = server_id.lower()
    stripped = True
    while stripped:
        stripped = False
        for prefix in _ID_PREFIXES:
            if normalized.startswith(prefix) and len(normalized) > len(prefix):
                normalized = normalized[len(prefix):]
                stripped = True
    return normalized


def _path_of(reference: str) -> PurePath:
    if "\\" in reference:
        return PureWindowsPath(reference)
    return PurePosixPath(reference)


def _is_package(reference: str) -> bool:
    if reference.startswith("@"):
        return reference.count("/") == 1 and bool(_PACKAGE_RE.match(reference))
    return "/" not in reference and "\\" not in reference and bool(_PACKAGE_RE.match(reference))


def package_name(reference: str) -> str:
    """Package name without its scope or version: ``@a/b-mcp@1.0`` -> ``b-mcp``."""
    name = reference
    if name.startswith("@"):
        name = name.split("/", 1)[1] if "/" in name else name[1:]
    return name.split("@", 1)[0]


def derive_server_id(reference: str) -> str:
    """Logical server id for a script path or package reference.

    Examples: ``./servers/weather.py`` -> ``weather``,
    ``@agentdeskai/browser-tools-mcp@1.2.0`` -> ``browser-tools``,
    ``mcp-server-fetch`` -> ``fetch``.
    """
    reference = reference.strip()
    suffix = _path_of(reference).suffix.lower()
    if suffix in PYTHON_SUFFIXES + NODE_SUFFIXES:
        return _path_of(reference).stem

    name = normalize_server_id(package_name(reference))
    if "-mcp" in name:
        head = name.split("-mcp", 1)[0]
        if head:
            name = head
    return name


def classify_server_path(
    reference: str,
    known_ids: Iterable[str] = (),
    extra_args: Sequence[str] = (),
    python_executable: Optional[str] = None,
    node_executable: str = "node",
) -> ServerTarget:
    """Classify a server path, package or id and build its spawn spec.

    Known ids win over everything else and carry no spawn spec; the caller
    resolves them from configuration. Raises ``ConfigurationError`` for
    anything that is neither a script, a package nor a known id.
    """
    reference = (reference or "").strip()
    if not reference:
        raise ConfigurationError("Server path or id is required")

    known = {normalize_server_id(k) for k in known_ids}
    if normalize_server_id(reference) in known:
        return ServerTarget(ServerKind.KNOWN_ID, reference, normalize_server_id(reference))

    args = [str(a) for a in extra_args]
    suffix = _path_of(reference).suffix.lower()

    if suffix in PYTHON_SUFFIXES:
        spec = SpawnSpec(command=python_executable or sys.executable, args=[reference, *args])
        return ServerTarget(ServerKind.PYTHON_SCRIPT, reference, derive_server_id(reference), spec)

    if suffix in NODE_SUFFIXES:
        spec = SpawnSpec(command=node_executable, args=[reference, *args])
        return ServerTarget(ServerKind.NODE_SCRIPT, reference, derive_server_id(reference), spec)

    if _is_package(reference):
        spec = SpawnSpec(command="npx", args=["-y", reference, *args])
        return ServerTarget(ServerKind.PACKAGE, reference, derive_server_id(reference), spec)

    raise ConfigurationError(
        f"Unsupported server reference {reference!r}: expected a .py or .js script, "
        "an npm package name, or a configured server id",
        details={"reference": reference},
    )


def target_to_config(target: ServerTarget) -> ServerConfig:
    """Registry file entry for a freshly classified ad-hoc server."""
    if target.spawn_spec is None:
        raise ConfigurationError(f"Server {target.reference!r} is already configured")
    return ServerConfig(
        enabled=True,
        command=target.spawn_spec.command,
        args=list(target.spawn_spec.args),
        env=dict(target.spawn_spec.env),
    )


def display_name(server_id: str) -> str:
    """``browser-tools`` -> ``Browser Tools``."""
    return " ".join(word[:1].upper() + word[1:] for word in server_id.split("-") if word)


def describe_server(server_id: str, config: Optional[ServerConfig] = None) -> str:
    """Short human description derived from the package or script a server runs."""
    if config is not None and config.description:
        return config.description

    if config is not None and config.args:
        if config.command == "npx":
            package_arg = next((a for a in config.args if not a.startswith("-")), None)
            if package_arg:
                name = package_name(package_arg)
                if name.startswith("mcp-server-") or name.startswith("server-"):
                    return f"{display_name(normalize_server_id(name))} service"
                return f"{name} service"
        else:
            script = next(
                (a for a in config.args if _path_of(a).suffix.lower() in PYTHON_SUFFIXES + NODE_SUFFIXES),
                None,
            )
            if script:
                stem = _path_of(script).stem
                return f"{stem[:1].upper() + stem[1:]} service"

    return f"{display_name(server_id)} service"
