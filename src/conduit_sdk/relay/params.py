"""User-configurable in-proxy parameters and the engine config built from them."""

import base64
import binascii
from dataclasses import dataclass
from typing import Any, Optional

from ..errors import ParameterError


PRIVATE_KEY_BYTES = 64


def _require_positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ParameterError(f"{name} must be an integer, got {value!r}")
    if value <= 0:
        raise ParameterError(f"{name} must be positive, got {value}")
    return value


def validate_private_key(key: str) -> str:
    """
    Check that key is unpadded base64 encoding exactly 64 bytes.

    Returns the key unchanged.
    """
    if not isinstance(key, str) or "=" in key:
        raise ParameterError("private_key must be unpadded base64")
    try:
        raw = base64.b64decode(key + "=" * (-len(key) % 4), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ParameterError(f"private_key is not valid base64: {e}") from e
    if len(raw) != PRIVATE_KEY_BYTES:
        raise ParameterError(
            f"private_key must decode to {PRIVATE_KEY_BYTES} bytes, got {len(raw)}"
        )
    return key


@dataclass(frozen=True)
class InProxyParameters:
    """
    Limits the user sets for their relay.

    Attributes:
        max_clients: Maximum concurrent clients served
        limit_upstream_bytes_per_second: Upstream rate limit
        limit_downstream_bytes_per_second: Downstream rate limit
        private_key: Base64 (unpadded) 64-byte session key. When None the
                     engine generates an ephemeral key.
    """

    max_clients: int
    limit_upstream_bytes_per_second: int
    limit_downstream_bytes_per_second: int
    private_key: Optional[str] = None

    def __post_init__(self):
        _require_positive_int("max_clients", self.max_clients)
        _require_positive_int("limit_upstream_bytes_per_second", self.limit_upstream_bytes_per_second)
        _require_positive_int("limit_downstream_bytes_per_second", self.limit_downstream_bytes_per_second)
        if self.private_key is not None:
            validate_private_key(self.private_key)

    def to_dict(self) -> dict:
        return {
            "maxClients": self.max_clients,
            "limitUpstreamBytesPerSecond": self.limit_upstream_bytes_per_second,
            "limitDownstreamBytesPerSecond": self.limit_downstream_bytes_per_second,
            "privateKey": self.private_key,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "InProxyParameters":
        if not isinstance(data, dict):
            raise ParameterError("Parameters must be an object")
        missing = [
            k for k in ("maxClients", "limitUpstreamBytesPerSecond", "limitDownstreamBytesPerSecond")
            if k not in data
        ]
        if missing:
            raise ParameterError(f"Missing parameters: {', '.join(missing)}")
        return cls(
            max_clients=data["maxClients"],
            limit_upstream_bytes_per_second=data["limitUpstreamBytesPerSecond"],
            limit_downstream_bytes_per_second=data["limitDownstreamBytesPerSecond"],
            private_key=data.get("privateKey"),
        )

    def to_engine_config(self, client_version: str) -> dict:
        """
        Build the config handed to the tunneling engine.

        The relay runs in proxy-only mode: local proxies and client tunnels are
        disabled, and activity/bytes-transferred notices are turned on so the
        engine feeds ActivityStats.
        """
        config = {
            "ClientVersion": client_version,
            "DisableLocalHTTPProxy": True,
            "DisableLocalSocksProxy": True,
            "DisableTunnels": True,
            "EmitBytesTransferred": True,
            "EmitInproxyProxyActivity": True,
            "InproxyEnableProxy": True,
            "InproxyMaxClients": self.max_clients,
            "InproxyLimitUpstreamBytesPerSecond": self.limit_upstream_bytes_per_second,
            "InproxyLimitDownstreamBytesPerSecond": self.limit_downstream_bytes_per_second,
        }
        if self.private_key is not None:
            config["InproxyProxySessionPrivateKey"] = self.private_key
        return config
