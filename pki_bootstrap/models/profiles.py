"""
Request and signing-policy documents in the signing engine's JSON format.
"""
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional


DURATION_TOKEN = re.compile(r'(\d+(?:\.\d+)?)(h|m|s)')
DURATION_PATTERN = re.compile(r'\A(?:\d+(?:\.\d+)?(?:h|m|s))+\Z')

DEFAULT_EXPIRY = "43800h"

SERVER_USAGES = ["signing", "key encipherment", "server auth", "client auth"]
CLIENT_USAGES = ["signing", "digital signature", "key encipherment", "client auth"]

KEY_ALGORITHMS = {
    "rsa": (2048, 3072, 4096, 8192),
    "ecdsa": (256, 384, 521),
}


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration string such as ``43800h`` or ``1h30m``.

    Only the hour, minute and second units the signing engine's policy
    documents use are accepted.

    Args:
        value: Duration string

    Returns:
        Equivalent timedelta

    Raises:
        ValueError: If the string is not a valid duration
    """
    if not isinstance(value, str) or not DURATION_PATTERN.match(value):
        raise ValueError(f"Invalid duration: {value!r}")

    seconds = 0.0
    for amount, unit in DURATION_TOKEN.findall(value):
        multiplier = {"h": 3600, "m": 60, "s": 1}[unit]
        seconds += float(amount) * multiplier

    return timedelta(seconds=seconds)


@dataclass
class KeySpec:
    """Key algorithm and size for a request."""
    algo: str
    size: int

    def __post_init__(self):
        if self.algo not in KEY_ALGORITHMS:
            raise ValueError(f"Unsupported key algorithm: {self.algo}")
        if self.size not in KEY_ALGORITHMS[self.algo]:
            raise ValueError(f"Unsupported {self.algo} key size: {self.size}")

    def to_dict(self) -> Dict[str, Any]:
        return {"algo": self.algo, "size": self.size}


@dataclass
class CertificateRequest:
    """A certificate request document (CA, server or client)."""
    common_name: str
    key: KeySpec
    hosts: Optional[List[str]] = None
    names: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the engine's request JSON layout."""
        data: Dict[str, Any] = {"CN": self.common_name}
        if self.hosts is not None:
            data["hosts"] = list(self.hosts)
        data["key"] = self.key.to_dict()
        if self.names:
            data["names"] = [dict(n) for n in self.names]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CertificateRequest':
        """Build a request from its JSON representation."""
        try:
            key_data = data["key"]
            return cls(
                common_name=data["CN"],
                key=KeySpec(algo=key_data["algo"], size=int(key_data["size"])),
                hosts=[h for h in data["hosts"] if h] if "hosts" in data else None,
                names=[dict(n) for n in data.get("names", [])],
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed certificate request: {e}")

    @property
    def san_hosts(self) -> List[str]:
        """Subject alternative names, ignoring empty placeholders."""
        return [h for h in (self.hosts or []) if h]

    def name_attribute(self, key: str) -> Optional[str]:
        """Return the first distinguished-name value for ``key``."""
        for entry in self.names:
            if key in entry:
                return entry[key]
        return None


@dataclass
class SigningProfile:
    """A named signing profile: expiry plus permitted usages."""
    expiry: str
    usages: List[str]

    def __post_init__(self):
        if parse_duration(self.expiry) <= timedelta(0):
            raise ValueError(f"Profile expiry must be positive: {self.expiry}")
        if not self.usages:
            raise ValueError("Profile usages must not be empty")

    @property
    def expiry_delta(self) -> timedelta:
        return parse_duration(self.expiry)

    def to_dict(self) -> Dict[str, Any]:
        return {"expiry": self.expiry, "usages": list(self.usages)}


@dataclass
class SigningPolicy:
    """The CA signing policy with its ``server`` and ``client`` profiles."""
    default_expiry: str
    profiles: Dict[str, SigningProfile]

    REQUIRED_PROFILES = ("server", "client")

    def __post_init__(self):
        if parse_duration(self.default_expiry) <= timedelta(0):
            raise ValueError(f"Default expiry must be positive: {self.default_expiry}")
        missing = [p for p in self.REQUIRED_PROFILES if p not in self.profiles]
        if missing:
            raise ValueError(f"Signing policy is missing profiles: {', '.join(missing)}")

    @classmethod
    def default(cls) -> 'SigningPolicy':
        """The policy every PKI is bootstrapped with."""
        return cls(
            default_expiry=DEFAULT_EXPIRY,
            profiles={
                "server": SigningProfile(expiry=DEFAULT_EXPIRY, usages=list(SERVER_USAGES)),
                "client": SigningProfile(expiry=DEFAULT_EXPIRY, usages=list(CLIENT_USAGES)),
            },
        )

    def get_profile(self, name: str) -> SigningProfile:
        if name not in self.profiles:
            raise ValueError(f"Unknown signing profile: {name}")
        return self.profiles[name]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signing": {
                "default": {"expiry": self.default_expiry},
                "profiles": {
                    name: profile.to_dict() for name, profile in self.profiles.items()
                },
            }
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SigningPolicy':
        """Build a policy from its JSON representation."""
        try:
            signing = data["signing"]
            profiles = {
                name: SigningProfile(expiry=p["expiry"], usages=list(p["usages"]))
                for name, p in signing["profiles"].items()
            }
            return cls(default_expiry=signing["default"]["expiry"], profiles=profiles)
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed signing policy: {e}")
