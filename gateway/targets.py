from dataclasses import dataclass
from typing import Dict, Tuple


class ConfigError(ValueError):
    '''Raised when the SERVICE_TARGETS string cannot be turned into a registry.'''


@dataclass(frozen=True)
class Target:
    name: str
    base_url: str

    @property
    def health_url(self) -> str:
        return f"{self.base_url}/health"

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "baseUrl": self.base_url}


def parse_targets(raw: str) -> Tuple[Target, ...]:
    '''
    Parsar "users=http://users-service:4001,orders=http://orders:4002".
    - Tomma poster (t.ex. avslutande komma) hoppas över
    - Första "=" skiljer namn från URL, så URL:en får innehålla "="
    - Dubbla namn avvisas
    '''
    targets = []
    seen = set()
    for pos, pair in enumerate((raw or "").split(",")):
        if not pair.strip():
            continue
        name, sep, url = pair.partition("=")
        if not sep:
            raise ConfigError(f"target #{pos} {pair.strip()!r} is missing '='")
        name = name.strip()
        url = url.strip().rstrip("/")
        if not name:
            raise ConfigError(f"target #{pos} {pair.strip()!r} has an empty name")
        if not url:
            raise ConfigError(f"target {name!r} has an empty URL")
        if name in seen:
            raise ConfigError(f"duplicate target name {name!r}")
        seen.add(name)
        targets.append(Target(name=name, base_url=url))
    return tuple(targets)
