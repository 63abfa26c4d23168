"""Custom resource definition inventory model."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CrdInfo:
    """Inventory entry for a custom resource definition."""

    name: str
    group: str = ""
    kind: str = ""
    version: str = ""
    scope: str = "Namespaced"
    created: str = ""
    instances: list[tuple[str, str]] = field(default_factory=list)

    @property
    def namespaced(self) -> bool:
        return self.scope == "Namespaced"

    @property
    def instance_count(self) -> int:
        return len(self.instances)

    @classmethod
    def from_dict(cls, d: dict) -> CrdInfo:
        metadata = d.get("metadata", {}) or {}
        spec = d.get("spec", {}) or {}
        names = spec.get("names", {}) or {}
        versions = spec.get("versions", []) or []
        version = ""
        # Prefer the storage version, fall back to the first served one
        for v in versions:
            if v.get("storage"):
                version = v.get("name", "")
                break
        if not version:
            for v in versions:
                if v.get("served", True):
                    version = v.get("name", "")
                    break
        return cls(
            name=metadata.get("name", ""),
            group=spec.get("group", ""),
            kind=names.get("kind", ""),
            version=version,
            scope=spec.get("scope", "Namespaced"),
            created=str(metadata.get("creationTimestamp", "") or ""),
        )
