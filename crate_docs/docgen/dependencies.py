"""Dependency records extracted from `cargo metadata` output."""

from dataclasses import asdict, dataclass, field
from typing import Optional

from crate_docs.errors import NotFoundError


@dataclass
class DependencyRecord:
    """One declared dependency of a package."""

    name: str
    version_req: str
    resolved_version: Optional[str] = None
    kind: str = "normal"
    optional: bool = False
    features: list[str] = field(default_factory=list)
    target: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return asdict(self)


def _find_package(metadata: dict, name: str, version: Optional[str]) -> dict:
    packages = metadata.get("packages") or []
    for package in packages:
        if package.get("name") != name:
            continue
        if version is None or package.get("version") == version:
            return package

    # Git and local sources are cached under labels that need not match
    # the manifest version; fall back to a name-only match.
    for package in packages:
        if package.get("name") == name:
            return package

    raise NotFoundError(f"Package {name} not found in cargo metadata")


def _resolved_versions(metadata: dict, package_id: str) -> dict[str, str]:
    """Map dependency name -> resolved version for one package node."""
    resolve = metadata.get("resolve") or {}
    packages_by_id = {p.get("id"): p for p in metadata.get("packages") or []}

    resolved: dict[str, str] = {}
    for node in resolve.get("nodes") or []:
        if node.get("id") != package_id:
            continue
        for dep_id in node.get("dependencies") or []:
            dep = packages_by_id.get(dep_id)
            if dep is not None:
                resolved[dep["name"]] = dep.get("version")
        break
    return resolved


def parse_dependencies(
    metadata: dict,
    package_name: str,
    version: Optional[str] = None,
) -> list[DependencyRecord]:
    """
    Build dependency records for a package from cargo metadata.

    Args:
        metadata: Parsed `cargo metadata --format-version 1` output
        package_name: Package to describe
        version: Package version to prefer when several share the name

    Returns:
        DependencyRecord list in manifest order
    """
    package = _find_package(metadata, package_name, version)
    resolved = _resolved_versions(metadata, package.get("id"))

    records = []
    for dep in package.get("dependencies") or []:
        name = dep.get("name")
        records.append(
            DependencyRecord(
                name=name,
                version_req=dep.get("req", "*"),
                resolved_version=resolved.get(dep.get("rename") or name) or resolved.get(name),
                kind=dep.get("kind") or "normal",
                optional=bool(dep.get("optional", False)),
                features=list(dep.get("features") or []),
                target=dep.get("target"),
            )
        )
    return records
