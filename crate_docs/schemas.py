"""
Pydantic response models returned by the service layer.
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

CacheStatus = Literal[
    "success",
    "success_updated",
    "members_success",
    "members_partial",
    "workspace_detected",
    "error",
]


class CacheResponse(BaseModel):
    """Outcome of a synchronous cache request."""

    status: CacheStatus = Field(..., description="Outcome category")
    message: str = Field(..., description="Human-readable summary")
    crate: str = Field(..., description="Crate name")
    version: str = Field(..., description="Crate version")
    members: List[str] = Field(default_factory=list, description="Members cached or detected")
    skipped_members: List[str] = Field(default_factory=list, description="Glob member patterns not expanded")
    errors: Dict[str, str] = Field(default_factory=dict, description="Per-member failures")
    example_usage: Optional[str] = Field(default=None, description="How to cache members of a workspace")

    @classmethod
    def success(cls, crate: str, version: str, updated: bool = False) -> "CacheResponse":
        if updated:
            return cls(
                status="success_updated",
                message=f"Successfully updated {crate}-{version}",
                crate=crate,
                version=version,
            )
        return cls(
            status="success",
            message=f"Successfully cached {crate}-{version}",
            crate=crate,
            version=version,
        )

    @classmethod
    def members_result(
        cls,
        crate: str,
        version: str,
        succeeded: List[str],
        errors: Dict[str, str],
    ) -> "CacheResponse":
        if errors:
            return cls(
                status="members_partial",
                message=(
                    f"Cached {len(succeeded)} of {len(succeeded) + len(errors)} "
                    f"members of {crate}-{version}"
                ),
                crate=crate,
                version=version,
                members=succeeded,
                errors=errors,
            )
        return cls(
            status="members_success",
            message=f"Successfully cached {len(succeeded)} members of {crate}-{version}",
            crate=crate,
            version=version,
            members=succeeded,
        )

    @classmethod
    def workspace_detected(
        cls,
        crate: str,
        version: str,
        members: List[str],
        skipped: List[str],
    ) -> "CacheResponse":
        example = None
        if members:
            example = f'cache_crate("{crate}", "{version}", members=["{members[0]}"])'
        return cls(
            status="workspace_detected",
            message=(
                f"{crate}-{version} is a workspace with {len(members)} members; "
                "specify which members to cache"
            ),
            crate=crate,
            version=version,
            members=members,
            skipped_members=skipped,
            example_usage=example,
        )

    @classmethod
    def error(cls, crate: str, version: str, message: str) -> "CacheResponse":
        return cls(status="error", message=message, crate=crate, version=version)


class CachedCrateView(BaseModel):
    """One cached crate version in a listing."""

    name: str = Field(..., description="Crate name")
    version: str = Field(..., description="Crate version")
    cached_at: str = Field(..., description="RFC3339 timestamp of caching")
    doc_generated: bool = Field(..., description="Whether rustdoc JSON exists")
    size_bytes: int = Field(..., description="Size on disk in bytes")
    size_human: str = Field(..., description="Size on disk, formatted")
    source: str = Field(..., description="Source kind (crates.io, github, local)")
    source_path: Optional[str] = Field(default=None, description="Source URL or path")
    members: List[str] = Field(default_factory=list, description="Cached workspace members")


class CacheListing(BaseModel):
    """Every cached crate with totals."""

    crates: List[CachedCrateView] = Field(default_factory=list, description="Cached crates")
    total_count: int = Field(default=0, description="Number of cached crate versions")
    total_size_bytes: int = Field(default=0, description="Total size on disk in bytes")
    total_size_human: str = Field(default="0 B", description="Total size, formatted")
