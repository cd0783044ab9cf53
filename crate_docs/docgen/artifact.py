"""
rustdoc JSON artifact access.

The artifact is kept as the raw document the generator wrote; only the
fields used for listing and indexing are read, so newer format versions pass
through untouched.
"""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional

from crate_docs.errors import CacheIOError, InvalidInputError, NotFoundError

# rustdoc "inner" keys mapped to item kinds
ITEM_KINDS = {
    "module": "module",
    "struct": "struct",
    "enum": "enum",
    "function": "function",
    "trait": "trait",
    "impl": "impl",
    "type_alias": "type_alias",
    "typedef": "type_alias",
    "constant": "constant",
    "static": "static",
    "macro": "macro",
    "extern_crate": "extern_crate",
    "use": "use",
    "import": "use",
    "union": "union",
    "struct_field": "field",
    "variant": "variant",
    "trait_alias": "trait_alias",
    "proc_macro": "proc_macro",
    "primitive": "primitive",
    "assoc_const": "assoc_const",
    "assoc_type": "assoc_type",
    "extern_type": "extern_type",
}


@dataclass
class SourceSpan:
    """Location of an item in the crate's source."""

    filename: str
    begin_line: int
    begin_col: int
    end_line: int
    end_col: int


@dataclass
class ItemInfo:
    """One documented item extracted from the artifact."""

    id: str
    name: str
    kind: str
    path: list[str]
    docs: Optional[str] = None
    visibility: str = "public"
    span: Optional[SourceSpan] = None

    @property
    def joined_path(self) -> str:
        return "::".join(self.path)

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return asdict(self)


@dataclass
class ItemDetails:
    """An item plus its signature and child items (fields, variants, methods)."""

    info: ItemInfo
    signature: Optional[str] = None
    generics: Optional[dict] = None
    fields: Optional[list[ItemInfo]] = None
    variants: Optional[list[ItemInfo]] = None
    methods: Optional[list[ItemInfo]] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ItemSource:
    """Source excerpt for an item."""

    location: SourceSpan
    code: str
    context_lines: int

    def to_dict(self) -> dict:
        return asdict(self)


def item_kind(item: dict) -> str:
    """Kind of a raw rustdoc item, from the single key of its "inner" table."""
    inner = item.get("inner")
    if isinstance(inner, dict) and inner:
        key = next(iter(inner))
        return ITEM_KINDS.get(key, key)
    if isinstance(inner, str):
        return ITEM_KINDS.get(inner, inner)
    return "unknown"


def visibility_label(value: Any) -> str:
    """Render rustdoc visibility ("public", "default", "crate", restricted(...))."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and "restricted" in value:
        restricted = value["restricted"] or {}
        return f"restricted({restricted.get('path') or restricted.get('parent')})"
    return "unknown"


def _span(raw: Any) -> Optional[SourceSpan]:
    if not isinstance(raw, dict):
        return None
    begin = raw.get("begin") or [0, 0]
    end = raw.get("end") or [0, 0]
    return SourceSpan(
        filename=str(raw.get("filename", "")),
        begin_line=int(begin[0]),
        begin_col=int(begin[1]),
        end_line=int(end[0]),
        end_col=int(end[1]),
    )


def _note(text: str) -> ItemInfo:
    return ItemInfo(id="", name=text, kind="note", path=[], visibility="private")


def _function_signature(name: str, body: dict) -> str:
    """Simplified signature: fn name<...>(a, b) -> ..."""
    sig = body.get("sig") or body.get("decl") or {}
    generics = "<...>" if (body.get("generics") or {}).get("params") else ""
    params = ", ".join(str(p[0]) for p in sig.get("inputs") or [] if p)
    output = " -> ..." if sig.get("output") is not None else ""
    return f"fn {name}{generics}({params}){output}"


class DocArtifact:
    """Read-only view over a rustdoc JSON document."""

    def __init__(self, data: dict):
        self.data = data

    @property
    def format_version(self) -> Optional[int]:
        return self.data.get("format_version")

    @property
    def crate_version(self) -> Optional[str]:
        return self.data.get("crate_version")

    @property
    def root(self) -> Optional[str]:
        root = self.data.get("root")
        return None if root is None else str(root)

    @property
    def index(self) -> dict:
        return self.data.get("index") or {}

    @property
    def paths(self) -> dict:
        return self.data.get("paths") or {}

    def item_path(self, item_id: str) -> list[str]:
        """Fully qualified path segments for an item, or [] when unknown."""
        summary = self.paths.get(item_id)
        if isinstance(summary, dict):
            return list(summary.get("path") or [])
        return []

    def get_item(self, item_id: str) -> Optional[ItemInfo]:
        raw = self.index.get(str(item_id))
        if not isinstance(raw, dict):
            return None
        return self._to_item(str(item_id), raw)

    def items(self, kind: Optional[str] = None) -> list[ItemInfo]:
        """
        All named items, optionally filtered by kind.

        Returns:
            Items sorted by path then name
        """
        results = []
        for item_id, raw in self.index.items():
            if not isinstance(raw, dict):
                continue
            item = self._to_item(str(item_id), raw)
            if item is None:
                continue
            if kind and item.kind != kind:
                continue
            results.append(item)

        results.sort(key=lambda i: (i.path, i.name))
        return results

    def find_items(self, name: str, kind: Optional[str] = None) -> list[ItemInfo]:
        """Items whose name matches exactly (case-insensitive)."""
        needle = name.lower()
        return [i for i in self.items(kind) if i.name.lower() == needle]

    def search_items(
        self,
        pattern: str,
        kind: Optional[str] = None,
        path_prefix: Optional[str] = None,
    ) -> list[ItemInfo]:
        """
        Items whose name contains pattern (case-insensitive).

        Args:
            pattern: Substring to look for in item names
            kind: Keep only items of this kind
            path_prefix: Keep only items whose "::"-joined path starts with this

        Returns:
            Exact matches first, then prefix matches, then shorter names,
            ties broken alphabetically
        """
        needle = pattern.lower()
        matches = [i for i in self.items(kind) if needle in i.name.lower()]
        if path_prefix:
            matches = [i for i in matches if i.joined_path.startswith(path_prefix)]

        def relevance(item: ItemInfo):
            lowered = item.name.lower()
            return (lowered != needle, not lowered.startswith(needle), len(item.name), item.name)

        return sorted(matches, key=relevance)

    def get_item_docs(self, item_id: str) -> Optional[str]:
        """
        Documentation string of an item.

        Raises:
            NotFoundError: If the id is not in the index
        """
        return self._raw_item(item_id).get("docs")

    def get_item_details(self, item_id: str) -> ItemDetails:
        """
        Item info with its signature and child items.

        Functions get a simplified signature; structs list their fields,
        enums their variants, and traits and impls their associated items.

        Raises:
            NotFoundError: If the id is unknown or the item is unnamed
        """
        raw = self._raw_item(item_id)
        info = self._to_item(str(item_id), raw)
        if info is None:
            raise NotFoundError(f"Item {item_id} has no name")

        kind = item_kind(raw)
        inner = raw.get("inner")
        body = inner.get(next(iter(inner))) if isinstance(inner, dict) and inner else None
        body = body if isinstance(body, dict) else {}

        details = ItemDetails(info=info, generics=body.get("generics"))
        if kind == "function":
            details.signature = _function_signature(info.name, body)
        elif kind == "struct":
            details.fields = self._struct_fields(body.get("kind"))
        elif kind == "enum":
            details.variants = self._children(body.get("variants"))
            if body.get("has_stripped_variants"):
                details.variants.append(_note("(some variants stripped)"))
        elif kind in ("trait", "impl"):
            details.methods = self._children(body.get("items"))
        return details

    def get_item_source(self, item_id: str, base_path: Path, context_lines: int = 3) -> ItemSource:
        """
        Read an item's source from the cached crate tree.

        Args:
            item_id: Item id from the index
            base_path: Directory the span filenames are relative to
            context_lines: Lines to include before and after the span

        Returns:
            ItemSource; the line range is clamped to the file, so a span past
            the end of the file yields empty code

        Raises:
            NotFoundError: If the item, its span or the file is missing
            InvalidInputError: If the span points outside base_path
        """
        raw = self._raw_item(item_id)
        span = _span(raw.get("span"))
        if span is None:
            raise NotFoundError(f"Item {item_id} has no source span")

        base = Path(base_path).resolve()
        source_file = (base / span.filename).resolve()
        if not source_file.is_relative_to(base):
            raise InvalidInputError(f"Source of item {item_id} lies outside the cached crate: {span.filename}")
        if not source_file.is_file():
            raise NotFoundError(f"Source file not found: {span.filename}")

        try:
            lines = source_file.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError as e:
            raise CacheIOError(f"Failed to read {source_file}: {e}") from e

        context_lines = max(context_lines, 0)
        end = min(span.end_line + context_lines, len(lines))
        start = min(max(span.begin_line - 1 - context_lines, 0), end)
        return ItemSource(
            location=span,
            code="\n".join(lines[start:end]),
            context_lines=context_lines,
        )

    def _raw_item(self, item_id: str) -> dict:
        raw = self.index.get(str(item_id))
        if not isinstance(raw, dict):
            raise NotFoundError(f"Item {item_id} not found")
        return raw

    def _children(self, ids: Any) -> list[ItemInfo]:
        children = []
        for child_id in ids or []:
            if child_id is None:
                continue
            raw = self.index.get(str(child_id))
            item = self._to_item(str(child_id), raw) if isinstance(raw, dict) else None
            if item is not None:
                children.append(item)
        return children

    def _struct_fields(self, struct_kind: Any) -> list[ItemInfo]:
        if not isinstance(struct_kind, dict):
            return []  # unit struct
        if "plain" in struct_kind:
            plain = struct_kind["plain"] or {}
            fields = self._children(plain.get("fields"))
            if plain.get("has_stripped_fields"):
                fields.append(_note("(some fields stripped)"))
            return fields
        if "tuple" in struct_kind:
            fields = []
            for position, field_id in enumerate(struct_kind["tuple"] or []):
                raw = self.index.get(str(field_id)) if field_id is not None else None
                if not isinstance(raw, dict):
                    fields.append(
                        ItemInfo(id="", name=f"(field {position} stripped)", kind="field", path=[], visibility="private")
                    )
                    continue
                fields.append(
                    ItemInfo(
                        id=str(field_id),
                        name=raw.get("name") or str(position),
                        kind="field",
                        path=self.item_path(str(field_id)),
                        docs=raw.get("docs"),
                        visibility=visibility_label(raw.get("visibility")),
                    )
                )
            return fields
        return []

    def _to_item(self, item_id: str, raw: dict) -> Optional[ItemInfo]:
        name = raw.get("name")
        if not name:
            return None
        return ItemInfo(
            id=item_id,
            name=name,
            kind=item_kind(raw),
            path=self.item_path(item_id),
            docs=raw.get("docs"),
            visibility=visibility_label(raw.get("visibility")),
            span=_span(raw.get("span")),
        )
