"""Collection registry: vector collection profiles and shared system collections.

The registry is an immutable value. It is built once at startup (from the
built-in defaults below or from a JSON override file) and passed explicitly to
every component that needs it.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal, Mapping

from research_engine.config import settings
from research_engine.errors import ConfigurationError
from research_engine.services.logger import logger

SYSTEM_OWNER = "SYSTEM"

FieldType = Literal["keyword", "tenant-keyword", "text"]
FIELD_TYPES: tuple[str, ...] = ("keyword", "tenant-keyword", "text")

OPTIMIZER_PRESETS: Mapping[str, Mapping[str, int]] = MappingProxyType(
    {
        "large": MappingProxyType(
            {
                "default_segment_number": 2,
                "max_segment_size": 20000,
                "memmap_threshold": 10000,
                "indexing_threshold": 20000,
            }
        ),
        "medium": MappingProxyType({"default_segment_number": 2, "max_segment_size": 20000}),
        "small": MappingProxyType({"default_segment_number": 1, "max_segment_size": 10000}),
        "tiny": MappingProxyType({"default_segment_number": 1, "max_segment_size": 5000}),
        "minimal": MappingProxyType({"default_segment_number": 1, "max_segment_size": 1000}),
    }
)

INDEX_PRESETS: Mapping[str, Mapping[str, int]] = MappingProxyType(
    {
        "standard": MappingProxyType(
            {"m": 16, "ef_construct": 100, "full_scan_threshold": 10000, "max_indexing_threads": 0}
        ),
        "enhanced": MappingProxyType(
            {
                "payload_m": 16,
                "m": 16,
                "ef_construct": 200,
                "full_scan_threshold": 10000,
                "max_indexing_threads": 0,
            }
        ),
        "minimal": MappingProxyType({"m": 16, "ef_construct": 100}),
    }
)


@dataclass(frozen=True, slots=True)
class PayloadField:
    name: str
    type: FieldType = "keyword"


@dataclass(frozen=True, slots=True)
class CollectionProfile:
    name: str
    optimizer: str | None = None
    index: str | None = None
    fields: tuple[PayloadField, ...] = ()
    tenant_field: str | None = None

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)


@dataclass(frozen=True, slots=True)
class DefaultFilter:
    field: str
    value: str | tuple[str, ...]


@dataclass(frozen=True, slots=True)
class SystemCollectionProfile:
    id: str
    collection: str
    name: str
    description: str = ""
    min_quality: float = 0.3
    recall_limit: int = 60
    filterable_fields: tuple[str, ...] = ()
    default_filter: DefaultFilter | None = None
    owner: str = SYSTEM_OWNER


@dataclass(frozen=True, slots=True)
class CollectionTarget:
    """A resolved query target: the concrete collection plus its access rules."""

    ref: str
    collection: str
    owner_mode: Literal["system", "tenant", "shared"]
    min_quality: float
    recall_limit: int
    tenant_field: str | None = None
    system: SystemCollectionProfile | None = None


def get_collection_config(vector_size: int, profile: CollectionProfile) -> dict[str, Any]:
    """Merge a profile's optimizer and index presets into one index configuration."""
    config: dict[str, Any] = {"vectors": {"size": int(vector_size), "distance": "Cosine"}}
    if profile.optimizer is not None:
        preset = OPTIMIZER_PRESETS.get(profile.optimizer)
        if preset is None:
            raise ConfigurationError(
                f"Unknown optimizer preset '{profile.optimizer}' for collection '{profile.name}'"
            )
        config["optimizers_config"] = dict(preset)
    if profile.index is not None:
        preset = INDEX_PRESETS.get(profile.index)
        if preset is None:
            raise ConfigurationError(
                f"Unknown index preset '{profile.index}' for collection '{profile.name}'"
            )
        config["hnsw_config"] = dict(preset)
    return config


@dataclass(frozen=True, slots=True)
class CollectionRegistry:
    collections: Mapping[str, CollectionProfile]
    system_collections: Mapping[str, SystemCollectionProfile]
    default_collection_ids: tuple[str, ...] = ()
    default_min_quality: float = 0.3
    default_recall_limit: int = 50

    def __post_init__(self) -> None:
        object.__setattr__(self, "collections", MappingProxyType(dict(self.collections)))
        object.__setattr__(
            self, "system_collections", MappingProxyType(dict(self.system_collections))
        )
        object.__setattr__(self, "default_collection_ids", tuple(self.default_collection_ids))
        self.validate()

    def validate(self) -> None:
        for name, profile in self.collections.items():
            if name != profile.name:
                raise ConfigurationError(f"Collection key '{name}' does not match '{profile.name}'")
            if profile.optimizer is not None and profile.optimizer not in OPTIMIZER_PRESETS:
                raise ConfigurationError(
                    f"Unknown optimizer preset '{profile.optimizer}' for collection '{name}'"
                )
            if profile.index is not None and profile.index not in INDEX_PRESETS:
                raise ConfigurationError(
                    f"Unknown index preset '{profile.index}' for collection '{name}'"
                )
            for payload_field in profile.fields:
                if payload_field.type not in FIELD_TYPES:
                    raise ConfigurationError(
                        f"Unknown field type '{payload_field.type}' on '{name}.{payload_field.name}'"
                    )
            if profile.tenant_field and profile.tenant_field not in profile.field_names:
                raise ConfigurationError(
                    f"Tenant field '{profile.tenant_field}' is not declared on collection '{name}'"
                )
        for system_id, system in self.system_collections.items():
            if system_id != system.id:
                raise ConfigurationError(f"System collection key '{system_id}' does not match '{system.id}'")
            if system.collection not in self.collections:
                raise ConfigurationError(
                    f"System collection '{system_id}' references unknown collection '{system.collection}'"
                )
            if system_id in self.collections:
                raise ConfigurationError(f"System collection id '{system_id}' shadows a collection name")
        for ref in self.default_collection_ids:
            if not self.is_known(ref):
                raise ConfigurationError(f"Default collection id '{ref}' is not registered")

    def is_known(self, ref: str) -> bool:
        if ref in self.system_collections:
            return True
        return ref in self.collections and ref not in self.system_collection_names()

    def is_system_collection(self, ref: str) -> bool:
        return ref in self.system_collections

    def system_collection_names(self) -> frozenset[str]:
        return frozenset(s.collection for s in self.system_collections.values())

    def profile(self, name: str) -> CollectionProfile:
        try:
            return self.collections[name]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown collection '{name}'") from exc

    def _plain_profile(self, ref: str) -> CollectionProfile:
        # Collections backing a system collection are reachable only through its id.
        if ref in self.system_collection_names():
            raise ConfigurationError(
                f"Collection '{ref}' is only reachable through its system collection"
            )
        return self.profile(ref)

    def resolve(self, ref: str) -> CollectionTarget:
        system = self.system_collections.get(ref)
        if system is not None:
            return CollectionTarget(
                ref=ref,
                collection=system.collection,
                owner_mode="system",
                min_quality=system.min_quality,
                recall_limit=system.recall_limit,
                system=system,
            )
        profile = self._plain_profile(ref)
        return CollectionTarget(
            ref=ref,
            collection=profile.name,
            owner_mode="tenant" if profile.tenant_field else "shared",
            min_quality=self.default_min_quality,
            recall_limit=self.default_recall_limit,
            tenant_field=profile.tenant_field,
        )

    def filterable_fields(self, ref: str) -> tuple[str, ...]:
        """Fields a caller may filter on for one collection reference.

        Tenant fields are never caller-filterable; tenant isolation is applied
        by the vector gatherer.
        """
        system = self.system_collections.get(ref)
        if system is not None:
            return system.filterable_fields
        profile = self._plain_profile(ref)
        return tuple(f.name for f in profile.fields if f.name != profile.tenant_field)

    def index_configs(self, vector_size: int) -> dict[str, dict[str, Any]]:
        return {
            name: get_collection_config(vector_size, profile)
            for name, profile in self.collections.items()
        }


_STANDARD_SYSTEM_FIELDS: tuple[PayloadField, ...] = (
    PayloadField("source_url"),
    PayloadField("primary_category"),
    PayloadField("content_type"),
    PayloadField("subcategories"),
    PayloadField("country"),
    PayloadField("published_at"),
    PayloadField("indexed_at"),
    PayloadField("chunk_text", "text"),
)

DEFAULT_COLLECTIONS: tuple[CollectionProfile, ...] = (
    CollectionProfile(
        "documents",
        optimizer="large",
        index="standard",
        fields=(
            PayloadField("user_id", "tenant-keyword"),
            PayloadField("title"),
            PayloadField("filename"),
            PayloadField("document_type"),
            PayloadField("chunk_text", "text"),
        ),
        tenant_field="user_id",
    ),
    CollectionProfile(
        "user_knowledge",
        optimizer="small",
        fields=(
            PayloadField("user_id", "tenant-keyword"),
            PayloadField("title"),
            PayloadField("chunk_text", "text"),
        ),
        tenant_field="user_id",
    ),
    CollectionProfile(
        "grundsatz_documents",
        optimizer="medium",
        index="standard",
        fields=(
            PayloadField("source_url"),
            PayloadField("primary_category"),
            PayloadField("indexed_at"),
            PayloadField("chunk_text", "text"),
        ),
    ),
    CollectionProfile("bundestag_content", optimizer="large", index="standard", fields=_STANDARD_SYSTEM_FIELDS),
    CollectionProfile("gruene_de_documents", optimizer="large", index="standard", fields=_STANDARD_SYSTEM_FIELDS),
    CollectionProfile("kommunalwiki_documents", optimizer="medium", index="standard", fields=_STANDARD_SYSTEM_FIELDS),
    CollectionProfile(
        "boell_stiftung_documents",
        optimizer="large",
        index="standard",
        fields=_STANDARD_SYSTEM_FIELDS + (PayloadField("region"),),
    ),
    CollectionProfile(
        "landesverbaende_documents",
        optimizer="medium",
        index="standard",
        fields=_STANDARD_SYSTEM_FIELDS + (PayloadField("landesverband"),),
    ),
    CollectionProfile(
        "social_media_examples",
        optimizer="large",
        index="enhanced",
        fields=(PayloadField("platform"), PayloadField("country"), PayloadField("chunk_text", "text")),
    ),
)

DEFAULT_SYSTEM_COLLECTIONS: tuple[SystemCollectionProfile, ...] = (
    SystemCollectionProfile(
        id="grundsatz-system",
        collection="grundsatz_documents",
        name="Grüne Grundsatzprogramme",
        description="Grundsatzprogramm 2020, EU-Wahlprogramm 2024, Regierungsprogramm 2025",
        filterable_fields=("primary_category",),
    ),
    SystemCollectionProfile(
        id="bundestagsfraktion-system",
        collection="bundestag_content",
        name="Grüne Bundestagsfraktion",
        description="Fachtexte, Ziele und Positionen von gruene-bundestag.de",
        filterable_fields=("primary_category", "country"),
    ),
    SystemCollectionProfile(
        id="gruene-de-system",
        collection="gruene_de_documents",
        name="Grüne Deutschland (gruene.de)",
        description="Inhalte von gruene.de – Positionen, Themen und Aktuelles",
        filterable_fields=("primary_category", "country"),
    ),
    SystemCollectionProfile(
        id="kommunalwiki-system",
        collection="kommunalwiki_documents",
        name="KommunalWiki",
        description="Fachwissen zur Kommunalpolitik (Heinrich-Böll-Stiftung)",
        filterable_fields=("content_type", "primary_category", "subcategories"),
    ),
    SystemCollectionProfile(
        id="boell-stiftung-system",
        collection="boell_stiftung_documents",
        name="Heinrich-Böll-Stiftung",
        description="Analysen, Dossiers und Atlanten der Heinrich-Böll-Stiftung",
        filterable_fields=("content_type", "primary_category", "subcategories", "region"),
    ),
    SystemCollectionProfile(
        id="hamburg-system",
        collection="landesverbaende_documents",
        name="Grüne Hamburg",
        description="Beschlüsse und Pressemitteilungen der Grünen Hamburg",
        filterable_fields=("content_type", "primary_category"),
        default_filter=DefaultFilter("landesverband", "HH"),
    ),
)

DEFAULT_MULTI_COLLECTION_IDS: tuple[str, ...] = (
    "grundsatz-system",
    "bundestagsfraktion-system",
    "gruene-de-system",
)


def _profile_from_dict(raw: dict[str, Any]) -> CollectionProfile:
    try:
        fields = tuple(
            PayloadField(str(item["name"]), item.get("type", "keyword"))
            for item in raw.get("fields", [])
        )
        return CollectionProfile(
            name=str(raw["name"]),
            optimizer=raw.get("optimizer"),
            index=raw.get("index"),
            fields=fields,
            tenant_field=raw.get("tenant_field"),
        )
    except (KeyError, TypeError, AttributeError) as exc:
        raise ConfigurationError(f"Invalid collection profile: {raw!r}") from exc


def _system_from_dict(raw: dict[str, Any]) -> SystemCollectionProfile:
    try:
        default_filter = None
        if raw.get("default_filter"):
            value = raw["default_filter"]["value"]
            default_filter = DefaultFilter(
                str(raw["default_filter"]["field"]),
                tuple(value) if isinstance(value, list) else str(value),
            )
        return SystemCollectionProfile(
            id=str(raw["id"]),
            collection=str(raw["collection"]),
            name=str(raw.get("name") or raw["id"]),
            description=str(raw.get("description", "")),
            min_quality=float(raw.get("min_quality", 0.3)),
            recall_limit=int(raw.get("recall_limit", 60)),
            filterable_fields=tuple(raw.get("filterable_fields", [])),
            default_filter=default_filter,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid system collection: {raw!r}") from exc


def load_registry(
    path: str | None = None,
    *,
    default_collection_ids: list[str] | None = None,
    default_min_quality: float | None = None,
    default_recall_limit: int | None = None,
) -> CollectionRegistry:
    """Build the registry from the built-in defaults or a JSON override file."""
    collections: dict[str, CollectionProfile] = {c.name: c for c in DEFAULT_COLLECTIONS}
    systems: dict[str, SystemCollectionProfile] = {s.id: s for s in DEFAULT_SYSTEM_COLLECTIONS}
    default_ids: tuple[str, ...] = DEFAULT_MULTI_COLLECTION_IDS

    if path:
        config_path = Path(path)
        try:
            payload = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot read collection config '{path}': {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigurationError("Collection config must be a JSON object.")
        if "collections" in payload:
            collections = {p.name: p for p in map(_profile_from_dict, payload["collections"])}
        if "system_collections" in payload:
            systems = {s.id: s for s in map(_system_from_dict, payload["system_collections"])}
        if "default_collection_ids" in payload:
            default_ids = tuple(payload["default_collection_ids"])
        logger.info(f"Loaded collection registry override from {config_path}")

    if default_collection_ids:
        default_ids = tuple(default_collection_ids)

    return CollectionRegistry(
        collections=collections,
        system_collections=systems,
        default_collection_ids=default_ids,
        default_min_quality=(
            settings.vector_default_min_score if default_min_quality is None else default_min_quality
        ),
        default_recall_limit=(
            settings.vector_default_recall_limit if default_recall_limit is None else default_recall_limit
        ),
    )


_registry: CollectionRegistry | None = None


def get_registry() -> CollectionRegistry:
    """Get or build the process-wide registry value."""
    global _registry
    if _registry is None:
        _registry = load_registry(
            settings.collections_config_path or None,
            default_collection_ids=list(settings.default_collection_ids) or None,
        )
    return _registry
