"""Session state for the bulk flow and its snapshot (de)serialisation.

Sets and maps are flattened to sorted lists / array-of-pairs for storage and
rebuilt on load. Anything malformed raises SnapshotError so the caller can
discard it.
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from config import DEFAULT_SELLING_REGION, DEFAULT_TECHNIQUE, FIRST_STEP, LAST_STEP

SNAPSHOT_VERSION = 1


class SnapshotError(ValueError):
    """Stored snapshot cannot be turned back into a SessionState."""


@dataclass(frozen=True)
class PlacementSelection:
    position: str
    width: int
    height: int
    technique: str = DEFAULT_TECHNIQUE
    dpi: Optional[int] = None

    def __post_init__(self):
        if not self.position:
            raise ValueError("Placement position is required")
        for name in ("width", "height"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"Placement {self.position} {name} must be a positive integer, got {value!r}")
        if not self.technique:
            raise ValueError(f"Placement {self.position} needs a technique")

    @classmethod
    def create(
        cls,
        position: str,
        width,
        height,
        technique: Optional[str] = None,
        catalog_default: Optional[str] = None,
        dpi: Optional[int] = None,
    ) -> "PlacementSelection":
        """Build a selection, resolving technique: override -> catalog default -> generic default."""
        return cls(
            position=str(position),
            width=_positive_int(width, "width"),
            height=_positive_int(height, "height"),
            technique=technique or catalog_default or DEFAULT_TECHNIQUE,
            dpi=int(dpi) if dpi else None,
        )

    @property
    def size_label(self) -> str:
        return f"{self.width}x{self.height}"

    def to_dict(self) -> dict:
        d = asdict(self)
        if d["dpi"] is None:
            d.pop("dpi")
        return d


def _positive_int(value, name: str) -> int:
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        raise ValueError(f"Placement {name} must be numeric, got {value!r}")
    if number <= 0:
        raise ValueError(f"Placement {name} must be positive, got {value!r}")
    return number


@dataclass
class ProductContent:
    title: str = ""
    description: str = ""
    tags: List[str] = field(default_factory=list)
    key_features: List[str] = field(default_factory=list)
    materials: List[str] = field(default_factory=list)

    @classmethod
    def from_response(cls, data: dict) -> "ProductContent":
        return cls(
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            tags=[str(t) for t in data.get("tags") or []],
            key_features=[str(k) for k in data.get("key_features") or []],
            materials=[str(m) for m in data.get("materials") or []],
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CatalogProduct:
    """Catalog entry as reported by the fulfillment provider."""
    id: str
    title: str = ""
    brand: str = ""
    default_technique: Optional[str] = None
    variants: List[dict] = field(default_factory=list)
    print_areas: Dict[str, dict] = field(default_factory=dict)

    @property
    def first_variant_id(self):
        for variant in self.variants:
            if variant.get("id") is not None:
                return variant["id"]
        return None

    def print_area(self, position: str) -> Optional[dict]:
        return self.print_areas.get(position)

    def info(self) -> dict:
        return {"id": self.id, "title": self.title, "brand": self.brand}


def image_key(product_id: str, position: str) -> str:
    return f"{product_id}_{position}"


@dataclass
class SessionState:
    current_step: int = FIRST_STEP
    completed_steps: set = field(default_factory=set)
    selected_products: set = field(default_factory=set)
    product_designs: Dict[str, List[PlacementSelection]] = field(default_factory=dict)
    product_content: Dict[str, ProductContent] = field(default_factory=dict)
    generated_images: Dict[str, str] = field(default_factory=dict)
    pending_products: List[dict] = field(default_factory=list)
    created_products: List[dict] = field(default_factory=list)
    store_id: Optional[str] = None
    selling_region: str = DEFAULT_SELLING_REGION

    def to_snapshot(self) -> dict:
        return {
            "version": SNAPSHOT_VERSION,
            "current_step": self.current_step,
            "completed_steps": sorted(self.completed_steps),
            "selected_products": sorted(self.selected_products),
            "product_designs": [
                [pid, [p.to_dict() for p in placements]]
                for pid, placements in self.product_designs.items()
            ],
            "product_content": [
                [pid, content.to_dict()] for pid, content in self.product_content.items()
            ],
            "generated_images": [[key, url] for key, url in self.generated_images.items()],
            "pending_products": list(self.pending_products),
            "created_products": list(self.created_products),
            "store_id": self.store_id,
            "selling_region": self.selling_region,
        }

    @classmethod
    def from_snapshot(cls, data) -> "SessionState":
        if not isinstance(data, dict):
            raise SnapshotError("Snapshot is not an object")
        try:
            step = int(data.get("current_step", FIRST_STEP))
            if not FIRST_STEP <= step <= LAST_STEP:
                raise SnapshotError(f"Step {step} out of range")

            designs = {}
            for pid, placements in _pairs(data.get("product_designs", [])):
                designs[str(pid)] = [PlacementSelection(**p) for p in placements]

            content = {
                str(pid): ProductContent(**value)
                for pid, value in _pairs(data.get("product_content", []))
            }
            images = {str(k): str(v) for k, v in _pairs(data.get("generated_images", []))}

            return cls(
                current_step=step,
                completed_steps={int(s) for s in _list(data.get("completed_steps", []))},
                selected_products={str(p) for p in _list(data.get("selected_products", []))},
                product_designs=designs,
                product_content=content,
                generated_images=images,
                pending_products=list(_list(data.get("pending_products", []))),
                created_products=list(_list(data.get("created_products", []))),
                store_id=data.get("store_id"),
                selling_region=data.get("selling_region") or DEFAULT_SELLING_REGION,
            )
        except SnapshotError:
            raise
        except (TypeError, ValueError, KeyError) as e:
            raise SnapshotError(f"Malformed snapshot: {e}")

    def to_json(self) -> str:
        return json.dumps(self.to_snapshot(), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> "SessionState":
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise SnapshotError(f"Snapshot is not valid JSON: {e}")
        return cls.from_snapshot(data)


def _list(value) -> list:
    if not isinstance(value, list):
        raise SnapshotError(f"Expected a list, got {type(value).__name__}")
    return value


def _pairs(value):
    """Accept array-of-pairs (the stored form) or a plain object."""
    if isinstance(value, dict):
        return list(value.items())
    pairs = []
    for item in _list(value):
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise SnapshotError(f"Expected a [key, value] pair, got {item!r}")
        pairs.append((item[0], item[1]))
    return pairs


# === Stores ===

class MemorySnapshotStore:
    def __init__(self, raw: Optional[str] = None):
        self.raw = raw
        self.saves = 0

    def load(self) -> Optional[str]:
        return self.raw

    def save(self, raw: str):
        self.raw = raw
        self.saves += 1

    def clear(self):
        self.raw = None


class JsonSnapshotStore:
    """One JSON file per session under a directory."""

    def __init__(self, directory: Path, session_id: str = "default"):
        self.directory = Path(directory)
        self.session_id = "".join(c for c in session_id if c.isalnum() or c in "-_") or "default"
        self.directory.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self.directory / f"{self.session_id}.json"

    def load(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def save(self, raw: str):
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(raw, encoding="utf-8")
        tmp.replace(self.path)

    def clear(self):
        if self.path.exists():
            self.path.unlink()
