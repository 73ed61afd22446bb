"""Brand and model name cleanup."""

import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .constants import BrandConstants

_MODEL_PATTERNS = [re.compile(p) for p in BrandConstants.MODEL_PATTERNS]


def is_unknown_brand(brand: str) -> bool:
    return (brand or "").strip() in ("", BrandConstants.UNKNOWN_BRAND)


def is_concrete_model(model: str) -> bool:
    return (model or "").strip() not in ("", BrandConstants.UNKNOWN_BRAND, BrandConstants.GENERIC_MODEL)


def format_brand(brand: str) -> str:
    """Upper-case purely alphabetic ASCII brands (``catlink`` -> ``CATLINK``)."""
    brand = (brand or "").strip()
    if brand and brand.isascii() and brand.isalpha():
        return brand.upper()
    return brand


def clean_model(model: str) -> str:
    """Keep the first ``/`` segment and map descriptive words to the generic token."""
    first = (model or "").split("/", 1)[0].strip()
    if first in BrandConstants.DESCRIPTIVE_MODELS:
        return BrandConstants.GENERIC_MODEL
    return first


def extract_model_from_content(content: str) -> str:
    """Regex fallback for comments the model returned no model for."""
    for pattern in _MODEL_PATTERNS:
        match = pattern.search(content or "")
        if match:
            return match.group(0).strip()
    return ""


class BrandNormalizer:
    """Maps brand spellings to canonical names.

    The alias table is replaceable: pass any ``{canonical: [aliases]}``
    mapping to suit a different product category.
    """

    def __init__(self, aliases: Optional[Mapping[str, Iterable[str]]] = None):
        table = BrandConstants.DEFAULT_ALIASES if aliases is None else aliases
        self._lookup: Dict[str, str] = {}
        for canonical, names in table.items():
            self._lookup[canonical.strip().lower()] = canonical
            for name in names:
                self._lookup[name.strip().lower()] = canonical

    def canonical(self, brand: str) -> str:
        """Alias-normalize a single brand token; unknown tokens pass through."""
        brand = (brand or "").strip()
        return self._lookup.get(brand.lower(), brand)

    def clean(self, brand: str, known_brands: Sequence[str] = ()) -> str:
        """Resolve a raw model-supplied brand to one display name.

        Segments separated by ``/`` are alias-normalized; the first one that
        matches a known brand wins, otherwise the first segment is used.
        """
        segments = [self.canonical(s) for s in (brand or "").split("/")]
        segments = [s for s in segments if s]
        if not segments:
            return ""

        known = {self.canonical(k).lower(): k.strip() for k in known_brands if k and k.strip()}
        for segment in segments:
            if segment.lower() in known:
                return format_brand(known[segment.lower()])
        return format_brand(segments[0])

    def match_declared(self, text: str, declared: Sequence[str]) -> str:
        """First declared brand (or one of its aliases) mentioned in ``text``."""
        lowered = (text or "").lower()
        for brand in declared:
            names = [brand] + self.aliases_of(brand)
            if any(n and n.lower() in lowered for n in names):
                return brand
        return ""

    def aliases_of(self, brand: str) -> List[str]:
        canonical = self.canonical(brand)
        return sorted(k for k, v in self._lookup.items() if v == canonical and len(k) > 2)

    def same_brand(self, a: str, b: str) -> bool:
        """Loose equality used to fold discovered brands into declared ones."""
        ca, cb = self.canonical(a).lower(), self.canonical(b).lower()
        if not ca or not cb:
            return False
        return ca == cb or ca in cb or cb in ca


default_normalizer = BrandNormalizer()
