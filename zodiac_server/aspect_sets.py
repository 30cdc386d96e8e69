"""
Aspect-set registry and the single <-> synastry resolver.

Every single-chart aspect set has a synastry companion whose id is the
square of the single id. When a tab gains a second chart the session
switches to the companion set; when it drops back to one chart it switches
back, but only if the target is actually registered.
"""

import math
from dataclasses import dataclass
from typing import Optional


# ============================================================
# REGISTRY
# ============================================================

@dataclass(frozen=True)
class AspectDef:
    name: str       # label the engine prints, e.g. "Quadrature"
    angle: float
    orb: float


@dataclass(frozen=True)
class AspectSet:
    id: int
    name: str
    synastry: bool
    aspects: tuple


_MAJOR = {
    "Conjunction": 0.0,
    "Sextile": 60.0,
    "Quadrature": 90.0,
    "Trine": 120.0,
    "Opposition": 180.0,
}


def _defs(orbs: dict) -> tuple:
    return tuple(AspectDef(name, _MAJOR[name], orb) for name, orb in orbs.items())


ASPECT_SETS = {
    2: AspectSet(2, "Standard", False, _defs({
        "Conjunction": 8.0, "Sextile": 6.0, "Quadrature": 8.0,
        "Trine": 8.0, "Opposition": 8.0,
    })),
    3: AspectSet(3, "Tense", False, _defs({
        "Conjunction": 8.0, "Quadrature": 8.0, "Opposition": 8.0,
    })),
    5: AspectSet(5, "Harmonious", False, _defs({
        "Conjunction": 8.0, "Sextile": 6.0, "Trine": 8.0,
    })),
    4: AspectSet(4, "Standard (synastry)", True, _defs({
        "Conjunction": 6.0, "Sextile": 4.0, "Quadrature": 6.0,
        "Trine": 6.0, "Opposition": 6.0,
    })),
    9: AspectSet(9, "Tense (synastry)", True, _defs({
        "Conjunction": 6.0, "Quadrature": 6.0, "Opposition": 6.0,
    })),
    7: AspectSet(7, "Conjunctions only", False, _defs({
        "Conjunction": 10.0,
    })),
}


def get_aspect_set(set_id: int) -> AspectSet:
    """Look up a registered aspect set; unknown ids raise KeyError."""
    return ASPECT_SETS[set_id]


def single_set_ids() -> list:
    return sorted(s.id for s in ASPECT_SETS.values() if not s.synastry)


# ============================================================
# RESOLVER
# ============================================================

def to_synastry(set_id: int) -> int:
    return set_id * set_id


def to_single(set_id: int, registry: Optional[dict] = None) -> Optional[int]:
    """
    Map a synastry set id back to the single set it was derived from.

    Returns None when set_id is not the square of a registered single set.
    """
    if registry is None:
        registry = ASPECT_SETS
    if set_id < 0:
        return None
    root = math.isqrt(set_id)
    if root * root != set_id:
        return None
    single = registry.get(root)
    if single is None or single.synastry:
        return None
    return root


def companion_set(current: int, record_count: int,
                  registry: Optional[dict] = None) -> Optional[int]:
    """
    Aspect set to switch to for a tab now holding record_count charts.

    Returns None to mean "leave the selection as it is".
    """
    if registry is None:
        registry = ASPECT_SETS
    if record_count == 2:
        target = to_synastry(current)
        return target if target in registry else None
    if record_count == 1:
        return to_single(current, registry)
    return None
