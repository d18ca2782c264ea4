"""
Shared snapshot fixtures.

`parts` is a minimal world config on which every rule is silent; tests mutate it
and call `build()` to get a fresh ConfigSnapshot.
"""
import copy

import pytest

from coherence_lint.ingestion.loader import snapshot_from_parts


CLEAN_PARTS = {
    "schema": {
        "entityKinds": [
            {
                "kind": "npc",
                "subtypes": [{"id": "hero"}, {"id": "villain"}],
                "statuses": [{"id": "alive"}, {"id": "dead"}],
                "semanticPlane": {"regions": [{"id": "north", "culture": "elves"}]},
            },
            {"kind": "location", "subtypes": ["city"], "statuses": ["active"]},
        ],
        "relationshipKinds": [{"kind": "allied_with"}, {"kind": "located_at"}],
        "cultures": [{"id": "elves", "name": "Elves"}],
        "tagRegistry": [
            {"tag": "brave", "category": "trait", "conflictingTags": ["cowardly"]},
            {"tag": "cowardly", "category": "trait"},
        ],
    },
    "pressures": [
        {"id": "conflict", "name": "Conflict", "initialValue": 10, "decay": 1, "growth": {"baseGrowth": 1}},
    ],
    "generators": [
        {
            "id": "g_hero",
            "name": "Hero Spawner",
            "selection": {"strategy": "by_kind", "kind": "npc"},
            "creation": [
                {
                    "kind": "npc",
                    "subtype": "hero",
                    "status": "alive",
                    "lineage": {"relationshipKind": "allied_with"},
                    "tags": {"brave": True},
                }
            ],
            "relationships": [{"kind": "allied_with"}],
            "stateUpdates": [{"type": "modify_pressure", "pressureId": "conflict", "delta": 1}],
        }
    ],
    "systems": [
        {"systemType": "connectionEvolution", "config": {"id": "war", "name": "War", "pressureChanges": {"conflict": 2}}},
    ],
    "eras": [
        {"id": "dawn", "name": "Dawn", "templateWeights": {"g_hero": 1}, "systemModifiers": {"war": 1}},
    ],
}


def make_generator(gen_id, **fields):
    """Well-formed generator creating a plain npc; fields override anything."""
    gen = {
        "id": gen_id,
        "selection": {"strategy": "by_kind", "kind": "npc"},
        "creation": [{"kind": "npc", "lineage": {"relationshipKind": "allied_with"}}],
        "relationships": [],
        "stateUpdates": [],
    }
    gen.update(fields)
    return gen


@pytest.fixture
def parts():
    return copy.deepcopy(CLEAN_PARTS)


@pytest.fixture
def build(parts):
    def _build(**overrides):
        return snapshot_from_parts(**{**parts, **overrides})
    return _build


@pytest.fixture
def generator_factory():
    return make_generator
