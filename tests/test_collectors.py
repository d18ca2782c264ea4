"""
Tests for reference collectors (coherence_lint/ingestion/collectors.py)
"""
import logging

from coherence_lint.ingestion.collectors import (
    collect_entity_kind_refs,
    collect_generator_id_refs,
    collect_pressure_id_refs,
    collect_relationship_kind_refs,
    collect_status_refs,
    collect_subtype_refs,
    collect_system_id_refs,
    collect_tag_refs,
    describe_sources,
    group_by_value,
    walk_applicability,
)
from coherence_lint.models.references import Reference, ReferenceTarget, SourceType
from coherence_lint.models.world_schemas import Applicability, ApplicabilityRule


def _chain(depth):
    """Applicability tree nested `depth` levels deep: k1 -> k2 -> ..."""
    node = {"kind": f"k{depth}"}
    for level in range(depth - 1, 0, -1):
        node = {"kind": f"k{level}", "rules": [node]}
    return [node]


class TestWalkApplicability:
    def test_preorder_walk(self):
        app = Applicability.model_validate([
            {"type": "and", "rules": [{"kind": "a", "rules": [{"kind": "b"}]}, {"kind": "c"}]},
            {"kind": "d"},
        ])
        assert [r.kind for r in walk_applicability(app.rules)] == [None, "a", "b", "c", "d"]

    def test_depth_bound_truncates_with_warning(self, caplog):
        app = Applicability.model_validate(_chain(5))
        with caplog.at_level(logging.WARNING):
            kinds = [r.kind for r in walk_applicability(app.rules, max_depth=3)]
        assert kinds == ["k1", "k2", "k3"]
        assert "deeper than 3" in caplog.text

    def test_default_bound_handles_deep_trees(self):
        app = Applicability.model_validate(_chain(20))
        assert len(list(walk_applicability(app.rules))) == 20

    def test_shared_node_is_walked_every_time(self):
        shared = ApplicabilityRule(kind="shared")
        parent = ApplicabilityRule(kind="parent", rules=[shared])
        assert [r.kind for r in walk_applicability([shared, parent])] == ["shared", "parent", "shared"]

    def test_cycle_is_cut_with_warning(self, caplog):
        loop = ApplicabilityRule.model_construct(kind="loop", rules=[])
        loop.rules.append(loop)
        with caplog.at_level(logging.WARNING):
            kinds = [r.kind for r in walk_applicability([loop])]
        assert kinds == ["loop"]
        assert "contains itself" in caplog.text


class TestEntityKindRefs:
    def test_generator_sources_in_order(self, build, parts):
        parts["generators"][0]["applicability"] = {"rules": [{"type": "or", "rules": [{"kind": "location"}]}]}
        refs = collect_entity_kind_refs(build().generators, [], [])
        assert [(r.value, r.source) for r in refs] == [
            ("npc", 'generator "g_hero" creation'),
            ("location", 'generator "g_hero" applicability'),
            ("npc", 'generator "g_hero" selection'),
        ]
        assert refs[0].qualifier == "hero"
        assert all(r.source_type == SourceType.GENERATOR for r in refs)

    def test_ratio_numerator_and_denominator(self, build, parts):
        parts["pressures"][0]["growth"]["negativeFeedback"] = [{
            "type": "ratio",
            "numerator": {"type": "entity_count", "kind": "npc", "subtype": "hero"},
            "denominator": {"type": "entity_count", "kind": "location"},
        }]
        refs = collect_entity_kind_refs([], build().pressures, [])
        assert [(r.value, r.qualifier) for r in refs] == [("npc", "hero"), ("location", None)]
        assert {r.source for r in refs} == {'pressure "conflict" negativeFeedback'}

    def test_system_entity_kind_uses_entry_id_fallback(self, build):
        snapshot = build(systems=[{"id": "outer", "config": {"entityKind": "npc"}}])
        (ref,) = collect_entity_kind_refs([], [], snapshot.systems)
        assert ref.source == 'system "outer"'
        assert ref.source_id == "outer"

    def test_disabled_generator_contributes_nothing(self, build, parts):
        parts["generators"][0]["enabled"] = False
        snapshot = build()
        assert collect_entity_kind_refs(snapshot.generators, [], []) == []
        assert collect_relationship_kind_refs(snapshot.generators, [], []) == []
        assert collect_pressure_id_refs(snapshot.generators, []) == []
        assert collect_subtype_refs(snapshot.generators, []) == []
        assert collect_status_refs(snapshot.generators) == []
        assert collect_tag_refs(snapshot.generators, [], []) == []


class TestRelationshipKindRefs:
    def test_generator_and_lineage(self, build, parts):
        parts["generators"][0]["contract"] = {"lineage": {"relationshipKind": "descends_from"}}
        refs = collect_relationship_kind_refs(build().generators, [], [])
        assert [(r.value, r.source) for r in refs] == [
            ("allied_with", 'generator "g_hero"'),
            ("descends_from", 'generator "g_hero" lineage'),
        ]

    def test_factors_including_nested_count_specs(self, build, parts):
        parts["pressures"][0]["growth"]["positiveFeedback"] = [
            {"type": "relationship_count", "relationshipKinds": ["a", "b"]},
            {"type": "ratio", "numerator": {"type": "relationship_count", "relationshipKinds": ["c"]}},
            {"type": "cross_culture_ratio", "relationshipKinds": ["d"]},
        ]
        refs = collect_relationship_kind_refs([], build().pressures, [])
        assert [r.value for r in refs] == ["a", "b", "c", "d"]
        assert {r.source for r in refs} == {'pressure "conflict"'}

    def test_system_fields(self, build):
        snapshot = build(systems=[{
            "config": {
                "id": "plague",
                "contagion": {"relationshipKind": "r1"},
                "vectors": [{"relationshipKind": "r2"}, {"relationshipKind": "r3"}],
                "infectionAction": {"relationshipKind": "r4"},
                "metric": {"sharedRelationshipKind": "r5"},
                "rules": [{"action": {"kind": "r6"}}, {"action": None}],
            }
        }])
        refs = collect_relationship_kind_refs([], [], snapshot.systems)
        assert [r.value for r in refs] == ["r1", "r2", "r3", "r4", "r5", "r6"]
        assert {r.source for r in refs} == {'system "plague"'}


class TestPressureIdRefs:
    def test_all_sources(self, build, parts):
        gen = parts["generators"][0]
        gen["applicability"] = [
            {"type": "and", "rules": [{"type": "pressure_threshold", "pressureId": "p_threshold"}]},
            {"type": "pressure_any_above", "pressureIds": ["p_any1", "p_any2"]},
        ]
        gen["creation"].append({"kind": "npc", "subtype": {"fromPressure": {"p_from": "villain"}}})
        systems = [
            {"systemType": "thresholdTrigger", "config": {
                "id": "trigger",
                "pressureChanges": {"p_changes": -1},
                "conditions": [{"type": "pressure_above", "pressureId": "p_cond"}, {"type": "tag", "pressureId": "ignored"}],
                "actions": [{"type": "modify_pressure", "pressureId": "p_action"}],
            }},
            {"systemType": "tagDiffusion", "config": {"id": "diffusion", "divergencePressure": {"pressureName": "p_div"}}},
        ]
        eras = [{
            "id": "dawn",
            "exitConditions": [{"type": "pressure", "pressureId": "p_exit"}],
            "entryConditions": [{"type": "time", "pressureId": "ignored"}],
            "entryEffects": {"pressureChanges": {"p_entry_fx": 5}},
        }]
        snapshot = build(systems=systems, eras=eras)
        refs = collect_pressure_id_refs(snapshot.generators, snapshot.systems, snapshot.eras)
        assert [r.value for r in refs] == [
            "conflict",
            "p_threshold", "p_any1", "p_any2",
            "p_from",
            "p_changes", "p_cond", "p_action",
            "p_div",
            "p_exit", "p_entry_fx",
        ]
        sources = {r.value: r.source for r in refs}
        assert sources["p_from"] == 'generator "g_hero" creation fromPressure'
        assert sources["p_changes"] == 'system "trigger" pressureChanges'
        assert sources["p_exit"] == 'era "dawn" exitCondition'

    def test_only_modify_pressure_updates_count(self, build, parts):
        parts["generators"][0]["stateUpdates"] = [
            {"type": "set_tag", "pressureId": "nope"},
            {"type": "modify_pressure", "pressureId": "conflict", "delta": -1},
        ]
        refs = collect_pressure_id_refs(build().generators, [])
        assert [r.value for r in refs] == ["conflict"]


class TestEraRefs:
    def test_map_keys_are_references(self, build):
        snapshot = build(eras=[
            {"id": "dawn", "name": "Dawn", "templateWeights": {"g1": 1, "g2": 0}, "systemModifiers": {"s1": 2}},
            {"id": "dusk", "templateWeights": {"g1": 3}},
        ])
        gen_refs = collect_generator_id_refs(snapshot.eras)
        assert [(r.value, r.source) for r in gen_refs] == [
            ("g1", 'era "Dawn"'),
            ("g2", 'era "Dawn"'),
            ("g1", 'era "dusk"'),
        ]
        assert all(r.target == ReferenceTarget.GENERATOR_ID for r in gen_refs)
        assert [r.value for r in collect_system_id_refs(snapshot.eras)] == ["s1"]


class TestSubtypeAndStatusRefs:
    def test_random_directive_members_are_collected(self, build, parts):
        parts["generators"][0]["creation"] = [
            {"kind": "npc", "subtype": {"random": ["hero", "ghost"]}},
            {"kind": "npc", "subtype": {"inherit": True}},
        ]
        refs = collect_subtype_refs(build().generators, [])
        assert [r.key for r in refs] == ["npc:hero", "npc:ghost"]

    def test_factor_subtypes(self, build, parts):
        parts["pressures"][0]["growth"]["positiveFeedback"] = [
            {"type": "entity_count", "kind": "npc", "subtype": "wizard"},
            {"type": "entity_count", "kind": "npc"},
        ]
        refs = collect_subtype_refs([], build().pressures)
        assert [(r.key, r.source) for r in refs] == [("npc:wizard", 'pressure "conflict"')]

    def test_status_refs(self, build):
        refs = collect_status_refs(build().generators)
        assert [r.key for r in refs] == ["npc:alive"]


class TestTagRefs:
    def test_tag_sources(self, build, parts):
        parts["pressures"][0]["growth"]["positiveFeedback"] = [{"type": "tag_count", "tag": "t_single", "tags": ["t_list"]}]
        systems = [
            {"systemType": "thresholdTrigger", "config": {
                "id": "trigger",
                "conditions": [{"type": "has_any_tag", "tags": ["t_any"]}, {"type": "has_tag", "tag": "t_cond"}],
                "actions": [{"type": "add_tag", "tag": "t_action"}],
            }},
            {"systemType": "tagDiffusion", "config": {
                "id": "diffusion", "convergence": {"tags": ["t_conv"]}, "divergence": {"tags": ["t_div"]},
            }},
            # Теги в условиях систем другого типа не читаются
            {"systemType": "other", "config": {"id": "x", "conditions": [{"tag": "t_ignored"}]}},
        ]
        snapshot = build(systems=systems)
        refs = collect_tag_refs(snapshot.generators, snapshot.systems, snapshot.pressures)
        assert [r.value for r in refs] == [
            "brave", "t_any", "t_cond", "t_action", "t_conv", "t_div", "t_single", "t_list",
        ]
        assert refs[1].source == 'system "trigger" has_any_tag'
        assert refs[-1].source == 'pressure "conflict" positiveFeedback'


class TestGrouping:
    def _ref(self, value, source):
        return Reference(
            target=ReferenceTarget.ENTITY_KIND,
            value=value,
            source=source,
            source_type=SourceType.GENERATOR,
        )

    def test_groups_keep_first_appearance_order(self):
        refs = [self._ref("b", "s1"), self._ref("a", "s2"), self._ref("b", "s3")]
        groups = group_by_value(refs)
        assert list(groups) == ["b", "a"]
        assert [r.source for r in groups["b"]] == ["s1", "s3"]

    def test_describe_sources_deduplicates(self):
        refs = [self._ref("a", "s1"), self._ref("a", "s2"), self._ref("a", "s1")]
        assert describe_sources(refs) == "s1, s2"
