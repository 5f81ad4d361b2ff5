"""
Tests for the taxonomy builder.

Tests cover:
    - Display parent resolution (explicit parent, species and genus bands,
      nearest ancestor)
    - Forest shape invariants: single parent, no cycles, every row once
    - Deterministic sibling ordering and idempotent builds
    - Forced base id and dropped ids
    - Outline emission and the depth cap
"""

import logging

import networkx as nx

from taxatree.config import TaxatreeConfig
from taxatree.data_io import TaxonRow
from taxatree.graph import (
    TaxonNode,
    build,
    build_forest,
    fold_name,
    iter_forest,
    resolve_display_parent,
)
from taxatree.labels import decorate
from taxatree.outline import parse_outline


def row(taxon_id, name, rank="", parent_id=None, ancestors=()):
    return TaxonRow(
        id=taxon_id, name=name, rank=rank, parent_id=parent_id, ancestor_ids=tuple(ancestors)
    )


# ============================================================
# PARENT RESOLUTION
# ============================================================

class TestResolveDisplayParent:

    def test_present_parent_wins(self):
        by_id = {1: row(1, "Felidae", "family"), 2: row(2, "Felis", "genus")}
        child = row(3, "Felis catus", "species", parent_id=1, ancestors=[1, 2])
        by_id[3] = child
        assert resolve_display_parent(child, by_id) == 1

    def test_species_prefers_genus_over_nearer_rank(self):
        by_id = {
            1: row(1, "Felidae", "family"),
            2: row(2, "Felis", "genus"),
            3: row(3, "Felini", "tribe"),
        }
        species = row(4, "Felis catus", "species", ancestors=[1, 2, 3])
        by_id[4] = species
        assert resolve_display_parent(species, by_id) == 2

    def test_species_prefers_species_band_ancestor(self):
        by_id = {
            2: row(2, "Felis", "genus"),
            5: row(5, "Felis silvestris complex", "complex"),
        }
        sub = row(6, "Felis silvestris lybica", "subspecies", ancestors=[2, 5])
        by_id[6] = sub
        assert resolve_display_parent(sub, by_id) == 5

    def test_nearest_present_ancestor(self):
        by_id = {1: row(1, "Carnivora", "order"), 2: row(2, "Feliformia", "suborder")}
        family = row(3, "Felidae", "family", parent_id=999, ancestors=[1, 2, 998])
        by_id[3] = family
        assert resolve_display_parent(family, by_id) == 2

    def test_missing_chain_is_root(self):
        lonely = row(7, "Lonely", "genus", parent_id=123, ancestors=[456])
        assert resolve_display_parent(lonely, {7: lonely}) is None

    def test_self_parent_is_ignored(self):
        by_id = {1: row(1, "Felidae", "family")}
        odd = row(2, "Felis", "genus", parent_id=2, ancestors=[1, 2])
        by_id[2] = odd
        assert resolve_display_parent(odd, by_id) == 1


# ============================================================
# FOREST BUILDING
# ============================================================

class TestBuildForest:

    def test_felidae_scenario(self, felidae_rows, felidae_outline):
        assert build(felidae_rows) == felidae_outline

    def test_roots_and_parents(self, felidae_rows):
        result = build_forest(felidae_rows)
        assert result.roots == [9681]
        assert result.parent_of(41944) == 9681
        assert result.parent_of(118552) == 41944
        assert result.parent_of(9681) is None
        assert result.dropped_ids == []

    def test_every_row_once_with_one_parent(self):
        rows = [
            row(1, "Carnivora", "order"),
            row(2, "Felidae", "family", parent_id=1, ancestors=[1]),
            row(3, "Canidae", "family", ancestors=[1]),
            row(4, "Felis", "genus", ancestors=[1, 2]),
            row(5, "Canis", "genus", parent_id=3, ancestors=[1, 3]),
            row(6, "Felis catus", "species", ancestors=[1, 2, 4]),
            row(7, "Canis lupus", "species", ancestors=[1, 3, 5]),
        ]
        result = build_forest(rows)
        seen = [node.id for node in iter_forest(result.forest)]
        assert sorted(seen) == [1, 2, 3, 4, 5, 6, 7]
        assert nx.is_directed_acyclic_graph(result.graph)
        assert all(result.graph.in_degree(n) <= 1 for n in result.graph.nodes)

    def test_build_is_idempotent_and_order_independent(self, felidae_rows):
        first = build(felidae_rows)
        assert build(felidae_rows) == first
        assert build(list(reversed(felidae_rows))) == first

    def test_sibling_order_is_band_then_name(self):
        rows = [
            row(1, "Felidae", "family"),
            row(2, "Panthera", "genus", parent_id=1),
            row(3, "acinonyx", "genus", parent_id=1),
            row(4, "Pantherinae", "subfamily", parent_id=1),
            row(5, "Zeta clade", "clade", parent_id=1),
        ]
        result = build_forest(rows)
        names = [child.name for child in result.forest[0].children]
        assert names == ["Pantherinae", "acinonyx", "Panthera", "Zeta clade"]

    def test_accents_fold_for_ordering(self):
        assert fold_name("Ébène") == fold_name("ebene")

    def test_duplicate_ids_last_row_wins(self):
        rows = [row(1, "Old name", "family"), row(1, "Felidae", "family")]
        assert build(rows) == "- Felidae {rank:family}"

    def test_cycle_is_refused(self, caplog):
        rows = [row(1, "A", "genus", parent_id=2), row(2, "B", "genus", parent_id=1)]
        with caplog.at_level(logging.WARNING, logger="taxatree.graph"):
            result = build_forest(rows)
        assert nx.is_directed_acyclic_graph(result.graph)
        assert sorted(n.id for n in iter_forest(result.forest)) == [1, 2]
        assert "close a cycle" in caplog.text

    def test_base_id_forces_root_and_reports_dropped(self, felidae_rows, caplog):
        with caplog.at_level(logging.INFO, logger="taxatree.graph"):
            result = build_forest(felidae_rows, base_id=41944)
        assert result.roots == [41944]
        assert result.dropped_ids == [9681]
        assert result.outline == "- Felis {rank:genus}\n  - Felis catus {rank:species}"
        assert "unreachable" in caplog.text

    def test_unknown_base_id_falls_back_to_all_roots(self, felidae_rows):
        result = build_forest(felidae_rows, base_id=424242)
        assert result.roots == [9681]
        assert result.dropped_ids == []

    def test_empty_input(self):
        result = build_forest(None)
        assert result.forest == []
        assert result.outline == ""


# ============================================================
# OUTLINE EMISSION
# ============================================================

class TestOutlineEmission:

    def test_unknown_rank_writes_empty_token(self):
        assert build([row(1, "Mystery")]) == "- Mystery {rank:}"

    def test_rankless_name_keeps_trailing_capital(self):
        outline = build([row(1, "Clade F")])
        assert outline == "- Clade F {rank:}"
        node = parse_outline(outline)[0]
        assert node.name == "Clade F"
        assert node.rank == ""
        assert decorate(outline) == "- Clade F"

    def test_names_are_single_spaced(self):
        assert build([row(1, "Felis   catus", "species")]) == "- Felis catus {rank:species}"

    def test_depth_cap(self):
        rows = [row(1, "n1")] + [row(i, f"n{i}", parent_id=i - 1) for i in range(2, 41)]
        outline = build(rows, cfg=TaxatreeConfig(max_outline_depth=32))
        lines = outline.split("\n")
        assert len(lines) == 40
        assert lines[32] == "  " * 32 + "- n33 {rank:}"
        assert lines[-1] == "  " * 32 + "- n40 {rank:}"

    def test_taxon_node_band_follows_rank(self):
        assert TaxonNode(id=None, name="Felis", rank="subgenus").band == "genus"
