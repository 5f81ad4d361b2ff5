"""
Tests for rank classification and row loading.

Tests cover:
    - Fine rank to band mapping and band ordering
    - Row normalization across key spellings
    - Ancestor chain parsing
    - Loading CSV and JSON row files
"""

import json

import pytest

from taxatree.config import TaxatreeConfig
from taxatree.data_io import (
    TaxonRow,
    load_rows,
    normalize_row,
    normalize_rows,
    parse_ancestors,
)
from taxatree.ranks import (
    UNKNOWN_BAND_INDEX,
    band_index,
    band_of,
    color_for_rank,
    glyph_for_rank,
    is_genus_band,
    is_species_band,
    normalize_rank,
)


# ============================================================
# RANKS
# ============================================================

class TestRanks:

    def test_fine_ranks_map_to_bands(self):
        assert band_of("subfamily") == "family"
        assert band_of("infraorder") == "order"
        assert band_of("zoosection") == "order"
        assert band_of("subtribe") == "tribe"
        assert band_of("variety") == "species"
        assert band_of("stateofmatter") == "state"

    def test_band_names_map_to_themselves(self):
        assert band_of("family") == "family"
        assert band_of("Genus ") == "genus"

    def test_unknown_rank_is_its_own_band(self):
        assert band_of("clade") == "clade"
        assert band_index("clade") == UNKNOWN_BAND_INDEX
        assert glyph_for_rank("clade") == "C"
        assert color_for_rank("clade") is None

    def test_band_order(self):
        assert band_index("kingdom") < band_index("phylum") < band_index("class")
        assert band_index("order") < band_index("family") < band_index("tribe")
        assert band_index("tribe") < band_index("genus") < band_index("species")

    def test_band_predicates(self):
        assert is_species_band("subspecies")
        assert is_species_band("complex")
        assert is_genus_band("subgenus")
        assert not is_genus_band("family")

    def test_colors_and_glyphs(self):
        assert color_for_rank("genus") == "#10b981"
        assert color_for_rank("") is None
        assert glyph_for_rank("subfamily") == "F"

    def test_normalize_rank(self):
        assert normalize_rank(None) == ""
        assert normalize_rank("  SPECIES ") == "species"


# ============================================================
# ROW NORMALIZATION
# ============================================================

class TestNormalizeRow:

    def test_camel_case_keys(self):
        row = normalize_row(
            {
                "taxonId": "41944",
                "name": " Felis ",
                "rank": "Genus",
                "parentId": 9681.0,
                "ancestorIds": "{48460,1,9681}",
            }
        )
        assert row == TaxonRow(
            id=41944, name="Felis", rank="genus", parent_id=9681, ancestor_ids=(1, 9681)
        )

    def test_missing_name_gets_placeholder(self):
        row = normalize_row({"id": 7, "rank": "genus"})
        assert row.name == "Taxon 7"
        assert row.parent_id is None
        assert row.ancestor_ids == ()

    def test_row_without_id_is_skipped(self):
        assert normalize_row({"name": "Nameless"}) is None
        assert normalize_rows([{"name": "Nameless"}, None, {"id": 3}]) == [
            TaxonRow(id=3, name="Taxon 3", rank="", parent_id=None, ancestor_ids=())
        ]

    def test_synthetic_root_is_filtered_from_taxon_rows(self):
        row = TaxonRow(id=5, name="", rank="Order", parent_id=None, ancestor_ids=(48460, 1, 2))
        normalized = normalize_row(row)
        assert normalized.ancestor_ids == (1, 2)
        assert normalized.name == "Taxon 5"
        assert normalized.rank == "order"

    def test_custom_synthetic_root(self):
        rows = normalize_rows([{"id": 5, "ancestor_ids": [1, 2, 3]}], TaxatreeConfig(synthetic_root_id=1))
        assert rows[0].ancestor_ids == (2, 3)


class TestParseAncestors:

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("{1,2,3}", [1, 2, 3]),
            ("[1, 2, 3]", [1, 2, 3]),
            ("1,2,3", [1, 2, 3]),
            ("1,x,3", [1, 3]),
            ((4, 5), [4, 5]),
            ("", []),
            (None, []),
            (float("nan"), []),
        ],
    )
    def test_shapes(self, value, expected):
        assert parse_ancestors(value) == expected


# ============================================================
# FILE LOADING
# ============================================================

class TestLoadRows:

    def test_csv(self, tmp_path):
        path = tmp_path / "taxa.csv"
        path.write_text(
            "taxon_id,name,rank,parent_id,ancestor_ids\n"
            '9681,Felidae,family,,"{48460,41573}"\n'
            '41944,Felis,genus,9681,"{48460,41573,9681}"\n',
            encoding="utf-8",
        )
        rows = load_rows(path)
        assert [r.id for r in rows] == [9681, 41944]
        assert rows[0].parent_id is None
        assert rows[1].parent_id == 9681
        assert rows[1].ancestor_ids == (41573, 9681)

    def test_tsv(self, tmp_path):
        path = tmp_path / "taxa.tsv"
        path.write_text("id\tname\trank\n1\tAnimalia\tkingdom\n", encoding="utf-8")
        rows = load_rows(path)
        assert rows == [TaxonRow(id=1, name="Animalia", rank="kingdom", parent_id=None, ancestor_ids=())]

    def test_json_wrapped_rows(self, tmp_path, felidae_rows):
        path = tmp_path / "taxa.json"
        path.write_text(json.dumps({"rows": felidae_rows}), encoding="utf-8")
        rows = load_rows(path)
        assert [r.name for r in rows] == ["Felidae", "Felis", "Felis catus"]
        assert 48460 not in rows[2].ancestor_ids

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_rows(tmp_path / "nope.csv")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "taxa.parquet"
        path.write_bytes(b"")
        with pytest.raises(ValueError):
            load_rows(path)
