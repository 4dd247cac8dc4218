"""Tests for filtering, reshaping, annotation and summaries."""

import pytest
import numpy as np
import pandas as pd

from m6a_depmap import UNKNOWN, GENE_ALIASES, M6A_GENES
from m6a_depmap.DataImport import DataImport
from m6a_depmap.OmicsTables import (
    AggregationRequiredError,
    annotate,
    contingency,
    correlation_table,
    filter_observations,
    lineage_predicate,
    paired_observations,
    pivot,
    rank_genes,
    substring_predicate,
    two_vars_correlation,
    unpivot,
)


class TestFilter:
    def test_filter_correctness(self, crispr, samplesheet):
        predicate = lineage_predicate(samplesheet, "breast")
        res = filter_observations(crispr, M6A_GENES, predicate)

        breast = set(samplesheet.query("lineage == 'breast'").index)

        assert res.shape[0] > 0
        assert res["gene_name"].isin(list(M6A_GENES)).all()
        assert res["depmap_id"].notna().all()
        assert res["depmap_id"].isin(breast).all()

    def test_filter_idempotent(self, crispr, samplesheet):
        predicate = lineage_predicate(samplesheet, "breast")

        once = filter_observations(crispr, M6A_GENES, predicate)
        twice = filter_observations(once, M6A_GENES, predicate)

        pd.testing.assert_frame_equal(once, twice)

    def test_null_sample_dropped_without_predicate(self, crispr):
        res = filter_observations(crispr, {"METTL3"})

        assert res["depmap_id"].notna().all()
        assert res.shape[0] == 6

    def test_preserves_order(self, crispr):
        res = filter_observations(crispr, {"FTO", "METTL3"})
        assert list(res.index) == sorted(res.index)

    def test_exact_case_sensitive(self, crispr):
        assert filter_observations(crispr, {"mettl3", "METTL"}).shape[0] == 0

    def test_empty_result(self, crispr):
        res = filter_observations(crispr, {"METTL3"}, lambda s: s == "ACH-999999")

        assert res.shape[0] == 0
        assert list(res.columns) == list(crispr.columns)

    def test_alias_resolved_before_filter(self, crispr):
        assert filter_observations(crispr, {"VIRMA"}).shape[0] == 0

        resolved = DataImport.resolve_aliases(crispr, GENE_ALIASES)
        assert filter_observations(resolved, {"VIRMA"}).shape[0] == 6

        # input left untouched
        assert "KIAA1429" in set(crispr["gene_name"])

    def test_substring_predicate(self):
        table = pd.DataFrame(
            dict(cell_line=["MCF7_BREAST", "A549_LUNG", np.nan], gene_name=["FTO"] * 3, methylation=[0.1, 0.2, 0.3])
        )

        res = filter_observations(table, {"FTO"}, substring_predicate("_BREAST"), sample_col="cell_line")

        assert list(res["cell_line"]) == ["MCF7_BREAST"]

    def test_lineage_predicate_substring_and_id_col(self, samplesheet):
        predicate = lineage_predicate(samplesheet, "brea", exact=False, id_col="cell_line")
        mask = predicate(pd.Series(["MCF7_BREAST", "A549_LUNG", "ACH-000001"]))

        assert list(mask) == [True, False, False]


class TestPivot:
    def test_missing_cell_is_nan(self):
        table = pd.DataFrame(
            dict(gene_name=["A", "A", "B"], depmap_id=["s1", "s2", "s1"], value=[1.0, 2.0, 3.0])
        )

        matrix = pivot(table, "gene_name", "depmap_id", "value")

        assert matrix.shape == (2, 2)
        assert np.isnan(matrix.loc["B", "s2"])
        assert matrix.loc["A", "s2"] == 2.0
        assert matrix.loc["B", "s1"] == 3.0

    def test_duplicates_raise(self, mutations):
        with pytest.raises(AggregationRequiredError, match="METTL3"):
            pivot(mutations, "gene_name", "depmap_id", "var_class")

    def test_rows_reindex(self):
        table = pd.DataFrame(dict(gene_name=["A"], depmap_id=["s1"], value=[1.0]))

        matrix = pivot(table, "gene_name", "depmap_id", "value", rows=["B", "A"])

        assert list(matrix.index) == ["B", "A"]
        assert matrix.loc["B"].isna().all()

    def test_roundtrip(self, tpm):
        matrix = pivot(tpm, "gene_name", "depmap_id", "rna_expression")
        table = unpivot(matrix, "rna_expression")

        assert list(table.columns) == ["gene_name", "depmap_id", "rna_expression"]

        original = set(map(tuple, tpm[["gene_name", "depmap_id", "rna_expression"]].values))
        assert set(map(tuple, table.values)) == original

    def test_unpivot_drops_missing(self):
        table = pd.DataFrame(
            dict(gene_name=["A", "A", "B"], depmap_id=["s1", "s2", "s1"], value=[1.0, 2.0, 3.0])
        )

        res = unpivot(pivot(table, "gene_name", "depmap_id", "value"), "value")

        assert res.shape[0] == 3


class TestAnnotate:
    def test_unknown_for_missing_sample(self, samplesheet):
        matrix = pd.DataFrame(
            [[1.0, 2.0, 3.0]], index=pd.Index(["METTL3"], name="gene_name"), columns=["ACH-000001", "ACH-000004", "ACH-999999"]
        )

        res = annotate(matrix, col_meta=samplesheet[["primary_or_metastasis", "lineage"]])

        assert list(res.col_annotations.index) == list(matrix.columns)
        assert res.col_annotations.loc["ACH-000001", "primary_or_metastasis"] == "Metastasis"
        assert res.col_annotations.loc["ACH-000004", "primary_or_metastasis"] == UNKNOWN
        assert res.col_annotations.loc["ACH-999999", "primary_or_metastasis"] == UNKNOWN
        assert res.matrix.shape == matrix.shape

    def test_completeness(self, tpm, samplesheet):
        matrix = pivot(tpm, "gene_name", "depmap_id", "rna_expression")
        genes = pd.Series(M6A_GENES, name="functional_category")

        res = annotate(matrix, row_meta=genes, col_meta=samplesheet)

        assert res.row_annotations.notna().all().all()
        assert res.col_annotations.notna().all().all()
        assert res.row_annotations.loc["GAPDH", "functional_category"] == UNKNOWN
        assert res.row_annotations.loc["FTO", "functional_category"] == "erasing"


class TestSummaries:
    def test_rank_genes_ties_keep_input_order(self):
        table = pd.DataFrame(
            dict(gene_name=["A", "A", "B", "B", "C"], value=[1.0, 2.0, 2.0, 1.0, 0.3])
        )

        assert rank_genes(table) == ["A", "B", "C"]

    def test_rank_genes_descending(self):
        table = pd.DataFrame(dict(gene_name=["A", "B", "C"], value=[-1.0, 0.5, 0.0]))
        assert rank_genes(table) == ["B", "C", "A"]

    def test_contingency_includes_zeros(self, mutations):
        counts = contingency(mutations, "gene_name", "var_class")

        assert counts.shape == (3, 3)
        assert counts.loc["YTHDF2", "Silent"] == 0
        assert counts.loc["METTL3", "Missense_Mutation"] == 1
        assert counts.values.sum() == mutations.shape[0]

    def test_contingency_domains(self, mutations):
        genes = list(M6A_GENES)
        counts = contingency(mutations, "gene_name", "var_class", row_domain=genes)

        assert counts.shape == (len(genes), 3)
        assert counts.loc["ALKBH5"].sum() == 0

    def test_contingency_missing_as_unknown(self):
        table = pd.DataFrame(dict(a=["x", "y", np.nan], b=["p", "p", "q"]))

        counts = contingency(table, "a", "b")

        assert list(counts.index) == ["x", "y", UNKNOWN]
        assert counts.loc[UNKNOWN, "q"] == 1

    def test_contingency_categorical_domain(self):
        table = pd.DataFrame(
            dict(
                a=pd.Categorical(["x"], categories=["x", "y", "z"]),
                b=pd.Categorical(["p"], categories=["p", "q"]),
            )
        )

        assert contingency(table, "a", "b").shape == (3, 2)

    def test_contingency_empty(self):
        table = pd.DataFrame(dict(a=pd.Series([], dtype=object), b=pd.Series([], dtype=object)))

        counts = contingency(table, "a", "b", row_domain=["x"], col_domain=["p", "q"])

        assert counts.shape == (1, 2)
        assert counts.values.sum() == 0


class TestCorrelation:
    def test_incomplete_pairs_excluded(self):
        exp = pd.DataFrame(dict(gene_name=["A", "A"], depmap_id=["s1", "s2"], rna_expression=[5.0, np.nan]))
        dep = pd.DataFrame(dict(gene_name=["A", "A"], depmap_id=["s1", "s2"], dependency=[-0.2, -0.5]))

        pairs = paired_observations(exp, dep, "rna_expression", "dependency")

        assert list(pairs["depmap_id"]) == ["s1"]

        stats = correlation_table(pairs)
        assert stats.loc["A", "len"] == 1
        assert np.isnan(stats.loc["A", "corr"])
        assert np.isnan(stats.loc["A", "fdr"])

    def test_inner_join(self, tpm, crispr):
        pairs = paired_observations(tpm[tpm["depmap_id"] != "ACH-000001"], crispr, "rna_expression", "dependency")

        assert "ACH-000001" not in set(pairs["depmap_id"])
        assert pairs[["x", "y"]].notna().all().all()

    def test_correlation_and_fit(self):
        pairs = pd.DataFrame(
            dict(
                gene_name=["A"] * 5,
                depmap_id=[f"s{i}" for i in range(5)],
                x=[1.0, 2.0, 3.0, 4.0, 5.0],
                y=[2.0, 4.0, 6.0, 8.0, 10.0],
            )
        )

        stats = correlation_table(pairs)

        assert stats.loc["A", "corr"] == pytest.approx(1.0)
        assert stats.loc["A", "beta"] == pytest.approx(2.0)
        assert stats.loc["A", "intercept"] == pytest.approx(0.0, abs=1e-9)
        assert stats.loc["A", "len"] == 5
        assert stats.loc["A", "fdr"] == pytest.approx(stats.loc["A", "pval"])

    def test_two_vars_correlation_min_n(self):
        v1 = pd.Series([1.0, 2.0, 3.0], index=["a", "b", "c"])
        v2 = pd.Series([3.0, 2.0, np.nan], index=["a", "b", "c"])

        res = two_vars_correlation(v1, v2)

        assert res["len"] == 2
        assert np.isnan(res["corr"])
