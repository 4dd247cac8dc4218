#!/usr/bin/env python
# Copyright (C) 2020 Emanuel Goncalves

import gc
import os
import dataclasses
import pandas as pd
from contextlib import contextmanager
from dataclasses import dataclass, field
from m6a_depmap import LOG, UNKNOWN, GENE_ALIASES
from m6a_depmap.OmicsPlot import OmicsPlot
from m6a_depmap.GeneAnnotation import genomic_order
from m6a_depmap.DataImport import DataImport, TableNotAvailableError, read_methylation
from m6a_depmap.OmicsTables import (
    annotate,
    pivot,
    contingency,
    side_table,
    correlation_table,
    filter_observations,
    lineage_predicate,
    paired_observations,
    substring_predicate,
)


METHYLATION = "methylation"

PLOTS = ("heatmap", "strip", "violin", "correlation", "balloon")


@dataclass(frozen=True)
class OmicsSection:
    """
    One report section: which table to load, which value to show and how.
    """

    name: str
    table_id: str
    value_col: str
    plot: str
    title: str = None
    caption: str = ""
    gene_col: str = "gene_name"
    sample_col: str = "depmap_id"
    row_key: str = None
    hue: str = None
    col_annotations: tuple = ("lineage_molecular_subtype", "primary_or_metastasis")
    reference: float = None
    genomic_order: bool = False
    y_table_id: str = None
    y_value_col: str = None
    row_var: str = None
    col_var: str = None
    row_domain: tuple = None
    col_domain: tuple = None
    cmap: str = "RdYlBu_r"
    center: float = None

    def __post_init__(self):
        if self.plot not in PLOTS:
            raise ValueError(f"Unknown plot '{self.plot}', expected one of {PLOTS}")

        if self.plot == "correlation" and (self.y_table_id is None or self.y_value_col is None):
            raise ValueError(f"Section '{self.name}': correlation needs y_table_id and y_value_col")

        if self.plot == "balloon" and (self.row_var is None or self.col_var is None):
            raise ValueError(f"Section '{self.name}': balloon needs row_var and col_var")

    def replace(self, **kwargs):
        return dataclasses.replace(self, **kwargs)


@dataclass
class ReportContext:
    data: DataImport
    samplesheet: pd.DataFrame
    genes: dict
    plots_dir: str
    lineage: str = "breast"
    lineage_field: str = "lineage"
    methylation_file: str = None
    annotation: dict = None
    gene_aliases: dict = field(default_factory=lambda: dict(GENE_ALIASES))

    def predicate(self, sample_col):
        if sample_col == self.samplesheet.index.name:
            return lineage_predicate(self.samplesheet, self.lineage, field=self.lineage_field)

        # CCLE names carry the lineage as suffix, e.g. MCF7_BREAST
        return substring_predicate(f"_{self.lineage.upper()}")

    def sample_meta(self, sample_col, fields):
        ss = self.samplesheet

        if sample_col != ss.index.name:
            ss = ss.reset_index().dropna(subset=[sample_col]).drop_duplicates(subset=[sample_col])
            ss = ss.set_index(sample_col)

        return ss.reindex(columns=list(fields))

    def gene_meta(self):
        return pd.Series(self.genes, name="functional_category").rename_axis("gene_name").to_frame()


@dataclass(frozen=True)
class SectionResult:
    name: str
    n_rows: int
    n_genes: int
    n_samples: int
    path: str = None


@contextmanager
def acquire(context, table_id):
    """
    Load a table for the duration of one section.
    """
    if table_id == METHYLATION:
        if context.methylation_file is None or not os.path.exists(context.methylation_file):
            raise TableNotAvailableError(table_id, f"{context.methylation_file} not found")

        table = read_methylation(context.methylation_file)

        try:
            yield table

        finally:
            del table
            gc.collect()

    else:
        with context.data.open_table(table_id) as table:
            yield table


def select(context, section, table_id, value_col):
    """
    Load, resolve aliases and filter one table.

    :return: (filtered table, mean of value_col over the whole table)
    """
    with acquire(context, table_id) as raw:
        if value_col not in raw:
            raise KeyError(f"{table_id}: column '{value_col}' not found")

        population_mean = pd.to_numeric(raw[value_col], errors="coerce").mean()

        predicate = context.predicate(section.sample_col)
        cols = dict(gene_col=section.gene_col, sample_col=section.sample_col)

        # legacy symbols kept in the slice, aliases resolved on it only
        table = filter_observations(raw, set(context.genes) | set(context.gene_aliases), predicate, **cols)
        table = DataImport.resolve_aliases(table, context.gene_aliases, section.gene_col)
        table = filter_observations(table, context.genes, predicate, **cols)

    LOG.info(f"{section.name} | {table_id}: {table.shape}")

    return table, population_mean


def heatmap_section(context, section, table):
    row_key = section.row_key or section.gene_col

    if section.genomic_order and row_key == section.gene_col:
        rows = genomic_order(list(context.genes), context.annotation or {})
        table = table[table[row_key].isin(rows)]

    elif row_key == section.gene_col:
        rows = list(context.genes)

    else:
        rows = None

    matrix = pivot(table, row_key, section.sample_col, section.value_col, rows=rows)

    if row_key == section.gene_col:
        row_meta = context.gene_meta()

    else:
        # e.g. methylation sites, annotated with the category of their gene
        row_genes = table.drop_duplicates(subset=[row_key]).set_index(row_key)[section.gene_col]
        row_meta = context.gene_meta().reindex(row_genes.reindex(matrix.index).values)
        row_meta.index = matrix.index

    annotated = annotate(
        matrix,
        row_meta=row_meta,
        col_meta=context.sample_meta(section.sample_col, section.col_annotations),
    )

    return OmicsPlot.clustered_heatmap(
        annotated,
        row_cluster=not section.genomic_order,
        cmap=section.cmap,
        center=section.center,
        title=section.title,
    )


def with_sample_field(context, section, table, fields):
    meta = side_table(context.sample_meta(section.sample_col, fields), table[section.sample_col])
    return table.assign(**{f: meta[f].values for f in fields})


def run_section(section, context):
    """
    Load -> filter -> reshape -> annotate -> plot -> release, for one section.

    :return: SectionResult
    """
    LOG.info(f"Section: {section.name}")

    table, population_mean = select(context, section, section.table_id, section.value_col)

    fig = None

    if section.plot == "heatmap":
        fig = heatmap_section(context, section, table)

    elif section.plot == "strip":
        if section.hue is not None:
            table = with_sample_field(context, section, table, [section.hue])

        fig = OmicsPlot.ranked_strip(
            table,
            x=section.gene_col,
            y=section.value_col,
            hue=section.hue,
            population_mean=population_mean,
            title=section.title,
        )

    elif section.plot == "violin":
        fig = OmicsPlot.violin_box(
            table, x=section.gene_col, y=section.value_col, reference=section.reference, title=section.title
        )

    elif section.plot == "correlation":
        y_table, _ = select(context, section, section.y_table_id, section.y_value_col)

        pairs = paired_observations(
            table, y_table, section.value_col, section.y_value_col, section.gene_col, section.sample_col
        )
        stats = correlation_table(pairs, section.gene_col, section.sample_col)
        stats.to_csv(os.path.join(context.plots_dir, f"{section.name}.csv"))

        fig = OmicsPlot.correlation_facets(
            pairs,
            stats,
            gene_col=section.gene_col,
            x_label=section.value_col.replace("_", " "),
            y_label=section.y_value_col.replace("_", " "),
            title=section.title,
        )

    elif section.plot == "balloon":
        fields = [v for v in (section.row_var, section.col_var) if v not in table]
        if fields:
            table = with_sample_field(context, section, table, fields)

        row_domain = section.row_domain
        if row_domain is None and section.row_var == section.gene_col:
            row_domain = list(context.genes)

        counts = contingency(
            table, section.row_var, section.col_var, row_domain=row_domain, col_domain=section.col_domain
        )
        counts.to_csv(os.path.join(context.plots_dir, f"{section.name}.csv"))

        fig = OmicsPlot.balloon(counts, title=section.title)

    path = None
    if fig is not None:
        path = os.path.join(context.plots_dir, section.name)
        OmicsPlot.savefig(fig, path)

        with open(f"{path}.txt", "w") as f:
            f.write(section.caption)

    return SectionResult(
        name=section.name,
        n_rows=table.shape[0],
        n_genes=table[section.gene_col].nunique(),
        n_samples=table[section.sample_col].nunique(),
        path=path,
    )


def run_report(sections, context):
    """
    Run every section in turn and write a markdown index of the figures.

    :return: list of SectionResult
    """
    os.makedirs(context.plots_dir, exist_ok=True)

    results = [run_section(s, context) for s in sections]

    with open(os.path.join(context.plots_dir, "report.md"), "w") as f:
        for s, r in zip(sections, results):
            f.write(f"## {s.title or s.name}\n\n")

            if r.path is None:
                f.write("No data for this section.\n\n")
            else:
                f.write(f"![{s.name}]({os.path.basename(r.path)}.png)\n\n{s.caption}\n\n")

    return results


DEFAULT_SECTIONS = [
    OmicsSection(
        name="expression_heatmap",
        table_id="TPM",
        value_col="rna_expression",
        plot="heatmap",
        title="m6A regulators expression (log2 TPM+1)",
        caption=(
            "Expression of the m6A regulators across breast cancer cell lines. Readers such as "
            "HNRNPA2B1, HNRNPC and ELAVL1 are highly expressed in every line, whereas the "
            "IGF2BP paralogues are expressed in a restricted subset of lines."
        ),
    ),
    OmicsSection(
        name="dependency_strip",
        table_id="crispr",
        value_col="dependency",
        plot="strip",
        hue="lineage_molecular_subtype",
        title="m6A regulators CRISPR dependency",
        caption=(
            "CRISPR-Cas9 dependency scores per gene, ranked by mean. Dashed line: breast cancer "
            "mean; dotted line: mean over all screened cell lines. METTL3, METTL14 and YTHDF2 "
            "score below the pan-cancer average in most breast lines."
        ),
    ),
    OmicsSection(
        name="copy_number_violin",
        table_id="copy_number",
        value_col="log_copy_number",
        plot="violin",
        reference=1.0,
        title="m6A regulators copy number",
        caption=(
            "Copy number (log2 relative to ploidy, diploid = 1) of the m6A regulators. VIRMA and "
            "YTHDF3 on chromosome 8q are frequently gained in breast cancer cell lines."
        ),
    ),
    OmicsSection(
        name="copy_number_genomic_heatmap",
        table_id="copy_number",
        value_col="log_copy_number",
        plot="heatmap",
        genomic_order=True,
        cmap="RdBu_r",
        center=1.0,
        title="m6A regulators copy number by genomic position",
        caption=(
            "Copy number with genes ordered by chromosomal position. Neighbouring genes gained "
            "together point to arm-level events rather than focal amplifications."
        ),
    ),
    OmicsSection(
        name="expression_dependency_correlation",
        table_id="TPM",
        value_col="rna_expression",
        plot="correlation",
        y_table_id="crispr",
        y_value_col="dependency",
        title="Expression ~ dependency",
        caption=(
            "Gene expression against CRISPR dependency for each regulator, with linear fit and "
            "Spearman's R computed over cell lines with both measurements."
        ),
    ),
    OmicsSection(
        name="methylation_heatmap",
        table_id=METHYLATION,
        value_col="methylation",
        plot="heatmap",
        sample_col="cell_line",
        row_key="site",
        cmap="viridis",
        title="m6A regulators promoter methylation (RRBS)",
        caption=(
            "Promoter methylation of the m6A regulators measured by RRBS. Most promoters are "
            "unmethylated; sites with high methylation are restricted to a few cell lines."
        ),
    ),
    OmicsSection(
        name="mutation_class_balloon",
        table_id="mutation_calls",
        value_col="var_class",
        plot="balloon",
        row_var="gene_name",
        col_var="var_class",
        title="m6A regulators mutations by variant class",
        caption=(
            "Number of mutations per regulator and variant class in breast cancer cell lines. "
            "Mutations are rare and mostly missense."
        ),
    ),
    OmicsSection(
        name="mutation_metastasis_balloon",
        table_id="mutation_calls",
        value_col="var_annotation",
        plot="balloon",
        row_var="var_annotation",
        col_var="primary_or_metastasis",
        col_domain=("Primary", "Metastasis", UNKNOWN),
        title="Variant annotation by tumour origin",
        caption=(
            "Variant annotation of m6A regulator mutations split by primary or metastatic "
            "origin of the cell line; cell lines without origin are shown as unknown."
        ),
    ),
]
