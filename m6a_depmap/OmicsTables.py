#!/usr/bin/env python
# Copyright (C) 2020 Emanuel Goncalves

import numpy as np
import pandas as pd
import statsmodels.api as sm
from dataclasses import dataclass
from scipy.stats import spearmanr, pearsonr
from statsmodels.stats.multitest import multipletests
from m6a_depmap import LOG, UNKNOWN


class AggregationRequiredError(ValueError):
    """Raised when a pivot would need to collapse duplicated (row, column) keys"""


@dataclass(frozen=True)
class AnnotatedMatrix:
    matrix: pd.DataFrame
    row_annotations: pd.DataFrame = None
    col_annotations: pd.DataFrame = None


# Sample selection
#

def lineage_predicate(samplesheet, lineage, field="lineage", exact=True, id_col=None):
    """
    Select samples whose samplesheet field equals (or contains) lineage.

    :param samplesheet: DataFrame indexed by sample id
    :param id_col: match ids from this column instead of the index (e.g. CCLE names)
    :return: callable, sample id Series -> boolean mask
    """
    values = samplesheet[field]

    if exact:
        selected = values.eq(lineage)
    else:
        selected = values.fillna("").astype(str).str.contains(lineage, regex=False)

    ids = set(samplesheet.index[selected] if id_col is None else samplesheet.loc[selected, id_col].dropna())

    LOG.info(f"Samples with {field}={lineage}: {len(ids)}")

    return lambda samples: samples.isin(ids)


def substring_predicate(pattern):
    return lambda samples: samples.fillna("").astype(str).str.contains(pattern, regex=False)


def filter_observations(table, genes, sample_predicate=None, gene_col="gene_name", sample_col="depmap_id"):
    """
    Restrict an observation table to a gene set and to selected samples.

    Gene symbols are matched exactly; rows without a sample id are always
    dropped. Row order is preserved.

    :return: DataFrame
    """
    mask = table[gene_col].isin(list(genes)) & table[sample_col].notna()

    if sample_predicate is not None:
        mask = mask & np.asarray(sample_predicate(table[sample_col]), dtype=bool)

    return table.loc[mask]


# Reshape
#

def pivot(table, row_key, col_key, value_col, rows=None, cols=None):
    """
    Long to wide. Missing (row, col) combinations are NaN.

    Duplicated (row, col) pairs are not aggregated: AggregationRequiredError
    is raised instead. Mutation calls are counted with contingency().

    :param rows: optional row order; keys absent from the table become empty rows
    :param cols: optional column order
    :return: DataFrame rows x cols
    """
    table = table.dropna(subset=[row_key, col_key])

    duplicated = table.duplicated(subset=[row_key, col_key], keep=False)
    if duplicated.any():
        r, c = table.loc[duplicated, [row_key, col_key]].iloc[0]
        raise AggregationRequiredError(
            f"{duplicated.sum()} rows share (row, column) keys, e.g. ({r}, {c}); aggregate before pivoting"
        )

    rows = pd.unique(table[row_key]) if rows is None else list(rows)
    cols = pd.unique(table[col_key]) if cols is None else list(cols)

    matrix = table.pivot(index=row_key, columns=col_key, values=value_col)
    matrix = matrix.reindex(index=rows, columns=cols)

    matrix.index.name = row_key
    matrix.columns.name = col_key

    return matrix


def unpivot(matrix, value_col="value"):
    """
    Wide to long, dropping missing cells.

    :return: DataFrame [matrix.index.name, matrix.columns.name, value_col]
    """
    row_key = matrix.index.name or "row"
    col_key = matrix.columns.name or "column"

    table = (
        matrix.rename_axis(index=row_key, columns=None)
        .reset_index()
        .melt(id_vars=row_key, var_name=col_key, value_name=value_col)
    )

    return table.dropna(subset=[value_col]).reset_index(drop=True)


# Annotation
#

def side_table(meta, keys):
    if isinstance(meta, pd.Series):
        meta = meta.to_frame()

    side = meta.reindex(keys)
    return side.astype(object).where(side.notna(), UNKNOWN)


def annotate(matrix, row_meta=None, col_meta=None):
    """
    Align metadata to the matrix rows and/or columns.

    Keys without metadata, and missing metadata values, become "unknown".
    No row or column of the matrix is ever removed.

    :return: AnnotatedMatrix
    """
    return AnnotatedMatrix(
        matrix=matrix,
        row_annotations=None if row_meta is None else side_table(row_meta, matrix.index),
        col_annotations=None if col_meta is None else side_table(col_meta, matrix.columns),
    )


# Summaries
#

def rank_genes(table, gene_col="gene_name", value_col="value"):
    """
    Genes by descending mean value; ties keep first-appearance order.

    :return: list
    """
    means = table.groupby(gene_col, sort=False)[value_col].mean()
    means = means.reindex(pd.unique(table[gene_col]))
    return list(means.sort_values(ascending=False, kind="mergesort").index)


def domain(values, categories=None):
    if categories is not None:
        return list(categories)

    if isinstance(values.dtype, pd.CategoricalDtype):
        cats = list(values.cat.categories)
    else:
        cats = sorted(values.dropna().astype(str).unique())

    if values.isna().any() and UNKNOWN not in cats:
        cats.append(UNKNOWN)

    return cats


def contingency(table, row_var, col_var, row_domain=None, col_domain=None):
    """
    Cross-tabulation of two categorical columns, zero counts included.

    Missing values are counted as "unknown". The result always spans the
    full row x column domains.

    :return: DataFrame of int, row_domain x col_domain
    """
    rows = [str(r) for r in domain(table[row_var], row_domain)]
    cols = [str(c) for c in domain(table[col_var], col_domain)]

    if table.shape[0] == 0:
        counts = pd.DataFrame(0, index=pd.Index(rows, name=row_var), columns=pd.Index(cols, name=col_var))
        return counts

    def labels(values):
        return values.astype(object).where(values.notna(), UNKNOWN).astype(str)

    counts = (
        pd.DataFrame({row_var: labels(table[row_var]), col_var: labels(table[col_var])})
        .groupby([row_var, col_var])
        .size()
    )

    counts = (
        counts.unstack(fill_value=0)
        .reindex(index=rows, columns=cols, fill_value=0)
        .astype(int)
    )

    counts.index.name = row_var
    counts.columns.name = col_var

    return counts


# Correlations
#

def two_vars_correlation(var1, var2, idx_set=None, method="spearman", min_n=2):
    if idx_set is None:
        idx_set = set(var1.dropna().index).intersection(var2.dropna().index)

    else:
        idx_set = set(var1.reindex(idx_set).dropna().index).intersection(
            var2.reindex(idx_set).dropna().index
        )

    idx_set = sorted(idx_set)

    if len(idx_set) <= min_n:
        return dict(corr=np.nan, pval=np.nan, len=len(idx_set))

    if method == "spearman":
        r, p = spearmanr(var1.reindex(index=idx_set), var2.reindex(index=idx_set))
    else:
        r, p = pearsonr(var1.reindex(index=idx_set), var2.reindex(index=idx_set))

    return dict(corr=r, pval=p, len=len(idx_set))


def paired_observations(x_table, y_table, x_value, y_value, gene_col="gene_name", sample_col="depmap_id"):
    """
    Inner join of two modalities on (gene, sample), complete pairs only.

    :return: DataFrame [gene_col, sample_col, x, y]
    """
    x_df = x_table[[gene_col, sample_col, x_value]].rename(columns={x_value: "x"})
    y_df = y_table[[gene_col, sample_col, y_value]].rename(columns={y_value: "y"})

    pairs = x_df.merge(y_df, on=[gene_col, sample_col], how="inner")

    return pairs.dropna(subset=["x", "y"]).reset_index(drop=True)


def linear_fit(x, y):
    if len(x) < 2 or np.unique(x).shape[0] < 2:
        return dict(beta=np.nan, intercept=np.nan)

    lm = sm.OLS(np.asarray(y, dtype=float), sm.add_constant(np.asarray(x, dtype=float))).fit()
    return dict(beta=lm.params[1], intercept=lm.params[0])


def correlation_table(pairs, gene_col="gene_name", sample_col="depmap_id", method="spearman", min_n=2):
    """
    Per gene rank correlation and linear fit of y ~ x over complete pairs.

    :param pairs: output of paired_observations
    :return: DataFrame indexed by gene [corr, pval, len, beta, intercept, fdr]
    """
    res = {}

    for g, df in pairs.groupby(gene_col, sort=False):
        df = df.dropna(subset=["x", "y"]).set_index(sample_col)

        res[g] = {
            **two_vars_correlation(df["x"], df["y"], method=method, min_n=min_n),
            **linear_fit(df["x"].values, df["y"].values),
        }

    res = pd.DataFrame.from_dict(res, orient="index", columns=["corr", "pval", "len", "beta", "intercept"])
    res.index.name = gene_col

    # BH over genes with a p-value
    tested = res["pval"].dropna()
    res["fdr"] = np.nan
    if len(tested) > 0:
        res.loc[tested.index, "fdr"] = multipletests(tested, method="fdr_bh")[1]

    return res
