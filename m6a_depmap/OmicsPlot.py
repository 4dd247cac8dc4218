#!/usr/bin/env python
# Copyright (C) 2020 Emanuel Goncalves

import numpy as np
import pandas as pd
import seaborn as sns
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
from m6a_depmap import LOG, UNKNOWN
from m6a_depmap.OmicsTables import rank_genes


class OmicsPlot:
    # PLOTING PROPS
    PAL_DBGD = {0: "#656565", 1: "#F2C500", 2: "#E1E1E1", 3: "#0570b0"}
    PAL_DTRACE = {0: "#E1E1E1", 1: "#F2C500", 2: "#656565", 3: "#2b8cbe"}

    NA_COLOR = "#f0f0f0"

    MEDIANPROPS = dict(linestyle="-", linewidth=1.0, color="#F2C500")
    FLIERPROPS = dict(
        marker="o",
        markerfacecolor="black",
        markersize=2.0,
        linestyle="none",
        markeredgecolor="none",
        alpha=0.6,
    )

    PAL_M6A = {"writing": "#e41a1c", "erasing": "#377eb8", "reading": "#4daf4a"}

    PAL_METASTATIC = {"Primary": "#2b8cbe", "Metastasis": "#F2C500"}

    PALETTES = dict(
        functional_category=PAL_M6A,
        primary_or_metastasis=PAL_METASTATIC,
    )

    @classmethod
    def category_palette(cls, values, palette=None):
        """
        Colour for every category in values; known categories keep their
        fixed colour, "unknown" is always grey.

        :return: dict
        """
        palette = {} if palette is None else palette

        categories = [v for v in pd.unique(pd.Series(values).dropna().astype(str)) if v != UNKNOWN]
        new = [c for c in categories if c not in palette]

        colors = sns.color_palette("tab10", n_colors=max(len(new), 1)).as_hex()

        pal = {c: palette[c] for c in categories if c in palette}
        pal.update(dict(zip(new, colors * (len(new) // len(colors) + 1))))
        pal[UNKNOWN] = cls.PAL_DBGD[2]

        return pal

    @classmethod
    def annotation_colors(cls, side, palettes=None):
        """
        Map an annotation side table to colours.

        :return: (DataFrame of colours aligned to side, dict field -> palette)
        """
        palettes = cls.PALETTES if palettes is None else palettes

        pals = {c: cls.category_palette(side[c], palettes.get(c)) for c in side}
        colors = pd.DataFrame({c: side[c].astype(str).map(pals[c]) for c in side}, index=side.index)

        return colors, pals

    @staticmethod
    def legend_handles(pals):
        return [
            mpatches.Patch(color=color, label=f"{field}: {cat}")
            for field, pal in pals.items()
            for cat, color in pal.items()
        ]

    @classmethod
    def clustered_heatmap(
        cls,
        annotated,
        metric="euclidean",
        method="average",
        row_cluster=True,
        col_cluster=True,
        cmap="RdYlBu_r",
        center=None,
        title=None,
        palettes=None,
    ):
        """
        Hierarchically clustered heatmap with annotation side colours.

        Missing cells are masked and drawn in NA_COLOR; for the distance
        computation they are filled with the row mean.

        :param annotated: AnnotatedMatrix
        :return: seaborn ClusterGrid, or None when there is nothing to draw
        """
        matrix = annotated.matrix.astype(float)

        if matrix.shape[0] == 0 or matrix.shape[1] == 0 or matrix.count().sum() == 0:
            LOG.warning(f"Empty matrix {matrix.shape}: heatmap skipped")
            return None

        filled = matrix.T.fillna(matrix.mean(1)).T.fillna(0)

        pals = {}
        side_colors = {}
        for axis, side in [("row", annotated.row_annotations), ("col", annotated.col_annotations)]:
            if side is not None and side.shape[1] > 0:
                side_colors[axis], axis_pals = cls.annotation_colors(side, palettes)
                pals.update(axis_pals)

        g = sns.clustermap(
            filled,
            mask=matrix.isna(),
            metric=metric,
            method=method,
            row_cluster=row_cluster and matrix.shape[0] > 1,
            col_cluster=col_cluster and matrix.shape[1] > 1,
            row_colors=side_colors.get("row"),
            col_colors=side_colors.get("col"),
            cmap=cmap,
            center=center,
            xticklabels=True,
            yticklabels=True,
            linewidths=0.0,
            cbar_kws={"shrink": 0.5},
            figsize=(max(matrix.shape[1] * 0.15, 4), max(matrix.shape[0] * 0.2, 4)),
        )

        g.ax_heatmap.set_facecolor(cls.NA_COLOR)
        g.ax_heatmap.set_xlabel("")
        g.ax_heatmap.set_ylabel("")
        g.ax_heatmap.tick_params(axis="both", labelsize=4)

        if pals:
            g.ax_heatmap.legend(
                handles=cls.legend_handles(pals),
                loc="center left",
                bbox_to_anchor=(1.2, 0.5),
                prop={"size": 4},
                frameon=False,
            )

        if title is not None:
            g.fig.suptitle(title, y=1.02)

        return g

    @classmethod
    def ranked_strip(
        cls, table, x="gene_name", y="value", hue=None, population_mean=None, palette=None, title=None
    ):
        """
        One point per observation, genes ranked by descending mean.

        Dashed line: mean of the displayed subset; dotted line: mean of the
        whole (unfiltered) population, when given.

        :return: matplotlib Figure, or None when table has no values
        """
        if table.shape[0] == 0 or table[y].count() == 0:
            LOG.warning(f"No values for {y}: strip plot skipped")
            return None

        order = rank_genes(table, x, y)

        fig, ax = plt.subplots(1, 1, figsize=(max(len(order) * 0.25, 3), 2.5), dpi=300)

        if hue is not None:
            pal = cls.category_palette(table[hue], cls.PALETTES.get(hue) if palette is None else palette)
            sns.stripplot(
                x=x, y=y, hue=hue, data=table, order=order, palette=pal,
                size=2.5, jitter=0.2, linewidth=0, alpha=0.8, legend=False, ax=ax,
            )
        else:
            sns.stripplot(
                x=x, y=y, data=table, order=order, color=cls.PAL_DTRACE[2],
                size=2.5, jitter=0.2, linewidth=0, alpha=0.8, legend=False, ax=ax,
            )

        ax.axhline(table[y].mean(), ls="--", lw=0.5, c=cls.PAL_DTRACE[2], zorder=0, label="Subset mean")

        if population_mean is not None:
            ax.axhline(population_mean, ls=":", lw=0.5, c=cls.PAL_DTRACE[3], zorder=0, label="Population mean")

        ax.set_xlabel("")
        ax.set_ylabel(y.replace("_", " "))
        ax.grid(axis="y", lw=0.1, color="#e1e1e1", zorder=0)
        ax.set_xticks(range(len(order)))
        ax.set_xticklabels(order, rotation=90, size=5)

        handles = [l for l in ax.get_lines() if not l.get_label().startswith("_")]
        if hue is not None:
            handles += [mpatches.Patch(color=c, label=t) for t, c in pal.items()]

        ax.legend(handles=handles, frameon=False, prop={"size": 4}, loc="center left", bbox_to_anchor=(1, 0.5))

        if title is not None:
            ax.set_title(title)

        return fig

    @classmethod
    def violin_box(cls, table, x="gene_name", y="value", reference=None, title=None):
        """
        Violin with an overlaid box per gene, genes by descending mean.

        :param reference: constant horizontal line (e.g. diploid copy number)
        :return: matplotlib Figure, or None when table has no values
        """
        if table.shape[0] == 0 or table[y].count() == 0:
            LOG.warning(f"No values for {y}: violin plot skipped")
            return None

        order = rank_genes(table, x, y)

        fig, ax = plt.subplots(1, 1, figsize=(max(len(order) * 0.25, 3), 2.5), dpi=300)

        sns.violinplot(
            x=x, y=y, data=table, order=order, color=cls.PAL_DTRACE[0],
            linewidth=0.3, cut=0, inner=None, ax=ax,
        )

        sns.boxplot(
            x=x,
            y=y,
            data=table,
            order=order,
            width=0.2,
            color="white",
            boxprops=dict(linewidth=0.3),
            whiskerprops=dict(linewidth=0.3),
            medianprops=cls.MEDIANPROPS,
            flierprops=cls.FLIERPROPS,
            showcaps=False,
            saturation=1,
            ax=ax,
        )

        if reference is not None:
            ax.axhline(reference, ls="--", lw=0.5, c="black", zorder=0)

        ax.set_xlabel("")
        ax.set_ylabel(y.replace("_", " "))
        ax.grid(axis="y", lw=0.1, color="#e1e1e1", zorder=0)
        ax.set_xticks(range(len(order)))
        ax.set_xticklabels(order, rotation=90, size=5)

        if title is not None:
            ax.set_title(title)

        return fig

    @classmethod
    def correlation_facets(
        cls, pairs, stats, gene_col="gene_name", x_label="x", y_label="y", ncols=5, title=None
    ):
        """
        One scatter per gene with the linear fit and Spearman's rho.

        :param pairs: complete (x, y) pairs, see OmicsTables.paired_observations
        :param stats: per gene statistics, see OmicsTables.correlation_table
        :return: matplotlib Figure, or None without pairs
        """
        if pairs.shape[0] == 0:
            LOG.warning("No complete pairs: correlation plot skipped")
            return None

        genes = list(stats.index)
        nrows = int(np.ceil(len(genes) / ncols))

        fig, axs = plt.subplots(
            nrows, ncols, figsize=(ncols * 1.5, nrows * 1.5), dpi=300, squeeze=False
        )

        for ax, g in zip(axs.flat, genes):
            df = pairs[pairs[gene_col] == g]
            s = stats.loc[g]

            ax.scatter(df["x"], df["y"], c=cls.PAL_DTRACE[2], s=4, linewidths=0, alpha=0.8)

            if not np.isnan(s["beta"]):
                xs = np.linspace(df["x"].min(), df["x"].max(), 10)
                ax.plot(xs, s["intercept"] + s["beta"] * xs, c=cls.PAL_DTRACE[1], lw=0.8)

            rho = "NA" if np.isnan(s["corr"]) else f"{s['corr']:.2f}"
            ax.text(0.05, 0.95, f"R={rho}\nN={int(s['len'])}", transform=ax.transAxes, va="top", fontsize=4)

            ax.set_title(g, fontsize=6)
            ax.tick_params(axis="both", labelsize=4)
            ax.grid(True, ls="-", lw=0.1, alpha=1.0, zorder=0)

        for ax in axs.flat[len(genes):]:
            ax.axis("off")

        fig.supxlabel(x_label, fontsize=6)
        fig.supylabel(y_label, fontsize=6)

        if title is not None:
            fig.suptitle(title, fontsize=7)

        fig.tight_layout()

        return fig

    @classmethod
    def balloon(cls, counts, max_size=120, title=None):
        """
        Contingency table as a grid of bubbles sized by count.

        Every cell is drawn: zero counts get a zero-size bubble on top of a
        grid point so the grid shape is kept.

        :param counts: OmicsTables.contingency output
        :return: matplotlib Figure, or None for an empty domain
        """
        if counts.shape[0] == 0 or counts.shape[1] == 0:
            LOG.warning("Empty contingency table: balloon plot skipped")
            return None

        yy, xx = np.meshgrid(np.arange(counts.shape[0]), np.arange(counts.shape[1]), indexing="ij")
        values = counts.values.astype(float)
        sizes = values / values.max() * max_size if values.max() > 0 else np.zeros_like(values)

        fig, ax = plt.subplots(
            1, 1, figsize=(max(counts.shape[1] * 0.4, 2), max(counts.shape[0] * 0.25, 2)), dpi=300
        )

        ax.scatter(xx.ravel(), yy.ravel(), s=1, c=cls.PAL_DTRACE[0], marker="+", linewidths=0.3, zorder=1)
        ax.scatter(
            xx.ravel(), yy.ravel(), s=sizes.ravel(), c=cls.PAL_DTRACE[3], linewidths=0, alpha=0.8, zorder=2
        )

        for i, j, v in zip(yy.ravel(), xx.ravel(), values.ravel()):
            if v > 0:
                ax.text(j, i, f"{v:.0f}", ha="center", va="center", fontsize=3, zorder=3)

        ax.set_xticks(np.arange(counts.shape[1]))
        ax.set_xticklabels(counts.columns, rotation=90, size=5)
        ax.set_yticks(np.arange(counts.shape[0]))
        ax.set_yticklabels(counts.index, size=5)

        ax.set_xlim(-0.5, counts.shape[1] - 0.5)
        ax.set_ylim(counts.shape[0] - 0.5, -0.5)

        ax.set_xlabel(counts.columns.name or "")
        ax.set_ylabel(counts.index.name or "")

        if title is not None:
            ax.set_title(title)

        return fig

    @staticmethod
    def savefig(fig, prefix, dpi=300):
        fig.savefig(f"{prefix}.png", bbox_inches="tight", dpi=dpi)
        fig.savefig(f"{prefix}.pdf", bbox_inches="tight", transparent=True)
        plt.close("all")
