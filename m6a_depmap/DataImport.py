#!/usr/bin/env python
# Copyright (C) 2020 Emanuel Goncalves

import gc
import os
import json
import requests
import pandas as pd
from contextlib import contextmanager
from m6a_depmap import LOG


DEFAULT_CONFIGS = {
    "data_dir": "data",
    "plots_dir": "plots",
    "files": {
        "metadata": "metadata.csv.gz",
        "crispr": "crispr.csv.gz",
        "copy_number": "copy_number.csv.gz",
        "TPM": "TPM.csv.gz",
        "mutation_calls": "mutation_calls.csv.gz",
    },
    "urls": {},
    "methylation_file": "CCLE_RRBS_TSS1kb_20181022.txt.gz",
    "annotation_cache": "gene_annotation.json",
    "fetch_annotation": True,
    "lineage": "breast",
    "lineage_field": "lineage",
}

METHY_MISSING = ["NA", "NaN", "nan", "-", ""]


class TableNotAvailableError(LookupError):
    def __init__(self, table_id, reason):
        self.table_id = table_id
        super().__init__(f"Table '{table_id}' not available: {reason}")


def read_configs(config_file):
    """
    Read a JSON report configuration and merge it over DEFAULT_CONFIGS.

    Nested dictionaries (files, urls) are merged key by key.

    :param config_file: path to the JSON file
    :return: dict
    """
    with open(config_file, "r") as f:
        user_configs = json.load(f)

    configs = dict(DEFAULT_CONFIGS)
    for k, v in user_configs.items():
        if isinstance(v, dict) and isinstance(configs.get(k), dict):
            configs[k] = {**configs[k], **v}
        else:
            configs[k] = v

    return configs


def read_methylation(methy_file, sample_col="cell_line", value_col="methylation"):
    """
    Read a RRBS methylation matrix (samples x sites) into long format.

    Site columns are named GENE_<locus>; the gene symbol is everything
    before the first underscore.

    :param methy_file: delimited text file, first column = sample id
    :return: DataFrame [sample_col, site, gene_name, value_col]
    """
    sep = "," if ".csv" in os.path.basename(methy_file) else "\t"

    methy = pd.read_csv(methy_file, sep=sep, index_col=0, na_values=METHY_MISSING)
    methy.index.name = sample_col
    methy.columns.name = "site"

    methy = (
        methy.apply(pd.to_numeric, errors="coerce")
        .reset_index()
        .melt(id_vars=sample_col, var_name="site", value_name=value_col)
    )
    methy["gene_name"] = methy["site"].str.split("_").str[0]

    LOG.info(f"Methylation: {methy['site'].nunique()} sites; {methy[sample_col].nunique()} samples")

    return methy[[sample_col, "site", "gene_name", value_col]]


class DataImport:
    """
    Access to the DepMap tables by stable identifier.

    Each table id maps to a flat file under dpath; when the file is missing
    and a URL is configured for the id, it is downloaded once.
    """

    def __init__(self, dpath, files=None, urls=None):
        self.dpath = dpath
        self.files = dict(DEFAULT_CONFIGS["files"] if files is None else files)
        self.urls = dict({} if urls is None else urls)

    @classmethod
    def from_configs(cls, configs):
        return cls(configs["data_dir"], files=configs["files"], urls=configs["urls"])

    def table_path(self, table_id):
        if table_id not in self.files:
            raise TableNotAvailableError(table_id, "unknown table id")

        return os.path.join(self.dpath, self.files[table_id])

    def fetch_table(self, table_id, chunk_size=1 << 20):
        """
        Download a table from its configured URL into dpath.

        :return: local file path
        """
        fpath = self.table_path(table_id)

        if table_id not in self.urls:
            raise TableNotAvailableError(table_id, f"{fpath} not found and no URL configured")

        LOG.info(f"Fetching {table_id}: {self.urls[table_id]}")

        os.makedirs(os.path.dirname(fpath) or ".", exist_ok=True)

        # only a complete download is moved onto fpath
        part = f"{fpath}.part"

        try:
            with requests.get(self.urls[table_id], stream=True, timeout=60) as r:
                r.raise_for_status()

                with open(part, "wb") as f:
                    for chunk in r.iter_content(chunk_size=chunk_size):
                        f.write(chunk)

            os.replace(part, fpath)

        except requests.RequestException as e:
            raise TableNotAvailableError(table_id, str(e)) from e

        finally:
            if os.path.exists(part):
                os.remove(part)

        return fpath

    def get_table(self, table_id):
        """
        Read a table by id.

        :param table_id: e.g. "crispr", "TPM", "copy_number", "mutation_calls"
        :return: DataFrame
        """
        fpath = self.table_path(table_id)

        if not os.path.exists(fpath):
            fpath = self.fetch_table(table_id)

        table = pd.read_csv(fpath, low_memory=False)

        LOG.info(f"{table_id}: {table.shape}")

        return table

    @contextmanager
    def open_table(self, table_id):
        """
        Scoped access to a table: the reference is dropped and memory
        collected once the block exits.
        """
        table = self.get_table(table_id)

        try:
            yield table

        finally:
            del table
            gc.collect()
            LOG.info(f"{table_id}: released")

    def read_samplesheet(self, index_col="depmap_id"):
        """
        Read cancer cell lines samplesheet

        :return: DataFrame indexed by depmap_id
        """
        ss = self.get_table("metadata")
        ss = ss.dropna(subset=[index_col]).drop_duplicates(subset=[index_col])
        return ss.set_index(index_col)

    @staticmethod
    def map_cell_line_names(samplesheet, name_col="cell_line"):
        """
        CCLE name (e.g. MCF7_BREAST) to depmap_id

        :return: Series
        """
        return (
            samplesheet.reset_index()
            .dropna(subset=[name_col])
            .groupby(name_col)[samplesheet.index.name or "index"]
            .first()
        )

    @staticmethod
    def resolve_aliases(table, aliases, gene_col="gene_name"):
        """
        Rewrite legacy gene symbols to their canonical symbol.

        :return: new DataFrame
        """
        table = table.copy()
        table[gene_col] = table[gene_col].replace(aliases)
        return table

