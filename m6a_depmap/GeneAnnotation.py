#!/usr/bin/env python
# Copyright (C) 2020 Emanuel Goncalves

import os
import json
import requests
import pandas as pd
from natsort import natsorted
from m6a_depmap import LOG


class GeneAnnotation:
    """
    Gene description and genomic coordinates from the Ensembl REST API,
    cached to a local JSON file. Symbols Ensembl does not know are cached
    as null so they are not requested again.
    """

    SERVER = "https://rest.ensembl.org"
    EXT = "/lookup/symbol/homo_sapiens"
    FIELDS = ["display_name", "description", "seq_region_name", "start", "end", "strand", "id"]
    MAX_SYMBOLS = 1000

    def __init__(self, cache_file, server=None):
        self.cache_file = cache_file
        self.server = self.SERVER if server is None else server
        self.cache = self.read_cache()

    def read_cache(self):
        if not os.path.exists(self.cache_file):
            return {}

        with open(self.cache_file, "r") as f:
            return json.load(f)

    def write_cache(self):
        os.makedirs(os.path.dirname(self.cache_file) or ".", exist_ok=True)

        with open(self.cache_file, "w") as f:
            json.dump(self.cache, f, indent=1, sort_keys=True)

    def fetch(self, genes):
        records = {}

        for i in range(0, len(genes), self.MAX_SYMBOLS):
            symbols = genes[i : i + self.MAX_SYMBOLS]

            r = requests.post(
                self.server + self.EXT,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                data=json.dumps(dict(symbols=symbols)),
                timeout=60,
            )
            r.raise_for_status()

            records.update(r.json())

        return {
            g: {f: records[g].get(f) for f in self.FIELDS} if records.get(g) else None
            for g in genes
        }

    def lookup(self, genes, fetch=True):
        """
        Annotation records for a list of gene symbols.

        :param fetch: query Ensembl for symbols not in the cache
        :return: dict gene -> record (None when Ensembl has no match)
        """
        genes = list(dict.fromkeys(genes))
        missing = [g for g in genes if g not in self.cache]

        if missing and fetch:
            LOG.info(f"Ensembl lookup: {len(missing)} genes")
            self.cache.update(self.fetch(missing))
            self.write_cache()

        elif missing:
            LOG.warning(f"{len(missing)} genes not annotated and fetching disabled")

        annotation = {g: self.cache.get(g) for g in genes}

        unmatched = [g for g, v in annotation.items() if v is None]
        if unmatched:
            LOG.warning(f"Genes without annotation: {', '.join(unmatched)}")

        return annotation

    @staticmethod
    def as_table(annotation):
        table = pd.DataFrame.from_dict(
            {g: v for g, v in annotation.items() if v is not None}, orient="index"
        )
        table.index.name = "gene_name"
        return table


def genomic_order(genes, annotation):
    """
    Genes ordered by chromosome (natural order) and start coordinate.

    Genes without coordinates are left out of this ordering.

    :return: list
    """
    located = [
        g for g in genes
        if annotation.get(g) is not None
        and annotation[g].get("seq_region_name") is not None
        and annotation[g].get("start") is not None
    ]

    return natsorted(located, key=lambda g: (annotation[g]["seq_region_name"], annotation[g]["start"]))
