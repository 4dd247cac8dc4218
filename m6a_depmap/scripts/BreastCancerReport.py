#!/usr/bin/env python
# Copyright (C) 2020 Emanuel Goncalves

import os
import sys
import logging
import matplotlib

matplotlib.use("Agg")

from datetime import datetime
from m6a_depmap import LOG, M6A_GENES
from m6a_depmap.GeneAnnotation import GeneAnnotation
from m6a_depmap.DataImport import DataImport, read_configs
from m6a_depmap.Pipeline import DEFAULT_SECTIONS, ReportContext, run_report


STAMP = datetime.today().strftime("%Y%m%d%H%M")


def setup_logging(work_dir):
    LOG.setLevel(logging.DEBUG)

    # one file and one console handler per run
    for h in list(LOG.handlers):
        LOG.removeHandler(h)
        h.close()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    fh = logging.FileHandler(os.path.join(work_dir, f"{STAMP}.log"))
    fh.setFormatter(formatter)

    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(formatter)

    LOG.addHandler(fh)
    LOG.addHandler(ch)


def main(config_file, sections=None):
    configs = read_configs(config_file)

    os.makedirs(configs["plots_dir"], exist_ok=True)
    setup_logging(configs["plots_dir"])

    LOG.info(f"Configuration: {config_file}")

    data = DataImport.from_configs(configs)

    # Read samplesheet
    ss = data.read_samplesheet()
    LOG.info(f"Samplesheet: {ss.shape}")

    # Gene annotation
    annotation = GeneAnnotation(
        os.path.join(configs["data_dir"], configs["annotation_cache"])
    ).lookup(list(M6A_GENES), fetch=configs["fetch_annotation"])

    GeneAnnotation.as_table(annotation).to_csv(os.path.join(configs["plots_dir"], "gene_annotation.csv"))

    context = ReportContext(
        data=data,
        samplesheet=ss,
        genes=M6A_GENES,
        plots_dir=configs["plots_dir"],
        lineage=configs["lineage"],
        lineage_field=configs["lineage_field"],
        methylation_file=os.path.join(configs["data_dir"], configs["methylation_file"]),
        annotation=annotation,
    )

    results = run_report(DEFAULT_SECTIONS if sections is None else sections, context)

    for r in results:
        LOG.info(f"{r.name}: rows={r.n_rows}; genes={r.n_genes}; samples={r.n_samples}")

    return results


if __name__ == "__main__":
    main(sys.argv[1])
