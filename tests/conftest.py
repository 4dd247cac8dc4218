"""Pytest configuration and fixtures: small DepMap-shaped tables."""

import json
import pytest
import numpy as np
import pandas as pd
import matplotlib

matplotlib.use("Agg")


GENES = ["METTL3", "FTO", "YTHDF2", "KIAA1429", "GAPDH"]

BREAST = ["ACH-000001", "ACH-000002", "ACH-000003", "ACH-000004"]
LUNG = ["ACH-000010", "ACH-000011"]


@pytest.fixture
def samplesheet():
    ss = pd.DataFrame(
        {
            "depmap_id": BREAST + LUNG,
            "cell_line": [
                "MCF7_BREAST",
                "T47D_BREAST",
                "MDAMB231_BREAST",
                "HCC1937_BREAST",
                "A549_LUNG",
                "H1299_LUNG",
            ],
            "lineage": ["breast"] * 4 + ["lung"] * 2,
            "lineage_molecular_subtype": ["luminal", "luminal", "basal_B", np.nan, "NSCLC", "NSCLC"],
            "primary_or_metastasis": ["Metastasis", "Metastasis", "Metastasis", np.nan, "Primary", "Metastasis"],
            "sample_collection_site": ["pleural_effusion", "pleural_effusion", "pleural_effusion", "breast", "lung", "lymph_node"],
        }
    )
    return ss.set_index("depmap_id")


def long_table(value_col, loc, scale, seed):
    rng = np.random.default_rng(seed)

    rows = [
        dict(depmap_id=s, gene_name=g, **{value_col: rng.normal(loc, scale)})
        for g in GENES
        for s in BREAST + LUNG
    ]

    return pd.DataFrame(rows)


@pytest.fixture
def crispr():
    df = long_table("dependency", -0.3, 0.3, 0)
    df = pd.concat(
        [df, pd.DataFrame([dict(depmap_id=np.nan, gene_name="METTL3", dependency=-2.0)])],
        ignore_index=True,
    )
    return df


@pytest.fixture
def tpm():
    return long_table("rna_expression", 5.0, 1.0, 1)


@pytest.fixture
def copy_number():
    return long_table("log_copy_number", 1.0, 0.2, 2)


@pytest.fixture
def mutations():
    return pd.DataFrame(
        [
            dict(depmap_id="ACH-000001", gene_name="METTL3", var_class="Missense_Mutation", var_annotation="other non-conserving", ref_allele="C", alt_allele="T"),
            dict(depmap_id="ACH-000001", gene_name="METTL3", var_class="Silent", var_annotation="silent", ref_allele="G", alt_allele="A"),
            dict(depmap_id="ACH-000003", gene_name="FTO", var_class="Nonsense_Mutation", var_annotation="damaging", ref_allele="C", alt_allele="A"),
            dict(depmap_id="ACH-000004", gene_name="YTHDF2", var_class="Missense_Mutation", var_annotation="other non-conserving", ref_allele="A", alt_allele="G"),
            dict(depmap_id="ACH-000010", gene_name="FTO", var_class="Missense_Mutation", var_annotation="other non-conserving", ref_allele="T", alt_allele="C"),
        ]
    )


@pytest.fixture
def methylation_file(tmp_path):
    methy = pd.DataFrame(
        {
            "METTL3_14_21498000": [0.1, 0.2, np.nan, 0.05, 0.3, 0.4],
            "METTL3_14_21499000": [0.8, 0.7, 0.9, 0.75, 0.2, 0.1],
            "FTO_16_53701000": [0.0, 0.1, 0.0, 0.2, 0.5, 0.5],
            "GAPDH_12_6534000": [0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        },
        index=pd.Index(
            ["MCF7_BREAST", "T47D_BREAST", "MDAMB231_BREAST", "HCC1937_BREAST", "A549_LUNG", "H1299_LUNG"],
            name="CCLE_ID",
        ),
    )

    fpath = tmp_path / "rrbs.txt"
    methy.to_csv(fpath, sep="\t", na_rep="NA")
    return fpath


@pytest.fixture
def annotation():
    return {
        "METTL3": dict(seq_region_name="14", start=21498000, end=21511000),
        "FTO": dict(seq_region_name="16", start=53701000, end=54158000),
        "YTHDF2": dict(seq_region_name="1", start=28736000, end=28769000),
        "VIRMA": dict(seq_region_name="8", start=94487000, end=94553000),
        "ALKBH5": dict(seq_region_name="17", start=18183000, end=18209000),
        "ZC3H13": None,
    }


@pytest.fixture
def data_dir(tmp_path, samplesheet, crispr, tpm, copy_number, mutations, methylation_file, annotation):
    ddir = tmp_path / "data"
    ddir.mkdir()

    samplesheet.reset_index().to_csv(ddir / "metadata.csv.gz", index=False)
    crispr.to_csv(ddir / "crispr.csv.gz", index=False)
    tpm.to_csv(ddir / "TPM.csv.gz", index=False)
    copy_number.to_csv(ddir / "copy_number.csv.gz", index=False)
    mutations.to_csv(ddir / "mutation_calls.csv.gz", index=False)

    (ddir / "rrbs.txt").write_text(methylation_file.read_text())

    with open(ddir / "gene_annotation.json", "w") as f:
        json.dump(annotation, f)

    return ddir


@pytest.fixture
def config_file(tmp_path, data_dir):
    configs = dict(
        data_dir=str(data_dir),
        plots_dir=str(tmp_path / "plots"),
        methylation_file="rrbs.txt",
        fetch_annotation=False,
    )

    fpath = tmp_path / "config.json"
    with open(fpath, "w") as f:
        json.dump(configs, f)

    return fpath
