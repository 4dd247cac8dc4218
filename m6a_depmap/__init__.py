#!/usr/bin/env python
# Copyright (C) 2020 Emanuel Goncalves

import logging


LOG = logging.getLogger("m6a_depmap")

UNKNOWN = "unknown"

# m6A regulators and their role on the mark
M6A_GENES = {
    # Writers
    "METTL3": "writing",
    "METTL14": "writing",
    "METTL16": "writing",
    "WTAP": "writing",
    "VIRMA": "writing",
    "RBM15": "writing",
    "RBM15B": "writing",
    "ZC3H13": "writing",
    "CBLL1": "writing",
    "ZCCHC4": "writing",
    # Erasers
    "FTO": "erasing",
    "ALKBH5": "erasing",
    "ALKBH3": "erasing",
    # Readers
    "YTHDF1": "reading",
    "YTHDF2": "reading",
    "YTHDF3": "reading",
    "YTHDC1": "reading",
    "YTHDC2": "reading",
    "IGF2BP1": "reading",
    "IGF2BP2": "reading",
    "IGF2BP3": "reading",
    "HNRNPA2B1": "reading",
    "HNRNPC": "reading",
    "RBMX": "reading",
    "EIF3A": "reading",
    "ELAVL1": "reading",
    "FMR1": "reading",
    "PRRC2A": "reading",
}

# Legacy symbols still found in older DepMap releases
GENE_ALIASES = {
    "KIAA1429": "VIRMA",
    "HAKAI": "CBLL1",
    "HNRNPG": "RBMX",
}
