from __future__ import annotations

from dataclasses import dataclass


class XenaDatasets:
    HUB = "https://pancanatlas.xenahubs.net"

    SURVIVAL = "Survival_SupplementalTable_S1_20171025_xena_sp"
    RNA = "EB++AdjustPANCAN_IlluminaHiSeq_RNASeqV2.geneExp.xena"
    CNV_GENE = "broad.mit.edu_PANCAN_Genome_Wide_SNP_6_whitelisted.gene.xena"
    MUT_GENE = "mc3.v0.2.8.PUBLIC.nonsilentGene.xena"
    MUT_VEC = "mc3.v0.2.8.PUBLIC.xena"

    # clinical fields stored as integer codes on the hub
    SURVIVAL_CODED_FIELDS = ["cancer type abbreviation", "gender", "ajcc_pathologic_tumor_stage", "clinical_stage"]


class MutationColumns:
    SAMPLE = "sample"
    GENE = "gene"
    EFFECT = "effect"
    AMINO_ACID = "amino_acid"

    ALL = [SAMPLE, GENE, EFFECT, AMINO_ACID]


# Formula term standing in for "every biomarker column".
BIOMARKER_PLACEHOLDER = "__BIOM"


@dataclass(frozen=True)
class FitConfig:
    """
    Sampler settings for the Bayesian backend. `cores` is the number of
    parallel chains PyMC may run; nothing here touches global state.
    """

    draws: int = 1000
    tune: int = 1000
    chains: int = 4
    cores: int = 1
    seed: int = 0
    target_accept: float = 0.9
    prior_scale: float = 2.5
    intercept_prior_scale: float = 10.0
    progressbar: bool = False
