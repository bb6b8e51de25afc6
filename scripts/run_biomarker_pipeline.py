#!/usr/bin/env python
from __future__ import annotations

import argparse
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))


def _fraction(text: str) -> float:
    value = float(text)
    if not 0.0 <= value < 1.0:
        raise argparse.ArgumentTypeError(f"must be in [0, 1), got {text}")
    return value


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="TCGA biomarker GLM pipeline (Xena PanCanAtlas)")
    p.add_argument("--cohort", type=str, help='TCGA cancer type abbreviation, e.g. "SKCM"')
    p.add_argument("--list-cohorts", action="store_true", help="Print cohorts (sample/event counts, median OS) and exit")
    p.add_argument("--out", type=Path, default=Path("results"), help="Output directory")
    p.add_argument("--cache-dir", type=Path, default=Path("cache"), help="Cache directory")
    p.add_argument("--overwrite", action="store_true", help="Allow writing into a non-empty output directory")

    p.add_argument("--endpoint", type=str, default="OS", choices=["OS", "DSS", "DFI", "PFI"], help="Survival endpoint")
    p.add_argument(
        "--horizon-days",
        type=int,
        default=1095,
        help="Outcome = event within this many days; the outcome column is named <endpoint>_<days>d",
    )
    p.add_argument("--label-rule", type=str, default="gene", choices=["gene", "gene_effect", "gene_aa", "gene_class"])
    p.add_argument("--value", type=str, default="presence", choices=["presence", "count"], help="Biomarker cell value")
    p.add_argument(
        "--formula",
        type=str,
        default=None,
        help='Model formula; __BIOM expands to all biomarker columns (default: "<outcome> ~ 1 + <covariates> + __BIOM")',
    )
    p.add_argument("--covariates", type=str, nargs="*", default=[], help="Clinical covariate columns")
    p.add_argument("--expression-genes", type=str, nargs="*", default=[], help="Add z-scored expression covariates")
    p.add_argument("--cnv-genes", type=str, nargs="*", default=[], help="Add amplification/deletion biomarkers")
    p.add_argument("--min-feature-samples", type=int, default=5, help="Drop biomarkers seen in fewer samples")
    p.add_argument("--max-features", type=int, default=30, help="Keep the N most frequent biomarkers (0=all)")
    p.add_argument("--join", type=str, default="left", choices=["left", "inner"], help="Outcome/biomarker join")
    p.add_argument("--test-fraction", type=_fraction, default=0.0, help="Hold-out fraction for AUC (0=training AUC)")

    p.add_argument("--backend", type=str, default="glm", choices=["glm", "bayes"], help="Fitting backend")
    p.add_argument("--draws", type=int, default=1000, help="Posterior draws per chain (bayes)")
    p.add_argument("--tune", type=int, default=1000, help="Tuning steps per chain (bayes)")
    p.add_argument("--chains", type=int, default=4, help="MCMC chains (bayes)")
    p.add_argument("--cores", type=int, default=1, help="Parallel workers for MCMC chains (bayes)")
    p.add_argument("--prior-scale", type=float, default=2.5, help="Normal prior SD for coefficients (bayes)")
    p.add_argument("--seed", type=int, default=0, help="Random seed for reproducibility")

    p.add_argument("--no-plots", action="store_true", help="Skip KM/effect/histogram/ROC figures")
    p.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console/file log level",
    )
    p.add_argument("--log-file", type=Path, default=None, help="Log file path (default: <out>/run.log)")
    p.add_argument("--no-progress", action="store_true", help="Disable tqdm progress bars")
    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    if args.list_cohorts:
        from tcga_biomarkers.cohorts import list_cohorts
        from tcga_biomarkers.xena_client import XenaClient

        client = XenaClient(cache_dir=args.cache_dir, show_progress=not args.no_progress)
        print(list_cohorts(client.survival_table()).to_string(index=False))
        return
    if not args.cohort:
        parser.error("--cohort is required (or use --list-cohorts)")

    from tcga_biomarkers.logging_utils import configure_logging

    configure_logging(out_dir=args.out, level=args.log_level, log_file=args.log_file)
    from tcga_biomarkers.config import FitConfig
    from tcga_biomarkers.pipeline import PipelineParams, run_pipeline

    run_pipeline(
        PipelineParams(
            cohort=args.cohort,
            out_dir=args.out,
            cache_dir=args.cache_dir,
            backend=args.backend,
            label_rule=args.label_rule,
            value=args.value,
            formula=args.formula,
            endpoint=args.endpoint,
            horizon_days=args.horizon_days,
            covariates=tuple(args.covariates),
            expression_genes=tuple(args.expression_genes),
            cnv_genes=tuple(args.cnv_genes),
            min_feature_samples=args.min_feature_samples,
            max_features=args.max_features,
            join=args.join,
            test_fraction=args.test_fraction,
            make_plots=not args.no_plots,
            seed=args.seed,
            overwrite=args.overwrite,
            show_progress=not args.no_progress,
            fit=FitConfig(
                draws=args.draws,
                tune=args.tune,
                chains=args.chains,
                cores=args.cores,
                seed=args.seed,
                prior_scale=args.prior_scale,
                progressbar=not args.no_progress,
            ),
        )
    )


if __name__ == "__main__":
    main()
