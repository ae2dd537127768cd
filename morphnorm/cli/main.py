"""Command-line interface for morphnorm.

Provides CLI commands for joining screen tables, ranking features by
cross-batch variability, and running the normalization pipeline.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

import click
import pandas as pd


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("morphnorm")


def _split_list(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    items = [v.strip() for v in value.split(",") if v.strip()]
    return items or None


def _load_config(
    config_path: Optional[str],
    strategy: Optional[str] = None,
    threshold: Optional[float] = None,
    quantile: Optional[float] = None,
    on_failure: Optional[str] = None,
    batch_key: Optional[str] = None,
    controls: Optional[str] = None,
    workers: Optional[int] = None,
    skip: Tuple[str, ...] = (),
):
    """Build a NormalizationConfig from a YAML file plus CLI overrides."""
    from morphnorm.core.normalization import NormalizationConfig

    cfg = NormalizationConfig.from_yaml(Path(config_path)) if config_path else NormalizationConfig()
    if strategy is not None:
        cfg.scaling.strategy = strategy
    if threshold is not None:
        cfg.variability.threshold = threshold
    if quantile is not None:
        cfg.stabilization.quantile = quantile
    if on_failure is not None:
        cfg.on_failure = on_failure
    if batch_key is not None:
        cfg.batch_key_column = batch_key
    if controls is not None:
        cfg.control_values = _split_list(controls) or []
    if workers is not None:
        cfg.n_workers = workers
    for stage_id in skip:
        if stage_id not in cfg.skip_stages:
            cfg.skip_stages.append(stage_id)
    return cfg


def _resolve_features(
    df: pd.DataFrame,
    cfg,
    features: Optional[str],
    prefixes: Tuple[str, ...],
) -> List[str]:
    """Pick feature columns: explicit list, prefixes, or numeric non-metadata."""
    from morphnorm.io import DEFAULT_IMAGE_KEYS, select_feature_columns

    exclude = [cfg.batch_key_column, cfg.control_column, cfg.control_flag_column, "ObjectNumber"]
    exclude += DEFAULT_IMAGE_KEYS
    exclude += [c for c in df.columns if str(c).startswith(("Metadata_", "Image_Metadata_"))]
    return select_feature_columns(
        df,
        features=_split_list(features),
        prefixes=list(prefixes) or None,
        exclude=exclude,
    )


def _release_run_logger(logger: logging.Logger) -> None:
    logger.propagate = True
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            handler.close()
            logger.removeHandler(handler)


@click.group()
@click.version_option(version="0.1.0", prog_name="morphnorm")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """morphnorm: Batch-aware normalization of morphological profiles.

    Normalizes object-level features from image-based screens: glog
    variance stabilization, exclusion of batch-sensitive features,
    per-plate median centering and robust z-scoring against controls.

    Examples:

        # Join object, image and ground-truth tables
        morphnorm join --objects objects.csv --images images.csv -o joined.csv

        # Rank features by cross-plate variability
        morphnorm rank-features -i joined.csv -o ranking.csv

        # Normalize with pooled control spread
        morphnorm normalize -i joined.csv -o out/ --strategy pooled
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--objects", "objects_path", required=True, type=click.Path(exists=True),
              help="Per-object measurements (CSV)")
@click.option("--images", "images_path", required=True, type=click.Path(exists=True),
              help="Per-image metadata (CSV)")
@click.option("--ground-truth", "ground_truth_path", type=click.Path(exists=True),
              help="Compound/concentration annotations (CSV)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output CSV path")
@click.option("--image-keys", default="TableNumber,ImageNumber",
              help="Comma-separated keys shared by objects and images")
@click.option("--annotation-keys", default="Metadata_Compound,Metadata_Concentration",
              help="Comma-separated compound/concentration columns of the image table")
@click.option("--annotation-on", default=None,
              help="Matching columns in the ground-truth table (default: --annotation-keys)")
@click.pass_context
def join(
    ctx: click.Context,
    objects_path: str,
    images_path: str,
    ground_truth_path: Optional[str],
    output_path: str,
    image_keys: str,
    annotation_keys: str,
    annotation_on: Optional[str],
) -> None:
    """Join objects with images, then with ground-truth annotations.

    Objects are inner-joined to images; annotations are left-joined so
    unannotated treatments (controls) are kept.
    """
    logger = ctx.obj["logger"]

    from morphnorm.io import join_screen_tables, load_table, write_dataframe

    try:
        objects = load_table(objects_path)
        images = load_table(images_path)
        annotations = load_table(ground_truth_path) if ground_truth_path else None
        joined = join_screen_tables(
            objects,
            images,
            annotations,
            image_keys=_split_list(image_keys),
            annotation_keys=_split_list(annotation_keys),
            annotation_on=_split_list(annotation_on),
        )
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e))

    write_dataframe(joined, output_path)
    logger.info(f"Joined table: {len(joined)} rows x {joined.shape[1]} columns")
    click.echo(f"Joined {len(joined)} objects")
    click.echo(f"Output saved to: {output_path}")


@cli.command("rank-features")
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Joined object-level table (CSV)")
@click.option("--out", "-o", "output_path", type=click.Path(),
              help="Output CSV for the ranking")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Normalization configuration file (YAML)")
@click.option("--features", help="Comma-separated feature columns")
@click.option("--feature-prefix", "prefixes", multiple=True,
              help="Feature column prefix (repeatable)")
@click.option("--batch-key", help="Batch column (default: Metadata_Plate)")
@click.option("--threshold", type=float, help="Exclusion threshold on the batch-median SD")
@click.option("--quantile", type=float, help="Quantile for the glog shift parameter")
@click.option("--no-stabilize", is_flag=True, help="Rank raw features without glog")
@click.option("--top", type=int, default=10, show_default=True, help="Features to print")
@click.pass_context
def rank_features(
    ctx: click.Context,
    input_path: str,
    output_path: Optional[str],
    config: Optional[str],
    features: Optional[str],
    prefixes: Tuple[str, ...],
    batch_key: Optional[str],
    threshold: Optional[float],
    quantile: Optional[float],
    no_stabilize: bool,
    top: int,
) -> None:
    """Rank features by cross-batch variability (read-only).

    Computes the standard deviation of per-batch medians of each feature,
    after glog stabilization unless --no-stabilize is given.
    """
    logger = ctx.obj["logger"]

    from morphnorm.core.normalization import (
        BatchVariabilityAnalyzer,
        NormalizationError,
        TableView,
        VarianceStabilizer,
    )
    from morphnorm.io import load_table, write_dataframe

    try:
        cfg = _load_config(
            config, threshold=threshold, quantile=quantile, batch_key=batch_key,
        )
        df = load_table(input_path)
        selected = _resolve_features(df, cfg, features, prefixes)
        table = TableView(df, selected)
        table.require_columns([cfg.batch_key_column], context="input table")

        if not no_stabilize:
            stabilized = VarianceStabilizer(cfg.stabilization, cfg.n_workers, logger).stabilize(table)
            if stabilized.failed_features:
                logger.warning(f"Skipping features that failed stabilization: {stabilized.failed_features}")
            table = stabilized.table.drop_features(stabilized.failed_features)

        report = BatchVariabilityAnalyzer(cfg.variability, logger).analyze(
            table, batch_key=cfg.batch_key_column
        )
    except (NormalizationError, FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e))

    frame = report.to_frame()
    if output_path:
        write_dataframe(frame, output_path)
        click.echo(f"Ranking saved to: {output_path}")

    click.echo(f"Features ranked: {len(frame)} (threshold {report.threshold:g}, "
               f"{len(report.excluded)} excluded)")
    for row in frame.head(top).itertuples(index=False):
        flag = " *" if row.excluded else ""
        click.echo(f"  {row.rank:>3}. {row.feature}: {row.batch_median_sd:.4f}{flag}")
    for failure in report.failures:
        click.echo(f"  ! {failure.message}", err=True)


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Joined object-level table (CSV)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Normalization configuration file (YAML)")
@click.option("--features", help="Comma-separated feature columns")
@click.option("--feature-prefix", "prefixes", multiple=True,
              help="Feature column prefix (repeatable)")
@click.option("--strategy", type=click.Choice(["per_batch", "pooled"]),
              help="Scaling strategy (required unless set in the config)")
@click.option("--threshold", type=float, help="Exclusion threshold on the batch-median SD")
@click.option("--quantile", type=float, help="Quantile for the glog shift parameter")
@click.option("--batch-key", help="Batch column (default: Metadata_Plate)")
@click.option("--controls", help="Comma-separated control compounds (default: DMSO)")
@click.option("--on-failure", type=click.Choice(["raise", "drop"]),
              help="Failure policy for degenerate features and batches")
@click.option("--skip", multiple=True,
              type=click.Choice(["stabilize", "analyze", "center", "scale"]),
              help="Stage to skip (repeatable)")
@click.option("--workers", type=int, help="Worker threads per stage")
@click.pass_context
def normalize(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    features: Optional[str],
    prefixes: Tuple[str, ...],
    strategy: Optional[str],
    threshold: Optional[float],
    quantile: Optional[float],
    batch_key: Optional[str],
    controls: Optional[str],
    on_failure: Optional[str],
    skip: Tuple[str, ...],
    workers: Optional[int],
) -> None:
    """Run the normalization pipeline.

    Stages:
      stabilize: glog transform per feature
      analyze:   rank and exclude batch-sensitive features
      center:    subtract per-batch medians
      scale:     robust z-score against control rows

    Writes normalized.csv, variability.csv, failures.csv and report.json
    to the output directory.
    """
    verbose = ctx.obj["verbose"]
    debug = ctx.obj["debug"]

    from morphnorm.core.normalization import NormalizationError, NormalizationPipeline
    from morphnorm.io import (
        ensure_output_dir,
        get_logger,
        get_run_log_path,
        load_table,
        log_json,
        log_yaml,
        write_dataframe,
        write_json,
    )
    from morphnorm.pipeline import PipelineLogger

    try:
        cfg = _load_config(
            config,
            strategy=strategy,
            threshold=threshold,
            quantile=quantile,
            on_failure=on_failure,
            batch_key=batch_key,
            controls=controls,
            workers=workers,
            skip=skip,
        )
        cfg.validate()
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    out_dir = ensure_output_dir(output_path)
    level = logging.DEBUG if debug else logging.INFO
    run_logger, log_path = get_logger(
        "morphnorm", get_run_log_path(out_dir / "logs"), level, propagate=verbose or debug
    )
    pipeline_logger = PipelineLogger(
        log_level="DEBUG" if debug else "INFO", log_name="morphnorm.pipeline", console=False
    )
    pipeline_logger.setup()

    try:
        log_yaml(None, cfg.to_dict(), logger=run_logger)
        df = load_table(input_path)
        selected = _resolve_features(df, cfg, features, prefixes)
        run_logger.info("Selected %d feature columns", len(selected))

        result = NormalizationPipeline(cfg, selected, logger=pipeline_logger).run(df)
    except (NormalizationError, FileNotFoundError, ValueError) as e:
        run_logger.error("Normalization failed: %s", e)
        _release_run_logger(run_logger)
        raise click.ClickException(str(e))
    finally:
        pipeline_logger.close()

    report = result.report
    try:
        write_dataframe(result.data, out_dir / "normalized.csv")
        if report.variability is not None:
            write_dataframe(report.variability.to_frame(), out_dir / "variability.csv")
        write_dataframe(report.failures_frame(), out_dir / "failures.csv")
        write_json(report.to_dict(), out_dir / "report.json")
        log_json(out_dir / "runs.jsonl", {
            "input": str(input_path),
            "n_rows": report.n_rows,
            "n_input_features": len(report.input_features),
            "n_output_features": len(report.output_features),
            "excluded_features": report.excluded_features,
            "dropped_features": report.dropped_features,
            "n_failures": len(report.failures),
            "scaling_strategy": report.scaling_strategy,
            "log_path": str(log_path),
        })
    finally:
        _release_run_logger(run_logger)

    click.echo(f"Normalized {report.n_rows} rows: "
               f"{len(report.output_features)}/{len(report.input_features)} features retained")
    if report.excluded_features:
        click.echo(f"Excluded (batch-sensitive): {', '.join(report.excluded_features)}")
    if report.dropped_features:
        click.echo(f"Dropped (failed): {', '.join(report.dropped_features)}")
    if report.failed_batches:
        click.echo(f"Batches without controls: {', '.join(map(str, report.failed_batches))}")
    click.echo(f"Output saved to: {output_path}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
