"""
Market intelligence CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging (stderr, so stdout stays machine-readable).
  3. Read and validate JSON inputs.
  4. Run the engine.
  5. Print the result as JSON on stdout.

Install and run::

    pip install -e .
    market-intel --help
    market-intel init-db
    market-intel train-regime --samples data/regime_samples.json
    market-intel predict-regime --market data/market.json
    market-intel optimize-factors --histories data/histories.json
    market-intel record-outcome --asset AAPL --strategy momentum \\
        --score 78 --realized-return 4.2 --regime risk_on
    market-intel adjust-scores --assets data/scan.json --strategy momentum --regime risk_on
    market-intel scan-anomalies --assets data/scan.json
    market-intel recommend --portfolio data/portfolio.json --market data/market_snapshot.json
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer

app = typer.Typer(
    name="market-intel",
    help="Adaptive market intelligence: regimes, scoring feedback, anomalies, recommendations.",
    add_completion=False,
)

DEFAULT_MODEL_PATH = "data/models/regime_model.pkl"


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from market_intel.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    from market_intel.utils.logging import configure_logging
    configure_logging(config.logging)


def _read_json_or_exit(path: str) -> Any:
    file_path = Path(path)
    if not file_path.exists():
        typer.echo(f"[ERROR] Input file not found: {file_path}", err=True)
        raise typer.Exit(code=1)
    try:
        return json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        typer.echo(f"[ERROR] JSON parse error in {file_path}: {exc}", err=True)
        raise typer.Exit(code=1)


def _parse_or_exit(model_cls, data: Any, what: str):
    """Validate ``data`` into ``model_cls`` (or a list of it)."""
    from pydantic import ValidationError

    try:
        if isinstance(data, list):
            return [model_cls.model_validate(item) for item in data]
        return model_cls.model_validate(data)
    except ValidationError as exc:
        typer.echo(f"[ERROR] Invalid {what}:\n{exc}", err=True)
        raise typer.Exit(code=1)


def _parse_regime_or_exit(value: str):
    from market_intel.models.regime import RegimeLabel

    try:
        return RegimeLabel(value)
    except ValueError:
        valid = ", ".join(r.value for r in RegimeLabel)
        typer.echo(f"[ERROR] Unknown regime '{value}'. Expected one of: {valid}", err=True)
        raise typer.Exit(code=1)


def _parse_timestamp_or_exit(value: Optional[str]) -> datetime:
    if value is None:
        return datetime.now(tz=timezone.utc)
    try:
        ts = datetime.fromisoformat(value)
    except ValueError:
        typer.echo(f"[ERROR] Invalid ISO timestamp: {value}", err=True)
        raise typer.Exit(code=1)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _ledger_store(config):
    from market_intel.db.repositories.ledger_repo import SqliteTrackerStore

    return SqliteTrackerStore(
        config.database.db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    )


def _emit(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Create the ledger database and apply the schema.  Safe to run repeatedly."""
    from market_intel.db.connection import get_connection
    from market_intel.db.schema import ALL_TABLE_NAMES, apply_schema

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with get_connection(
        target_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
    show_full: bool = typer.Option(False, "--full", help="Print the full config as JSON."),
) -> None:
    """Validate the configuration file and print the key values."""
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:     {config.database.db_path}")
    typer.echo(f"  Regime trees:      {config.regime.n_estimators} (depth {config.regime.max_depth})")
    typer.echo(f"  Adaptive lookback: {config.adaptive.lookback_days} days")
    typer.echo(f"  Decay half-life:   {config.adaptive.half_life_days} days")
    typer.echo(f"  Log level:         {config.logging.level}")
    typer.echo(f"  Debug mode:        {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("train-regime")
def train_regime(
    samples_path: str = typer.Option(..., "--samples", help="JSON array of {market_data, regime}."),
    output: str = typer.Option(DEFAULT_MODEL_PATH, "--output", help="Model artifact path (.pkl)."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Train the regime classifier and save it with a JSON metadata sidecar."""
    from market_intel.models.regime import RegimeTrainingSample
    from market_intel.regime.predictor import prepare_training_data, train_regime_classifier

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    raw = _read_json_or_exit(samples_path)
    if not isinstance(raw, list):
        typer.echo("[ERROR] Training samples file must contain an array.", err=True)
        raise typer.Exit(code=1)
    samples = _parse_or_exit(RegimeTrainingSample, raw, "training samples")

    X, y = prepare_training_data(samples, config.regime)
    result = train_regime_classifier(X, y, config.regime)

    if not result.success or result.model is None:
        _emit({"success": False, "training_size": result.training_size, "error": result.error})
        raise typer.Exit(code=1)

    artifact = Path(output)
    result.model.save(artifact)
    result.model.write_metadata(artifact.with_suffix(".json"))
    _emit({
        "success":       True,
        "accuracy":      result.accuracy,
        "training_size": result.training_size,
        "artifact":      str(artifact),
    })


@app.command("predict-regime")
def predict_regime_cmd(
    market_path: str = typer.Option(..., "--market", help="MarketData JSON file."),
    model_path: str = typer.Option(DEFAULT_MODEL_PATH, "--model", help="Trained model artifact."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Predict the current market regime."""
    from market_intel.models.regime import MarketData
    from market_intel.regime.predictor import RegimeModel, confidence_band, predict_regime

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    market = _parse_or_exit(MarketData, _read_json_or_exit(market_path), "market data")
    try:
        model = RegimeModel.load(Path(model_path))
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    prediction = predict_regime(market, model, config.regime)
    payload = prediction.model_dump(mode="json")
    payload["confidence_band"] = confidence_band(prediction.confidence, config.regime)
    _emit(payload)


@app.command("optimize-factors")
def optimize_factors(
    histories_path: str = typer.Option(
        ..., "--histories", help="JSON array of {ticker, prices, volumes}."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Learn factor weights from asset histories (defaults when the model is weak)."""
    from market_intel.factors.weighting import train_and_optimize_factor_weights
    from market_intel.models.factor import AssetHistory

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    raw = _read_json_or_exit(histories_path)
    if not isinstance(raw, list):
        typer.echo("[ERROR] Histories file must contain an array.", err=True)
        raise typer.Exit(code=1)
    histories = _parse_or_exit(AssetHistory, raw, "asset histories")

    result = train_and_optimize_factor_weights(histories, config.factors)
    _emit(result.to_dict())


@app.command("record-outcome")
def record_outcome(
    asset: str = typer.Option(..., "--asset", help="Asset identifier."),
    strategy: str = typer.Option(..., "--strategy", help="Strategy that issued the signal."),
    score: float = typer.Option(..., "--score", help="Quant score at signal time."),
    realized_return: float = typer.Option(..., "--realized-return", help="Realized return in percent."),
    regime: str = typer.Option(..., "--regime", help="risk_off | neutral | risk_on"),
    timestamp: Optional[str] = typer.Option(None, "--timestamp", help="Signal time (ISO 8601)."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Append a realized signal outcome to the performance ledger."""
    from market_intel.adaptive.persistence import load_tracker, save_tracker
    from market_intel.models.performance import PerformanceRecord

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    record = _parse_or_exit(
        PerformanceRecord,
        {
            "asset_id":         asset,
            "strategy_id":      strategy,
            "score_at_signal":  score,
            "realized_return":  realized_return,
            "regime":           _parse_regime_or_exit(regime),
            "signal_timestamp": _parse_timestamp_or_exit(timestamp),
        },
        "performance record",
    )

    store = _ledger_store(config)
    tracker = load_tracker(store)
    tracker.add_record(record)
    saved = save_tracker(store, tracker)

    _emit({"saved": saved, "record": record.model_dump(mode="json"), "ledger_size": len(tracker)})
    if not saved:
        raise typer.Exit(code=1)


@app.command("performance-report")
def performance_report(
    strategy: str = typer.Option(..., "--strategy", help="Strategy to report on."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Overall and per-regime hit rates for a strategy, with advisory notes."""
    from market_intel.adaptive.persistence import load_tracker
    from market_intel.adaptive.scoring import get_strategy_performance_report

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    tracker = load_tracker(_ledger_store(config))
    _emit(get_strategy_performance_report(tracker, strategy).to_dict())


@app.command("adjust-scores")
def adjust_scores(
    assets_path: str = typer.Option(..., "--assets", help="JSON array of scanned assets."),
    strategy: str = typer.Option(..., "--strategy", help="Strategy that scored the assets."),
    regime: str = typer.Option(..., "--regime", help="Current regime."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Re-weight quant scores by the strategy's recent hit rate in this regime."""
    from market_intel.adaptive.persistence import load_tracker
    from market_intel.adaptive.scoring import adjust_scores_batch
    from market_intel.models.asset import AssetSnapshot

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    label = _parse_regime_or_exit(regime)
    assets = _parse_or_exit(AssetSnapshot, _read_json_or_exit(assets_path), "assets")
    if not isinstance(assets, list):
        assets = [assets]

    tracker = load_tracker(_ledger_store(config))
    adjusted = adjust_scores_batch(assets, strategy, label, tracker, config.adaptive)
    _emit([a.model_dump(mode="json", exclude_none=True) for a in adjusted])


@app.command("scan-anomalies")
def scan_anomalies(
    assets_path: str = typer.Option(..., "--assets", help="JSON array of scanned assets."),
    correlations_path: Optional[str] = typer.Option(
        None, "--correlations", help="JSON correlation matrix in asset order."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Run every anomaly detector over a scanned universe."""
    from market_intel.anomalies.detector import detect_all_anomalies, get_anomaly_summary
    from market_intel.models.asset import AssetSnapshot

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    assets = _parse_or_exit(AssetSnapshot, _read_json_or_exit(assets_path), "assets")
    if not isinstance(assets, list):
        assets = [assets]
    matrix = _read_json_or_exit(correlations_path) if correlations_path else None

    report = detect_all_anomalies(assets, matrix, config.anomaly)
    summary = get_anomaly_summary(report.anomalies)
    summary["top_anomalies"] = [a.model_dump(mode="json") for a in summary["top_anomalies"]]
    _emit({
        "summary":   summary,
        "anomalies": [a.model_dump(mode="json") for a in report.anomalies],
        "by_asset":  {k: len(v) for k, v in report.by_asset.items()},
    })


@app.command("recommend")
def recommend(
    portfolio_path: str = typer.Option(..., "--portfolio", help="Portfolio JSON file."),
    market_path: Optional[str] = typer.Option(None, "--market", help="MarketSnapshot JSON file."),
    performance_path: Optional[str] = typer.Option(
        None, "--performance", help="JSON object: ticker -> {return_60d}."
    ),
    min_priority: int = typer.Option(0, "--min-priority", help="Drop recommendations below this level (0-3)."),
    momentum_shifts: bool = typer.Option(
        False, "--momentum-shifts", help="Also flag held assets whose momentum is shifting."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Generate portfolio recommendations, most urgent first."""
    from market_intel.models.asset import AssetPerformance, MarketSnapshot, Portfolio
    from market_intel.recommendations.engine import (
        EXTENDED_STAGES,
        STAGES,
        filter_by_priority,
        generate_recommendations,
    )

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    portfolio = _parse_or_exit(Portfolio, _read_json_or_exit(portfolio_path), "portfolio")
    market = (
        _parse_or_exit(MarketSnapshot, _read_json_or_exit(market_path), "market snapshot")
        if market_path else None
    )
    performance = None
    if performance_path:
        raw = _read_json_or_exit(performance_path)
        if not isinstance(raw, dict):
            typer.echo("[ERROR] Performance file must contain an object.", err=True)
            raise typer.Exit(code=1)
        performance = {
            ticker: _parse_or_exit(AssetPerformance, value, f"performance for {ticker}")
            for ticker, value in raw.items()
        }

    recs = generate_recommendations(
        portfolio, market, performance, config.recommendations,
        stages=EXTENDED_STAGES if momentum_shifts else STAGES,
    )
    recs = filter_by_priority(recs, min_priority)
    _emit([r.model_dump(mode="json", exclude_none=True) for r in recs])


@app.command("analyze-asset")
def analyze_asset(
    assets_path: str = typer.Option(..., "--assets", help="JSON array of scanned assets (peers)."),
    ticker: str = typer.Option(..., "--ticker", help="Asset to analyse."),
    market_path: Optional[str] = typer.Option(None, "--market", help="MarketSnapshot JSON file."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Per-asset insight report: regime impact, momentum, signal and risk."""
    from market_intel.models.asset import AssetSnapshot, MarketSnapshot
    from market_intel.recommendations.asset_insights import analyze_asset_ml

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    peers = _parse_or_exit(AssetSnapshot, _read_json_or_exit(assets_path), "assets")
    if not isinstance(peers, list):
        peers = [peers]
    asset = next((a for a in peers if a.ticker == ticker), None)
    if asset is None:
        typer.echo(f"[ERROR] Ticker '{ticker}' not found in {assets_path}", err=True)
        raise typer.Exit(code=1)

    market = (
        _parse_or_exit(MarketSnapshot, _read_json_or_exit(market_path), "market snapshot")
        if market_path else None
    )
    _emit(analyze_asset_ml(asset, market, peers, config.recommendations).to_dict())


if __name__ == "__main__":
    app()
