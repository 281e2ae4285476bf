"""
CLI entry point: simlab ingest | backtest | sweep | profiles | health.

Every command loads config from --config (default config.yaml) and prints a
human-readable report; run events go to stderr as JSON lines when
logging.structured_logs is on.
"""

import logging
import sys
from dataclasses import replace
from datetime import datetime, timezone

import click
import yaml
from dotenv import load_dotenv

from config import load_config

load_dotenv()

logger = logging.getLogger("simlab")


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s  %(message)s",
        stream=sys.stderr,
    )


@click.group()
@click.option("--config", "config_path", default="config.yaml", help="Path to config file.")
@click.pass_context
def cli(ctx: click.Context, config_path: str) -> None:
    """simlab: deterministic backtesting and execution simulation."""
    _setup_logging()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ---------- helpers ----------


def _parse_scalar(raw: str):
    """YAML scalar rules: 10 -> int, 0.5 -> float, true -> bool, anything else -> str."""
    value = yaml.safe_load(raw)
    return raw if isinstance(value, (dict, list)) or value is None else value


def _parse_params(pairs: tuple[str, ...]) -> dict:
    params = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--param")
        params[key.strip()] = _parse_scalar(raw.strip())
    return params


def _parse_grid(specs: tuple[str, ...]) -> dict:
    grid = {}
    for spec in specs:
        key, sep, raw = spec.partition("=")
        if not sep or not key.strip() or not raw.strip():
            raise click.BadParameter(f"expected key=v1,v2,..., got {spec!r}", param_hint="--grid")
        grid[key.strip()] = [_parse_scalar(v.strip()) for v in raw.split(",") if v.strip()]
    return grid


def _parse_date(raw: str | None) -> datetime | None:
    if raw is None:
        return None
    ts = datetime.fromisoformat(raw)
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


def _build_strategy(cfg, strategy_type: str | None, strategy_id: str | None, params: dict):
    from sim_core.contracts import RiskParameters, StrategySpec, StrategyType

    s = cfg.strategy
    type_name = (strategy_type or s.type).upper()
    try:
        stype = StrategyType(type_name)
    except ValueError:
        raise click.BadParameter(
            f"unknown strategy type {type_name!r}; choose from {[t.value for t in StrategyType]}",
            param_hint="--strategy-type",
        ) from None
    risk = None
    if s.stop_loss_pct is not None or s.take_profit_pct is not None:
        risk = RiskParameters(stop_loss_pct=s.stop_loss_pct, take_profit_pct=s.take_profit_pct)
    return StrategySpec(
        id=strategy_id or s.id,
        type=stype,
        name=type_name.replace("_", " ").title(),
        parameters={**s.parameters, **params},
        risk_parameters=risk,
    )


def _engine_config(cfg, seed: int | None, fill_model: str | None):
    """Apply CLI overrides and resolve custom fill-profile names."""
    from config.fill_profiles import load_fill_profiles, resolve_fill_model
    from execution.fill_model import FILL_MODEL_PRESETS, FillProfile

    bt = cfg.backtest
    if seed is not None:
        bt = replace(bt, random_seed=seed)
    if fill_model is not None:
        name = fill_model.upper()
        bt = replace(bt, fill_model=name if name in FILL_MODEL_PRESETS else FillProfile(name=name))
    if cfg.fill_profiles_path or bt.fill_model_name not in FILL_MODEL_PRESETS:
        profiles = load_fill_profiles(cfg.fill_profiles_path or None)
        bt = resolve_fill_model(bt, profiles)
    return bt


def _load_bars(cfg, csv_path: str | None, start_str: str | None, end_str: str | None) -> list:
    since, until = _parse_date(start_str), _parse_date(end_str)
    if csv_path:
        from data.csv_import import read_bars_csv

        bars = read_bars_csv(csv_path, symbol=cfg.symbol)
        return [b for b in bars if (since is None or b.timestamp >= since) and (until is None or b.timestamp <= until)]
    from data.bar_store import BarStore

    store = BarStore(cfg.data.bar_store_path)
    return store.get_bars(cfg.symbol, cfg.timeframe, since=since, until=until)


def _user_errors():
    from backtest.runner import BacktestRunError
    from config.fill_profiles import FillProfileError
    from config.loader import ConfigError
    from sim_core.clock import ClockError
    from sim_core.contracts import InvalidInputError

    return (BacktestRunError, ClockError, ConfigError, FillProfileError, InvalidInputError)


def _app_config(ctx: click.Context):
    """load_config with bad values reported as a usage error, not a traceback."""
    try:
        return load_config(ctx.obj["config_path"])
    except _user_errors() as exc:
        raise click.ClickException(str(exc)) from exc


# ---------- simlab ingest ----------


@cli.command()
@click.option("--csv", "csv_path", required=True, type=click.Path(exists=True, dir_okay=False), help="CSV file with OHLCV rows.")
@click.option("--symbol", default=None, help="Symbol to store under. Defaults to config value.")
@click.option("--timeframe", "tf_override", default=None, help="Override timeframe (e.g. 1d, 15m). Defaults to config value.")
@click.pass_context
def ingest(ctx: click.Context, csv_path: str, symbol: str | None, tf_override: str | None) -> None:
    """Import bars from CSV into the local bar store."""
    cfg = _app_config(ctx)
    from data.bar_store import BarStore
    from data.csv_import import read_bars_csv

    sym = symbol or cfg.symbol
    tf = tf_override or cfg.timeframe
    try:
        bars = read_bars_csv(csv_path, symbol=sym)
    except _user_errors() as exc:
        raise click.ClickException(str(exc)) from exc
    if not bars:
        click.echo("No rows in CSV; nothing stored.")
        return

    store = BarStore(cfg.data.bar_store_path)
    store.write_bars(sym, tf, bars)
    click.echo(f"Stored {len(bars)} bars in {cfg.data.bar_store_path}")
    click.echo(f"  Range: {bars[0].timestamp.isoformat()} -> {bars[-1].timestamp.isoformat()}")
    first, last = store.span(sym, tf)
    click.echo(f"  Store holds {store.count_bars(sym, tf)} {tf} bars: {first.isoformat()} -> {last.isoformat()}")


# ---------- simlab backtest ----------


@cli.command()
@click.option("--strategy-type", default=None, help="TREND_FOLLOWING | MEAN_REVERSION | BUY_AND_HOLD. Defaults to config.")
@click.option("--strategy-id", default=None, help="Strategy id (prefix of order ids). Defaults to config.")
@click.option("--param", "params", multiple=True, help="Strategy parameter override, key=value. Repeatable.")
@click.option("--seed", default=None, type=int, help="Random seed for the fill model (overrides config/env).")
@click.option("--fill-model", default=None, help="Fill profile name (CONSERVATIVE, STANDARD, AGGRESSIVE or custom).")
@click.option("--csv", "csv_path", default=None, type=click.Path(exists=True, dir_okay=False), help="Read bars from CSV instead of the store.")
@click.option("--start", "start_str", default=None, help="Start date filter (ISO).")
@click.option("--end", "end_str", default=None, help="End date filter (ISO).")
@click.option("--assess", is_flag=True, default=False, help="Grade the result against performance thresholds.")
@click.option("--trades/--no-trades", "show_trades", default=True, help="List every trade in the summary.")
@click.pass_context
def backtest(
    ctx: click.Context,
    strategy_type: str | None,
    strategy_id: str | None,
    params: tuple[str, ...],
    seed: int | None,
    fill_model: str | None,
    csv_path: str | None,
    start_str: str | None,
    end_str: str | None,
    assess: bool,
    show_trades: bool,
) -> None:
    """Run one backtest over stored (or CSV) bars and print the result."""
    cfg = _app_config(ctx)
    logging.getLogger("simlab").setLevel(cfg.logging.level)
    from backtest import BacktestEngine
    from cli.output import format_assessment, format_backtest_summary
    from cli.structured_log import StructuredEventLogger
    from sim_core.assessment import assess_strategy

    strategy = _build_strategy(cfg, strategy_type, strategy_id, _parse_params(params))
    events = StructuredEventLogger(strategy.id, enabled=cfg.logging.structured_logs)
    try:
        bt_cfg = _engine_config(cfg, seed, fill_model)
        bars = _load_bars(cfg, csv_path, start_str, end_str)
        if not bars:
            click.echo("No bars to replay. Run 'simlab ingest' first or pass --csv.")
            return
        click.echo(f"Running backtest: {strategy.id} ({strategy.type.value}) on {cfg.symbol} {cfg.timeframe}, {len(bars)} bars ...")
        result = BacktestEngine(bt_cfg).run(strategy, bars, event_callback=events.handle)
    except _user_errors() as exc:
        events.error(type(exc).__name__, str(exc))
        raise click.ClickException(str(exc)) from exc

    click.echo(format_backtest_summary(result, show_trades=show_trades))
    if assess:
        click.echo(format_assessment(assess_strategy(result)))


# ---------- simlab sweep ----------


@cli.command()
@click.option("--grid", "grid_specs", multiple=True, required=True, help="Parameter values, key=v1,v2,... Repeatable.")
@click.option("--strategy-type", default=None, help="Strategy type. Defaults to config.")
@click.option("--seed", default=None, type=int, help="Random seed shared by every run.")
@click.option("--fill-model", default=None, help="Fill profile name.")
@click.option("--workers", default=None, type=int, help="Thread pool size (default: executor default).")
@click.option("--csv", "csv_path", default=None, type=click.Path(exists=True, dir_okay=False), help="Read bars from CSV instead of the store.")
@click.option("--rank-by", default="sharpe_ratio", help="Metric used to pick the best run.")
@click.pass_context
def sweep(
    ctx: click.Context,
    grid_specs: tuple[str, ...],
    strategy_type: str | None,
    seed: int | None,
    fill_model: str | None,
    workers: int | None,
    csv_path: str | None,
    rank_by: str,
) -> None:
    """Backtest every combination of the given parameter values."""
    cfg = _app_config(ctx)
    from backtest.sweep import best_by, run_sweep
    from cli.output import format_sweep_table
    from sim_core.metrics import PerformanceMetrics

    if rank_by not in PerformanceMetrics.__dataclass_fields__:
        raise click.BadParameter(f"unknown metric {rank_by!r}", param_hint="--rank-by")
    grid = _parse_grid(grid_specs)
    strategy = _build_strategy(cfg, strategy_type, None, {})
    try:
        bt_cfg = _engine_config(cfg, seed, fill_model)
        bars = _load_bars(cfg, csv_path, None, None)
        if not bars:
            click.echo("No bars to replay. Run 'simlab ingest' first or pass --csv.")
            return
        results = run_sweep(strategy, bars, grid, bt_cfg, max_workers=workers)
    except _user_errors() as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(format_sweep_table(results))
    best = best_by(results, rank_by)
    if best is not None:
        label = ", ".join(f"{k}={v}" for k, v in best.parameters.items())
        click.echo(f"\nBest by {rank_by}: {label} ({getattr(best.result.metrics, rank_by):.4f})")
    else:
        click.echo("\nNo completed runs.")


# ---------- simlab profiles ----------


@cli.command()
@click.option("--file", "profiles_path", default=None, help="Custom fill-profile JSON (overrides config/env).")
@click.pass_context
def profiles(ctx: click.Context, profiles_path: str | None) -> None:
    """List fill profiles (built-in presets plus any custom file)."""
    from cli.output import format_profiles
    from config.fill_profiles import FillProfileError, load_fill_profiles

    path = profiles_path
    if path is None:
        try:
            path = load_config(ctx.obj["config_path"]).fill_profiles_path or None
        except FileNotFoundError:
            path = None
        except FillProfileError as exc:
            raise click.ClickException(str(exc)) from exc
    try:
        loaded = load_fill_profiles(path)
    except FillProfileError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(format_profiles(loaded))


# ---------- simlab health ----------


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check system health: config, fill profiles, bar data.

    Exit code 0 = healthy, 1 = unhealthy.
    """
    checks: list[tuple[str, bool, str]] = []

    try:
        cfg = load_config(ctx.obj["config_path"])
        checks.append(("config", True, f"loaded ({cfg.symbol} {cfg.timeframe})"))
    except Exception as e:
        checks.append(("config", False, str(e)))
        _print_health(checks)
        raise SystemExit(1)

    try:
        from config.fill_profiles import load_fill_profiles
        loaded = load_fill_profiles(cfg.fill_profiles_path or None)
        checks.append(("fill_profiles", True, f"validated ({', '.join(sorted(loaded))})"))
    except Exception as e:
        checks.append(("fill_profiles", False, str(e)))

    try:
        from data.bar_store import BarStore
        store = BarStore(cfg.data.bar_store_path)
        bar_count = store.count_bars(cfg.symbol, cfg.timeframe)
        if bar_count > 0:
            checks.append(("bars", True, f"{bar_count} {cfg.timeframe} bars"))
        else:
            checks.append(("bars", False, f"no {cfg.timeframe} bars for {cfg.symbol}"))
    except Exception as e:
        checks.append(("bars", False, str(e)))

    _print_health(checks)
    healthy = all(ok for _, ok, _ in checks)
    raise SystemExit(0 if healthy else 1)


def _print_health(checks: list[tuple[str, bool, str]]) -> None:
    for name, ok, detail in checks:
        status = "OK" if ok else "FAIL"
        click.echo(f"  [{status}] {name}: {detail}")
    healthy = all(ok for _, ok, _ in checks)
    click.echo(f"\nHealth: {'HEALTHY' if healthy else 'UNHEALTHY'}")


if __name__ == "__main__":
    cli()
