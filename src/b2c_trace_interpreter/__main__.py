"""Command line entry point for b2c-trace-interpreter.

Reads a telemetry export from disk, normalizes the rows into log records,
groups them into user flows and interprets them:
1.  `flows` analyzes every flow through the background scheduler and prints
    one summary line per flow.
2.  `trace` interprets a single flow and prints its step tree.
"""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, List, Optional

import typer

# Load .env file if present (before any config access)
try:
    from dotenv import load_dotenv, find_dotenv

    env_file = find_dotenv(usecwd=True) or find_dotenv()
    if env_file:
        load_dotenv(env_file)
        logging.debug("Loaded environment from %s", env_file)
except Exception:
    pass

from .analyzer import analyze_flow
from .config import get_settings
from .grouping import group_into_flows
from .models.telemetry import LogRecord
from .models.trace import FlowAnalysisResult, FlowNode, FlowNodeType, StepData, UserFlow
from .normalizer import normalize_table
from .scheduler import FlowAnalysisScheduler

app = typer.Typer(help="Identity-provider journey trace interpreter CLI")
logger = logging.getLogger(__name__)


def _rows_source(payload: Any) -> Any:
    """Pick the row source out of a parsed export file.

    Accepts a query API response (`{"tables": [...]}`, first table wins unless
    one is named `PrimaryResult`), a single table with `columns`/`rows`, or a
    plain list of row objects.
    """
    if isinstance(payload, dict) and isinstance(payload.get("tables"), list):
        tables = [t for t in payload["tables"] if isinstance(t, dict)]
        if not tables:
            return []
        primary = next((t for t in tables if t.get("name") == "PrimaryResult"), None)
        return primary or tables[0]
    if isinstance(payload, dict) and "rows" in payload:
        return payload
    if isinstance(payload, list):
        return payload
    raise typer.BadParameter("expected a query response, a table or a list of rows")


def _load_records(path: Path) -> List[LogRecord]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise typer.BadParameter(f"cannot read {path}: {e}") from e
    records = normalize_table(_rows_source(payload))
    logger.info("Normalized %d log records from %s", len(records), path)
    return records


def _flow_summary(result: FlowAnalysisResult) -> str:
    flow = result.flow
    status = "error" if flow.has_errors else "cancelled" if flow.cancelled else "completed" if flow.completed else "open"
    parts = [
        flow.id,
        flow.policy_id,
        flow.start_time.isoformat(),
        f"steps={flow.step_count}",
        status,
    ]
    if flow.user_email:
        parts.append(flow.user_email)
    return "  ".join(parts)


def _tree_lines(node: FlowNode, depth: int = 0) -> List[str]:
    label = node.name
    if isinstance(node.data, StepData):
        data = node.data
        label = f"{node.name} [{data.result.value}] {data.event_type.value}"
        if data.duration is not None:
            label += f" {data.duration}ms"
        if data.selected_option:
            label += f" -> {data.selected_option}"
    elif node.type != FlowNodeType.ROOT:
        label = f"{node.type.value}: {node.name}"
    lines = ["  " * depth + label]
    for child in node.children:
        lines.extend(_tree_lines(child, depth + 1))
    return lines


@app.callback()
def main() -> None:  # pragma: no cover - simple callback
    """b2c-trace-interpreter CLI.

    Use a subcommand like 'flows' or 'trace'.
    """
    pass


@app.command(help="Group an export into user flows and analyze all of them.")
def flows(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON telemetry export"),
    split_on_auth_restart: Optional[bool] = typer.Option(
        None,
        "--split-on-auth-restart/--no-split-on-auth-restart",
        help="Start a new flow at every repeated Event:AUTH. If not specified, uses SPLIT_ON_AUTH_RESTART.",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print enriched flows as JSON"),
) -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)
    records = _load_records(path)
    split = settings.SPLIT_ON_AUTH_RESTART if split_on_auth_restart is None else split_on_auth_restart
    user_flows = group_into_flows(records, split_on_auth_restart=split)

    scheduler = FlowAnalysisScheduler(cache={}, settings=settings)
    asyncio.run(scheduler.start(records, user_flows))

    results: List[FlowAnalysisResult] = []
    for flow in user_flows:
        result = scheduler.get(flow.id)
        if result is None:
            logger.warning("Flow %s was not analyzed", flow.id)
            continue
        results.append(result)

    if as_json:
        typer.echo(json.dumps([r.flow.model_dump(mode="json") for r in results], indent=2))
        return
    for result in results:
        typer.echo(_flow_summary(result))
    typer.echo(f"Analyzed {len(results)} of {len(user_flows)} flow(s).")


def _find_flow(user_flows: List[UserFlow], flow_id: str) -> UserFlow:
    for flow in user_flows:
        if flow.id == flow_id or flow.correlation_id == flow_id:
            return flow
    raise typer.BadParameter(f"no flow with id {flow_id!r}", param_hint="--flow-id")


@app.command(help="Print the interpreted step tree of one flow.")
def trace(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON telemetry export"),
    flow_id: str = typer.Option(..., "--flow-id", help="Flow id or correlation id"),
    as_json: bool = typer.Option(False, "--json", help="Print the full trace result as JSON"),
) -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)
    records = _load_records(path)
    flow = _find_flow(group_into_flows(records, split_on_auth_restart=settings.SPLIT_ON_AUTH_RESTART), flow_id)
    result = analyze_flow(records, flow, settings=settings)

    if as_json:
        typer.echo(result.trace.model_dump_json(indent=2))
        return
    for line in _tree_lines(result.trace.root):
        typer.echo(line)
    for warning in result.trace.warnings:
        typer.echo(f"warning: {warning}")
    if result.trace.fatal_error:
        typer.echo(f"fatal: {result.trace.fatal_error}")


if __name__ == "__main__":  # pragma: no cover
    app()
