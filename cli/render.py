from __future__ import annotations

from typing import Any, Dict, Iterable

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _summary_pairs(summary: Dict[str, Any]) -> list[tuple[str, Any]]:
    return [
        ("total_distance", summary.get("total_distance")),
        ("total_consumption", summary.get("total_consumption")),
        ("avg_distance", summary.get("avg_distance")),
        ("avg_consumption", summary.get("avg_consumption")),
        ("avg_consumption_per_km", summary.get("avg_consumption_per_km")),
        ("online", summary.get("online_count")),
        ("offline", summary.get("offline_count")),
        ("persisted", summary.get("persisted_count")),
        ("error", summary.get("error_count")),
    ]


def render_collection(payload: Dict[str, Any]) -> None:
    echo_heading("Fleet Summary")
    echo_key_values(_summary_pairs(payload.get("summary") or {}))
    if payload.get("cancelled"):
        typer.secho("Collection was cancelled; results are partial.", fg=typer.colors.YELLOW)

    readings = payload.get("readings") or []
    typer.echo()
    echo_heading("Daily Readings")
    if readings:
        for reading in readings:
            typer.echo(
                f"  - {reading.get('date')} {reading.get('device_id')} "
                f"[{reading.get('status')}] km={reading.get('daily_mileage')} "
                f"kwh={reading.get('daily_consumption')} "
                f"kwh/km={reading.get('consumption_per_km')}"
            )
    else:
        typer.echo("No report-ready readings.")

    devices = payload.get("devices") or {}
    if devices:
        typer.echo()
        echo_heading("Per Device")
        for device_id, summary in devices.items():
            typer.echo(
                f"  - {device_id}: distance={summary.get('total_distance')} "
                f"consumption={summary.get('total_consumption')} "
                f"kwh/km={summary.get('avg_consumption_per_km')}"
            )


def render_snapshots(payload: Dict[str, Any]) -> None:
    echo_heading("Snapshots")
    echo_key_values([("total_devices", payload.get("total_devices"))])
    snapshots = payload.get("snapshots") or []
    if not snapshots:
        typer.echo("No snapshots stored.")
        return
    for snapshot in snapshots:
        typer.echo(
            f"  - {snapshot.get('device_id')}: date={snapshot.get('date')} "
            f"mileage={snapshot.get('cumulative_mileage')} "
            f"consumption={snapshot.get('cumulative_consumption')} "
            f"saved_at={snapshot.get('saved_at')}"
        )
