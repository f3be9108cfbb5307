from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from insight_core.normalize import Record


def _marker(record: Record) -> Dict[str, Any]:
    lat, lon = record.coordinates  # type: ignore[misc]
    city = record.text("city")
    spend = record.value("spend")
    tooltip = f"{record.name} - {city} ${spend:,.0f}" if city else f"{record.name} ${spend:,.0f}"
    return {
        "id": record.id,
        "name": record.name,
        "lat": lat,
        "lon": lon,
        "city": city,
        "spend": spend,
        "tooltip": tooltip,
    }


def map_markers(records: Sequence[Record], highlighted: Optional[Sequence[int]] = None) -> Dict[str, Any]:
    """One marker per record with coordinates; records without them are left off the map."""
    wanted = set(highlighted or ())
    markers: List[Dict[str, Any]] = []
    for record in records:
        if record.coordinates is None:
            continue
        marker = _marker(record)
        marker["highlighted"] = record.id in wanted
        markers.append(marker)

    bounds = None
    if markers:
        lats = [m["lat"] for m in markers]
        lons = [m["lon"] for m in markers]
        bounds = {"south": min(lats), "west": min(lons), "north": max(lats), "east": max(lons)}
    return {
        "markers": markers,
        "bounds": bounds,
        "without_coordinates": len(records) - len(markers),
    }


def record_detail(record: Record) -> Dict[str, Any]:
    """The "portfolio" card shown when a marker or table row is clicked."""
    lat, lon = record.coordinates if record.coordinates is not None else (None, None)
    return {
        "id": record.id,
        "name": record.name,
        "city": record.text("city"),
        "region": record.text("region"),
        "payment_type": record.text("payment_type"),
        "total_spend": record.value("spend"),
        "total_payments": record.value("payments"),
        "invoices": int(record.value("invoice_count")),
        "has_purchase_order": bool(record.flags.get("has_purchase_order", False)),
        "date": record.date.date().isoformat() if record.date is not None else None,
        "lat": lat,
        "lon": lon,
    }
