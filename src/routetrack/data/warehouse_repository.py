"""Warehouse loader with database-first approach, falling back to an Excel workbook."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from openpyxl import load_workbook

from ..config import settings
from ..db.supabase import get_supabase_client
from ..models.domain import TrafficScenario, Warehouse

REQUIRED_COLUMNS = {"ID", "Name", "Latitude", "Longitude"}

logger = logging.getLogger(__name__)


def _traffic_scenario(value: object) -> TrafficScenario:
    try:
        return TrafficScenario(str(value).strip().lower())
    except ValueError:
        return TrafficScenario.BEST_GUESS


def _load_warehouses_from_database() -> tuple[Warehouse, ...] | None:
    """Load warehouses from Supabase. Returns None if database not available or empty."""
    supabase = get_supabase_client()
    if not supabase:
        return None

    try:
        response = supabase.table("warehouses").select("*").execute()
        if not response.data:
            return None

        warehouses: list[Warehouse] = []
        for row in response.data:
            try:
                warehouses.append(
                    Warehouse(
                        warehouse_id=str(row["id"]),
                        name=str(row.get("name") or row["id"]),
                        latitude=float(row["latitude"]),
                        longitude=float(row["longitude"]),
                        full_address=row.get("full_address"),
                        traffic_scenario=_traffic_scenario(row.get("traffic_scenario")),
                    )
                )
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping invalid warehouse row: {e}")
                continue

        return tuple(warehouses) if warehouses else None
    except Exception as e:
        logger.debug(f"Warehouse query failed, falling back to file: {e}")
        return None


def _load_warehouses_from_file(source: Path | None = None) -> tuple[Warehouse, ...]:
    """Load warehouses from the Excel workbook."""
    workbook_path = source or settings.warehouses_file
    if not workbook_path.exists():
        raise FileNotFoundError(f"Warehouse workbook not found: {workbook_path}")

    wb = load_workbook(workbook_path, data_only=True, read_only=True)
    sheet = wb.active
    rows = sheet.iter_rows(min_row=1, values_only=True)
    header = next(rows, None)
    if header is None:
        raise ValueError(f"Warehouse workbook '{workbook_path}' is empty.")

    header_map = {name: idx for idx, name in enumerate(header)}
    missing_columns = REQUIRED_COLUMNS - set(header_map)
    if missing_columns:
        raise ValueError(f"Warehouse workbook missing columns: {', '.join(sorted(missing_columns))}")

    address_idx = header_map.get("Address")
    scenario_idx = header_map.get("TrafficScenario")
    warehouses: list[Warehouse] = []
    for row in rows:
        warehouse_id = row[header_map["ID"]]
        if not warehouse_id:
            continue
        warehouses.append(
            Warehouse(
                warehouse_id=str(warehouse_id).strip(),
                name=str(row[header_map["Name"]] or warehouse_id).strip(),
                latitude=float(row[header_map["Latitude"]]),
                longitude=float(row[header_map["Longitude"]]),
                full_address=str(row[address_idx]).strip() if address_idx is not None and row[address_idx] else None,
                traffic_scenario=_traffic_scenario(row[scenario_idx]) if scenario_idx is not None else TrafficScenario.BEST_GUESS,
            )
        )
    wb.close()
    return tuple(warehouses)


@lru_cache(maxsize=1)
def get_warehouses(source: Path | None = None) -> tuple[Warehouse, ...]:
    """Get warehouses from the database first, fall back to the workbook if needed."""
    db_warehouses = _load_warehouses_from_database()
    if db_warehouses:
        return db_warehouses
    return _load_warehouses_from_file(source)
