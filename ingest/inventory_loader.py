"""
Vehicle inventory loader.

Reads the dealership stock from CSV or JSON exports. Column names follow
the stock sheet (marca, modelo, version, ...); Spanish number formats
such as ``18.000`` or ``24.990,50`` are accepted for prices and mileage.
"""

import csv
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, field_validator

from funnel.states import CarType, parse_enum

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "si", "sí", "yes", "vendido"}


def parse_spanish_number(value: Any) -> Optional[float]:
    """``"24.990,50 €"`` -> ``24990.5``; blank or unparsable -> None."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = re.sub(r"[^\d,.\-]", "", str(value))
    if not text:
        return None
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    elif re.fullmatch(r"-?\d{1,3}(\.\d{3})+", text):
        text = text.replace(".", "")
    try:
        return float(text)
    except ValueError:
        return None


class VehicleRecord(BaseModel):
    """One row of the stock sheet."""
    marca: Optional[str] = None
    modelo: Optional[str] = None
    version: Optional[str] = None
    motor: Optional[str] = None
    carroceria: Optional[str] = None
    puertas: Optional[int] = None
    transmision: Optional[str] = None
    color: Optional[str] = None
    kilometros: Optional[int] = None
    matricula: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    precio_venta: Optional[float] = None
    sold: bool = False

    class Config:
        extra = "ignore"

    @field_validator(
        "marca", "modelo", "version", "motor", "carroceria", "transmision",
        "color", "matricula", "description", "url", mode="before",
    )
    @classmethod
    def _blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("precio_venta", mode="before")
    @classmethod
    def _price(cls, v):
        return parse_spanish_number(v)

    @field_validator("kilometros", "puertas", mode="before")
    @classmethod
    def _integer(cls, v):
        number = parse_spanish_number(v)
        return int(number) if number is not None else None

    @field_validator("type", mode="before")
    @classmethod
    def _car_type(cls, v):
        car_type = parse_enum(CarType, v)
        return car_type.value if car_type else None

    @field_validator("sold", mode="before")
    @classmethod
    def _sold(cls, v):
        if isinstance(v, bool):
            return v
        return str(v or "").strip().lower() in _TRUE_VALUES

    def to_columns(self) -> Dict[str, Any]:
        return self.model_dump()


class InventoryLoader:
    """Loads vehicles from CSV or JSON; rows that fail validation are skipped."""

    def load(self, file_path: Union[str, Path]) -> List[VehicleRecord]:
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Inventory file not found: {path}")
        suffix = path.suffix.lower()
        if suffix == ".csv":
            return self.load_from_csv(path)
        if suffix == ".json":
            return self.load_from_json(path)
        raise ValueError(f"Unsupported inventory format: {suffix}")

    def load_from_csv(self, file_path: Union[str, Path]) -> List[VehicleRecord]:
        with open(file_path, "r", encoding="utf-8-sig", newline="") as f:
            rows = list(csv.DictReader(f))
        return self._parse_rows(rows, Path(file_path).name)

    def load_from_json(self, file_path: Union[str, Path]) -> List[VehicleRecord]:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        # Handle both array and object with "vehicles" key
        if isinstance(data, dict):
            data = data.get("vehicles", [data])
        return self._parse_rows(data, Path(file_path).name)

    def _parse_rows(self, rows: List[Dict[str, Any]], source: str) -> List[VehicleRecord]:
        vehicles = []
        for i, row in enumerate(rows, start=1):
            normalized = {str(k).strip().lower(): v for k, v in row.items() if k}
            try:
                vehicle = VehicleRecord(**normalized)
            except ValueError as e:
                logger.warning(f"Failed to parse row {i} of {source}: {e}")
                continue
            if not (vehicle.marca or vehicle.modelo):
                logger.warning(f"Skipping row {i} of {source}: no marca or modelo")
                continue
            vehicles.append(vehicle)
        logger.info(f"Loaded {len(vehicles)} vehicles from {source}")
        return vehicles
