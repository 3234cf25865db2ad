from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from qr_attendance.models import Coordinates
from qr_attendance.utils.geo import InvalidCoordinates, parse_coordinates

logger = logging.getLogger(__name__)

MANUAL_LOCATION_KEY = "manual_location"
SECTION_DAY_NUMBERS_KEY = "section_day_numbers"
FIRST_DAY_NUMBER = 1

def _default_state() -> Dict[str, Any]:
	return {
		MANUAL_LOCATION_KEY: None,
		SECTION_DAY_NUMBERS_KEY: {},
	}


@dataclass
class LocalStateStore:
	"""Persist the manual-location fallback and per-section day numbers in a JSON file."""

	state_file: Path
	_data: Dict[str, Any] = field(init=False, default_factory=dict)

	def __post_init__(self) -> None:
		self.state_file = Path(self.state_file).expanduser()
		self.state_file.parent.mkdir(parents=True, exist_ok=True)
		self.reload()

	# ------------------------------------------------------------------
	# Public API
	# ------------------------------------------------------------------
	@property
	def data(self) -> Dict[str, Any]:
		return json.loads(json.dumps(self._data))

	def reload(self) -> None:
		combined = _default_state()
		combined.update(self._load_json(self.state_file))
		if not isinstance(combined.get(SECTION_DAY_NUMBERS_KEY), dict):
			combined[SECTION_DAY_NUMBERS_KEY] = {}
		self._data = combined

	def get_manual_location(self) -> Optional[Coordinates]:
		self.reload()
		raw = self._data.get(MANUAL_LOCATION_KEY)
		if raw is None:
			return None

		try:
			if not isinstance(raw, dict):
				raise InvalidCoordinates("Stored location is not an object.")
			latitude, longitude = parse_coordinates(raw.get("latitude"), raw.get("longitude"))
		except InvalidCoordinates:
			logger.warning("Invalid manual location data found in %s. Clearing.", self.state_file)
			self.clear_manual_location()
			return None

		return Coordinates(latitude, longitude)

	def set_manual_location(self, coordinates: Coordinates) -> None:
		self.reload()
		self._data[MANUAL_LOCATION_KEY] = coordinates.to_payload()
		self._persist()

	def clear_manual_location(self) -> None:
		self.reload()
		self._data[MANUAL_LOCATION_KEY] = None
		self._persist()

	def get_day_number(self, section_id: str) -> int:
		self.reload()
		value = self._data[SECTION_DAY_NUMBERS_KEY].get(section_id)
		try:
			day_number = int(value)
		except (TypeError, ValueError):
			return FIRST_DAY_NUMBER
		return day_number if day_number >= FIRST_DAY_NUMBER else FIRST_DAY_NUMBER

	def remember_day_number(self, section_id: str, day_number: int) -> int:
		"""Record ``day_number`` for the section unless a later one is already stored."""

		current = self.get_day_number(section_id)
		if day_number > current:
			self._data[SECTION_DAY_NUMBERS_KEY][section_id] = int(day_number)
			self._persist()
			return int(day_number)
		if section_id not in self._data[SECTION_DAY_NUMBERS_KEY]:
			self._data[SECTION_DAY_NUMBERS_KEY][section_id] = current
			self._persist()
		return current

	def advance_day_number(self, section_id: str) -> int:
		# get_day_number re-reads the file so the increment never uses a stale value.
		next_day = self.get_day_number(section_id) + 1
		self._data[SECTION_DAY_NUMBERS_KEY][section_id] = next_day
		self._persist()
		return next_day

	# ------------------------------------------------------------------
	# Internal helpers
	# ------------------------------------------------------------------
	def _persist(self) -> None:
		with self.state_file.open("w", encoding="utf-8") as handle:
			json.dump(self._data, handle, indent=2)

	@staticmethod
	def _load_json(path: Path) -> Dict[str, Any]:
		try:
			if path.exists():
				with path.open("r", encoding="utf-8") as handle:
					loaded = json.load(handle)
				if isinstance(loaded, dict):
					return loaded
				logger.warning("Ignoring local state in %s: expected a JSON object.", path)
		except (OSError, ValueError) as exc:
			logger.warning("Failed to load local state from %s: %s", path, exc)
		return {}
