"""
Configuration management using Pydantic models loaded from YAML.
"""

from datetime import time
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .domain.exceptions import ConfigurationError
from .domain.models import WorkingHours, WorkingWindow, parse_wall_clock
from .domain.working_hours import ConfiguredWorkingHoursPolicy, TherapistSchedule


class EngineSettings(BaseModel):
    """Search and validation parameters of the scheduling engine."""
    step_minutes: int = 15
    min_duration_minutes: int = 15
    max_duration_minutes: int = 480
    max_shift_minutes: int = 480
    default_max_shift_minutes: int = 60
    horizon_days: int = 14
    default_limit: int = 3
    prefer_earlier_on_tie: bool = True
    suggest_alternatives: bool = True
    timeout_seconds: Optional[float] = None

    @field_validator("step_minutes", "min_duration_minutes", "default_limit")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError(f"must be greater than zero, got {value}")
        return value

    @field_validator("max_shift_minutes", "default_max_shift_minutes", "horizon_days")
    @classmethod
    def validate_not_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f"must not be negative, got {value}")
        return value

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {value}")
        return value

    @model_validator(mode="after")
    def validate_bounds(self) -> "EngineSettings":
        """Ensure the duration and shift bounds are consistent."""
        if self.max_duration_minutes < self.min_duration_minutes:
            raise ValueError("max_duration_minutes must not be below min_duration_minutes")
        if self.default_max_shift_minutes > self.max_shift_minutes:
            raise ValueError("default_max_shift_minutes must not exceed max_shift_minutes")
        return self


class DefaultsConfig(BaseModel):
    """Default working hours for therapists without their own schedule."""
    start_hour: int = 9
    end_hour: int = 17

    @field_validator("start_hour", "end_hour")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        """Validate hour is between 0 and 23."""
        if not 0 <= v <= 23:
            raise ValueError(f"Hour must be between 0 and 23, got {v}")
        return v

    @model_validator(mode="after")
    def validate_hours_order(self) -> "DefaultsConfig":
        """Ensure the configured window opens before it closes."""
        if self.end_hour <= self.start_hour:
            raise ValueError("end_hour must be later than start_hour")
        return self

    def get_start_time(self) -> time:
        """Get start time as time object."""
        return time(hour=self.start_hour, minute=0)

    def get_end_time(self) -> time:
        """Get end time as time object."""
        return time(hour=self.end_hour, minute=0)


class ScheduleEntry(BaseModel):
    """Working hours of a therapist on one weekday (0=Monday)."""
    weekday: int
    start: str
    end: str
    break_start: Optional[str] = None
    break_end: Optional[str] = None

    @field_validator("weekday")
    @classmethod
    def validate_weekday(cls, value: int) -> int:
        if value not in range(7):
            raise ValueError(f"weekday must be between 0 and 6, got {value}")
        return value

    @field_validator("start", "end", "break_start", "break_end")
    @classmethod
    def validate_wall_clock(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            parse_wall_clock(value)
        return value

    @model_validator(mode="after")
    def validate_order(self) -> "ScheduleEntry":
        start = parse_wall_clock(self.start)
        end = parse_wall_clock(self.end)
        if end <= start:
            raise ValueError(f"end {self.end} must be later than start {self.start}")

        if (self.break_start is None) != (self.break_end is None):
            raise ValueError("break_start and break_end must be given together")

        if self.break_start is not None:
            break_start = parse_wall_clock(self.break_start)
            break_end = parse_wall_clock(self.break_end)
            if not start <= break_start < break_end <= end:
                raise ValueError("break must lie within the working hours")
        return self

    def to_window(self) -> WorkingWindow:
        return WorkingWindow(
            weekday=self.weekday,
            start=parse_wall_clock(self.start),
            end=parse_wall_clock(self.end),
            break_start=parse_wall_clock(self.break_start) if self.break_start else None,
            break_end=parse_wall_clock(self.break_end) if self.break_end else None
        )


class TherapistConfig(BaseModel):
    """Therapist configuration."""
    id: str
    name: str  # Used as alias
    active: bool = True
    can_take_consultations: bool = True
    schedule: Optional[List[ScheduleEntry]] = None  # None: default working hours

    @field_validator("schedule")
    @classmethod
    def validate_unique_weekdays(cls, value: Optional[List[ScheduleEntry]]) -> Optional[List[ScheduleEntry]]:
        if value is None:
            return value
        weekdays = [entry.weekday for entry in value]
        duplicates = sorted({day for day in weekdays if weekdays.count(day) > 1})
        if duplicates:
            raise ValueError(f"Duplicate schedule entries for weekday(s) {duplicates}")
        return value

    def display_name(self) -> str:
        """Get display name."""
        return self.name

    def to_schedule(self) -> TherapistSchedule:
        windows: Optional[Dict[int, WorkingWindow]] = None
        if self.schedule is not None:
            windows = {entry.weekday: entry.to_window() for entry in self.schedule}
        return TherapistSchedule(
            therapist_id=self.id,
            windows=windows,
            active=self.active,
            can_take_consultations=self.can_take_consultations
        )


class AppConfig(BaseModel):
    """Application configuration."""
    engine: EngineSettings = Field(default_factory=EngineSettings)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    exclude_days: List[int] = Field(default_factory=lambda: [5, 6])  # Saturday, Sunday
    therapists: List[TherapistConfig] = Field(default_factory=list)
    bookings_file: Optional[Path] = None
    api_base_url: Optional[str] = None
    api_token: Optional[str] = None

    @field_validator("exclude_days")
    @classmethod
    def validate_exclude_days(cls, value: List[int]) -> List[int]:
        """Ensure weekdays are in valid range and deduplicated."""
        invalid_days = [day for day in value if day not in range(7)]
        if invalid_days:
            raise ValueError(f"exclude_days must be between 0 and 6, got {invalid_days}")
        # Preserve order while removing duplicates
        seen: set[int] = set()
        deduped: List[int] = []
        for day in value:
            if day not in seen:
                deduped.append(day)
                seen.add(day)
        return deduped

    @field_validator("therapists")
    @classmethod
    def validate_therapists(cls, value: List[TherapistConfig]) -> List[TherapistConfig]:
        """Ensure therapist ids and aliases are unique."""
        seen_ids: set[str] = set()
        seen_names: set[str] = set()
        for therapist in value:
            name_key = therapist.name.lower()
            if therapist.id in seen_ids:
                raise ValueError(f"Duplicate therapist id detected: {therapist.id}")
            if name_key in seen_names:
                raise ValueError(f"Duplicate therapist name detected: {therapist.name}")
            seen_ids.add(therapist.id)
            seen_names.add(name_key)
        return value

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ConfigurationError("Config file must contain a mapping at the root level.")

        try:
            config = cls(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration in {config_path}:\n{exc}") from exc

        # Relative bookings files are resolved next to the config file
        if config.bookings_file is not None and not config.bookings_file.is_absolute():
            config.bookings_file = config_path.parent / config.bookings_file

        return config

    def find_therapist(self, identifier: str) -> TherapistConfig | None:
        """Find a therapist by id or by name (alias)."""
        for therapist in self.therapists:
            if therapist.id == identifier or therapist.name.lower() == identifier.lower():
                return therapist
        return None

    def resolve_therapist(self, identifier: str) -> str:
        """
        Resolve a therapist identifier (id or name/alias) to a therapist id.

        Raises:
            ValueError: If identifier cannot be resolved
        """
        therapist = self.find_therapist(identifier)
        if therapist:
            return therapist.id

        raise ValueError(
            f"Unknown therapist identifier: '{identifier}'. "
            f"Use a configured therapist id or name."
        )

    def working_hours(self) -> WorkingHours:
        return WorkingHours(
            start_time=self.defaults.get_start_time(),
            end_time=self.defaults.get_end_time(),
            exclude_weekdays=self.exclude_days
        )

    def build_working_hours_policy(self) -> ConfiguredWorkingHoursPolicy:
        schedules = {therapist.id: therapist.to_schedule() for therapist in self.therapists}
        return ConfiguredWorkingHoursPolicy(schedules=schedules, default_hours=self.working_hours())


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
