"""Scheduling services: zone math, validation, conflict detection and the lifecycle manager."""

from .zone_boundary import BusinessZone  # noqa: F401
from .store import AppointmentStore, MemoryStore  # noqa: F401
from .supabase_store import SupabaseStore  # noqa: F401
from .slot_validator import SlotValidator  # noqa: F401
from .conflict_detector import ConflictDetector, overlaps  # noqa: F401
from .lifecycle import UNCHANGED, AppointmentManager  # noqa: F401
