"""
Fraud Signal Service - rule checks on ritual proof events

Runs synchronously on every appended ritual event, before the event is
offered for human verification. Evaluation is pure: the result depends
only on the new event, the booking's earlier events, the other events
sharing its media hash, and the policy. There is no clock and no
randomness, so the same inputs always give the same flag.

Rules, in priority order (the first one triggered becomes flag_reason):
1. DuplicateMedia     - media hash already recorded for a different booking
                        or beneficiary
2. DeviceMismatch     - device fingerprint differs from the previous step of
                        the same booking, with no stated reason
3. ImpossibleTravel   - implied speed from the previous step exceeds
                        max_travel_speed_kmh
4. MissingAttribution - a step that must name the beneficiary did not
"""
import enum
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from badal_trust.config import PolicyConfig, get_policy

logger = logging.getLogger(__name__)


class FraudSignal(str, enum.Enum):
    DUPLICATE_MEDIA = "DuplicateMedia"
    DEVICE_MISMATCH = "DeviceMismatch"
    IMPOSSIBLE_TRAVEL = "ImpossibleTravel"
    MISSING_ATTRIBUTION = "MissingAttribution"


RULE_PRIORITY = [
    FraudSignal.DUPLICATE_MEDIA,
    FraudSignal.DEVICE_MISMATCH,
    FraudSignal.IMPOSSIBLE_TRAVEL,
    FraudSignal.MISSING_ATTRIBUTION,
]


@dataclass
class FraudAssessment:
    signals: List[FraudSignal] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_flagged(self) -> bool:
        return bool(self.signals)

    @property
    def flag_reason(self) -> Optional[str]:
        return self.signals[0].value if self.signals else None


class FraudSignalService:
    """Rule engine over ritual proof events"""

    def __init__(self, policy: Optional[PolicyConfig] = None):
        self._policy = policy

    @property
    def policy(self) -> PolicyConfig:
        return self._policy or get_policy()

    def evaluate(
        self,
        event: Any,
        prior_events: Sequence[Any],
        hash_matches: Sequence[Any] = ()
    ) -> FraudAssessment:
        """
        Evaluate a new event.

        Args:
            event: the event being appended
            prior_events: earlier events of the same booking, in step order
            hash_matches: previously recorded events with the same media hash
        """
        assessment = FraudAssessment()
        previous = prior_events[-1] if prior_events else None

        checks = {
            FraudSignal.DUPLICATE_MEDIA: lambda: self._check_duplicate_media(event, hash_matches),
            FraudSignal.DEVICE_MISMATCH: lambda: self._check_device_mismatch(event, previous),
            FraudSignal.IMPOSSIBLE_TRAVEL: lambda: self._check_impossible_travel(event, previous),
            FraudSignal.MISSING_ATTRIBUTION: lambda: self._check_attribution(event),
        }

        for signal in RULE_PRIORITY:
            result = checks[signal]()
            if result["triggered"]:
                assessment.signals.append(signal)
                assessment.details[signal.value] = {
                    k: v for k, v in result.items() if k != "triggered"
                }

        return assessment

    def _check_duplicate_media(self, event: Any, hash_matches: Sequence[Any]) -> Dict[str, Any]:
        """One recording reused across claimed rituals."""
        if not event.media_hash:
            return {"triggered": False}

        conflicts = [
            m for m in hash_matches
            if m.media_hash == event.media_hash and (
                m.booking_id != event.booking_id
                or m.beneficiary_id != event.beneficiary_id
            )
        ]
        if conflicts:
            return {
                "triggered": True,
                "conflicting_bookings": sorted({m.booking_id for m in conflicts}),
            }
        return {"triggered": False}

    def _check_device_mismatch(self, event: Any, previous: Optional[Any]) -> Dict[str, Any]:
        """Device switched mid-rite without an operational justification."""
        if previous is None or not event.device_fingerprint or not previous.device_fingerprint:
            return {"triggered": False}
        if event.device_fingerprint == previous.device_fingerprint:
            return {"triggered": False}
        if event.device_change_reason and event.device_change_reason.strip():
            return {"triggered": False}
        return {
            "triggered": True,
            "previous_step": previous.ritual_step,
        }

    def _check_impossible_travel(self, event: Any, previous: Optional[Any]) -> Dict[str, Any]:
        """Implied speed between consecutive steps exceeds the policy limit."""
        if previous is None:
            return {"triggered": False}
        if None in (event.geo_lat, event.geo_lng, previous.geo_lat, previous.geo_lng):
            return {"triggered": False}

        distance_km = self._haversine_distance(
            previous.geo_lat, previous.geo_lng, event.geo_lat, event.geo_lng
        )
        # Reported GPS accuracy (metres) on both fixes is allowed as slack
        tolerance_km = ((previous.geo_accuracy or 0) + (event.geo_accuracy or 0)) / 1000.0
        effective_km = max(0.0, distance_km - tolerance_km)
        if effective_km == 0:
            return {"triggered": False, "distance_km": round(distance_km, 3)}

        hours = (event.timestamp - previous.timestamp).total_seconds() / 3600
        if hours <= 0:
            return {
                "triggered": True,
                "distance_km": round(distance_km, 3),
                "hours_elapsed": hours,
            }

        speed_kmh = effective_km / hours
        if speed_kmh > self.policy.max_travel_speed_kmh:
            return {
                "triggered": True,
                "distance_km": round(distance_km, 3),
                "hours_elapsed": round(hours, 4),
                "speed_kmh": round(speed_kmh, 1),
            }
        return {"triggered": False, "speed_kmh": round(speed_kmh, 1)}

    def _check_attribution(self, event: Any) -> Dict[str, Any]:
        """Steps that must be performed in the beneficiary's name."""
        if event.ritual_step in self.policy.attribution_required_steps and not event.beneficiary_name_mentioned:
            return {"triggered": True, "step": event.ritual_step}
        return {"triggered": False}

    @staticmethod
    def _haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """Calculate distance between two GPS coordinates in km."""
        R = 6371  # Earth's radius in km

        lat1_rad = math.radians(lat1)
        lat2_rad = math.radians(lat2)
        delta_lat = math.radians(lat2 - lat1)
        delta_lon = math.radians(lon2 - lon1)

        a = (math.sin(delta_lat / 2) ** 2 +
             math.cos(lat1_rad) * math.cos(lat2_rad) *
             math.sin(delta_lon / 2) ** 2)
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

        return R * c


fraud_signal_service = FraudSignalService()
