from typing import Iterable


class MathTools:
    """Provides essential mathematical utilities for workout calculations."""

    @staticmethod
    def clamp(value: float, min_value: float, max_value: float) -> float:
        """Clamp ``value`` to the inclusive range [min_value, max_value]."""
        if min_value > max_value:
            raise ValueError("min_value must not exceed max_value")
        return max(min_value, min(value, max_value))

    @staticmethod
    def volume(sets: Iterable[tuple[int, float]]) -> float:
        """Compute training volume as the sum of reps times weight."""
        vol = 0.0
        for reps, weight in sets:
            vol += reps * weight
        return vol

    @staticmethod
    def volume_delta(
        old_weight: float, old_reps: int, new_weight: float, new_reps: int
    ) -> float:
        """Return the change in volume when one set is edited."""
        return new_weight * new_reps - old_weight * old_reps

    @staticmethod
    def beats(weight: float, reps: int, other_weight: float, other_reps: int) -> bool:
        """Return ``True`` if (weight, reps) ranks above (other_weight, other_reps).

        Higher weight wins outright; at equal weight more reps wins.
        """
        if weight > other_weight:
            return True
        return weight == other_weight and reps > other_reps

    @staticmethod
    def percent(part: float, whole: float) -> float:
        """Return ``part`` as a percentage of ``whole`` clamped to [0, 100]."""
        if whole <= 0:
            return 0.0
        return MathTools.clamp(part / whole * 100.0, 0.0, 100.0)
