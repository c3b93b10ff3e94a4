class WeightConverter:
    """Utility for converting between kg and lb."""

    LB_TO_KG = 0.453592

    @staticmethod
    def lb_to_kg(lb: float) -> float:
        return lb * WeightConverter.LB_TO_KG

    @staticmethod
    def to_kg(weight: float, unit: str) -> float:
        """Return ``weight`` in kg; ``unit`` is ``"kg"`` or ``"lbs"``."""
        if unit == "lbs":
            return WeightConverter.lb_to_kg(weight)
        return weight
