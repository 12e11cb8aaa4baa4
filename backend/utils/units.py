"""Numeric helpers for calorie and macro arithmetic."""
import math

KCAL_PER_G_PROTEIN = 4
KCAL_PER_G_CARBS = 4
KCAL_PER_G_FAT = 9


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up, unlike ``round``'s banker's rounding."""
    return int(math.floor(float(value) + 0.5))


def macro_grams(calories: float, protein_pct: float, carbs_pct: float, fat_pct: float) -> dict[str, int]:
    return {
        "protein_g": round_half_up(calories * (protein_pct / 100.0) / KCAL_PER_G_PROTEIN),
        "carbs_g": round_half_up(calories * (carbs_pct / 100.0) / KCAL_PER_G_CARBS),
        "fat_g": round_half_up(calories * (fat_pct / 100.0) / KCAL_PER_G_FAT),
    }


def calories_from_grams(protein_g: float, carbs_g: float, fat_g: float) -> float:
    return (
        float(protein_g) * KCAL_PER_G_PROTEIN
        + float(carbs_g) * KCAL_PER_G_CARBS
        + float(fat_g) * KCAL_PER_G_FAT
    )


def macro_percentages(calories: float, protein_g: float, carbs_g: float, fat_g: float) -> dict[str, int] | None:
    if not calories or calories <= 0:
        return None
    return {
        "protein": round_half_up(float(protein_g) * KCAL_PER_G_PROTEIN / calories * 100),
        "carbs": round_half_up(float(carbs_g) * KCAL_PER_G_CARBS / calories * 100),
        "fat": round_half_up(float(fat_g) * KCAL_PER_G_FAT / calories * 100),
    }
