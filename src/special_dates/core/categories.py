"""Category metadata lookup table."""

from typing import NamedTuple

from ..models.special_date import Category


class CategoryInfo(NamedTuple):
    """Display metadata for a category."""

    title: str
    emoji: str
    default_label: str


CATEGORY_METADATA: dict[Category, CategoryInfo] = {
    Category.BIRTHDAY: CategoryInfo("Birthday", "🎂", "Birthday"),
    Category.ANNIVERSARY: CategoryInfo("Anniversary", "💍", "Anniversary"),
    Category.GRADUATION: CategoryInfo("Graduation", "🎓", "Graduation"),
    Category.WEDDING: CategoryInfo("Wedding", "💒", "Wedding"),
    Category.CUSTOM: CategoryInfo("Your Own Occasion", "🎉", "Special Day"),
}

