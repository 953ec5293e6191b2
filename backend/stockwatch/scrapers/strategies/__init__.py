"""Evidence extraction strategies, in precedence order."""

from .platform_api import PlatformApiStrategy, interpret_product_json, is_unambiguously_sold_out
from .structured_data import read_structured_data
from .selectors import read_selectors, is_button_unavailable, SOLD_OUT_BADGES
from .rendered import RenderedStrategy, read_rendered_html

__all__ = [
    "PlatformApiStrategy",
    "interpret_product_json",
    "is_unambiguously_sold_out",
    "read_structured_data",
    "read_selectors",
    "is_button_unavailable",
    "SOLD_OUT_BADGES",
    "RenderedStrategy",
    "read_rendered_html",
]
