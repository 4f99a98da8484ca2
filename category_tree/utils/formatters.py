# category_tree/utils/formatters.py
import re
import unicodedata
from datetime import datetime
from typing import Iterable
import pytz
from ..config import Config

PATH_SEPARATOR = " > "

def slugify(name: str) -> str:
    """Lowercase, hyphenated form of a category name"""
    value = unicodedata.normalize("NFKC", name).lower().strip()
    value = re.sub(r"[^\w\s-]", "", value)
    value = re.sub(r"[\s_-]+", "-", value)
    return value.strip("-")

def format_full_path(names: Iterable[str]) -> str:
    """Join category names root-first: Electronics > Smartphones > iPhone"""
    return PATH_SEPARATOR.join(names)

def format_datetime(dt: datetime) -> str:
    """Format a timestamp in the configured timezone"""
    local_tz = pytz.timezone(Config.TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    local_time = dt.astimezone(local_tz)
    return local_time.strftime("%Y-%m-%d %H:%M:%S")
