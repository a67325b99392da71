"""
Export utilities for accumulated listing results.
"""
import logging
from typing import Iterable

import pandas as pd

from .models import Listing

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "id", "title", "price", "bedrooms", "bathrooms", "square_feet", "property_type",
    "status", "city", "images", "latitude", "longitude", "features", "created_at",
]


def listings_to_frame(listings: Iterable[Listing]) -> pd.DataFrame:
    """Tabular view of listings, in the order given."""
    rows = [x.to_row() for x in listings]
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def save_listings(listings: Iterable[Listing], out_path: str) -> int:
    """Save listings to CSV or Excel file. Returns the row count."""
    df = listings_to_frame(listings)
    if out_path.lower().endswith(".xlsx"):
        df.to_excel(out_path, index=False)
    else:
        df.to_csv(out_path, index=False)
    logger.info(f">>> Saved {len(df)} rows to {out_path}")
    return len(df)
