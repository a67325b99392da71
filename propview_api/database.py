"""
Database operations and connection management.
"""
import json
import logging
import math
import sqlite3
import uuid
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from .config import config

logger = logging.getLogger(__name__)

DDL_PROPERTIES = """
CREATE TABLE IF NOT EXISTS properties (
  id TEXT PRIMARY KEY,
  title TEXT NOT NULL,
  description TEXT,
  price REAL NOT NULL,
  property_type TEXT NOT NULL,
  status TEXT NOT NULL,
  bedrooms INTEGER NOT NULL,
  bathrooms INTEGER NOT NULL,
  square_feet INTEGER NOT NULL,
  address TEXT,
  city TEXT,
  state TEXT,
  zip_code TEXT,
  latitude REAL,
  longitude REAL,
  images TEXT DEFAULT '[]',
  featured INTEGER DEFAULT 0,
  has_garage INTEGER DEFAULT 0,
  has_pool INTEGER DEFAULT 0,
  has_balcony INTEGER DEFAULT 0,
  has_garden INTEGER DEFAULT 0,
  has_air_conditioning INTEGER DEFAULT 0,
  has_fireplace INTEGER DEFAULT 0,
  has_pets_allowed INTEGER DEFAULT 0,
  agent_id TEXT,
  created_at TEXT DEFAULT (datetime('now')),
  updated_at TEXT DEFAULT (datetime('now'))
);
"""

DDL_FAVORITES = """
CREATE TABLE IF NOT EXISTS property_favorites (
  id TEXT PRIMARY KEY,
  property_id TEXT NOT NULL REFERENCES properties(id),
  user_id TEXT NOT NULL,
  created_at TEXT DEFAULT (datetime('now')),
  UNIQUE (property_id, user_id)
);
"""

DDL_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_properties_created ON properties(created_at);",
    "CREATE INDEX IF NOT EXISTS idx_properties_price ON properties(price);",
    "CREATE INDEX IF NOT EXISTS idx_favorites_user ON property_favorites(user_id);",
]

# Query-string flag name -> column
FEATURE_COLUMNS = {
    "hasGarage": "has_garage",
    "hasPool": "has_pool",
    "hasBalcony": "has_balcony",
    "hasGarden": "has_garden",
    "hasAirConditioning": "has_air_conditioning",
    "hasFireplace": "has_fireplace",
    "hasPetsAllowed": "has_pets_allowed",
}

BOOL_COLUMNS = ("featured",) + tuple(FEATURE_COLUMNS.values())

PROPERTY_COLUMNS = (
    "id", "title", "description", "price", "property_type", "status", "bedrooms",
    "bathrooms", "square_feet", "address", "city", "state", "zip_code", "latitude",
    "longitude", "images", "featured", "agent_id",
) + tuple(FEATURE_COLUMNS.values())


def distance_km(lat1, lon1, lat2, lon2) -> Optional[float]:
    """Great-circle distance; registered as an SQL function."""
    if None in (lat1, lon1, lat2, lon2):
        return None
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = rlat2 - rlat1
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    return 6371.0 * 2 * math.asin(min(1.0, math.sqrt(a)))


@contextmanager
def get_db_connection():
    """Get a database connection with proper error handling."""
    conn = None
    try:
        if not config.DB_PATH:
            raise ValueError("Database path not configured")

        conn = sqlite3.connect(config.DB_PATH)
        conn.row_factory = sqlite3.Row  # Enable dict-like access
        conn.create_function("distance_km", 4, distance_km, deterministic=True)
        yield conn
    except sqlite3.Error as e:
        logger.error(f"Database error: {e}")
        raise
    finally:
        if conn is not None:
            conn.close()


def init_db() -> None:
    """Create tables and indexes if they do not exist yet."""
    with get_db_connection() as conn:
        conn.execute(DDL_PROPERTIES)
        conn.execute(DDL_FAVORITES)
        for ddl in DDL_INDEXES:
            conn.execute(ddl)
        conn.commit()


def build_where_clause(filters: Dict[str, Any]) -> Tuple[str, List[Any]]:
    """Build WHERE clause and parameters from filters."""
    where_conditions = []
    parameters: List[Any] = []

    # Text search: title, address, city
    search = filters.get('search')
    if search:
        where_conditions.append('(lower(title) LIKE ? OR lower(address) LIKE ? OR lower(city) LIKE ?)')
        term = f'%{search.lower()}%'
        parameters.extend([term, term, term])

    # Keyword: title, description
    keyword = filters.get('keyword')
    if keyword:
        where_conditions.append("(lower(title) LIKE ? OR lower(coalesce(description, '')) LIKE ?)")
        term = f'%{keyword.lower()}%'
        parameters.extend([term, term])

    # Multi-select property type
    property_types = [t for t in (filters.get('propertyType') or []) if t]
    if property_types:
        placeholders = ','.join('?' for _ in property_types)
        where_conditions.append(f'property_type IN ({placeholders})')
        parameters.extend(property_types)

    status = filters.get('status')
    if status:
        where_conditions.append('status = ?')
        parameters.append(status)

    city = filters.get('city')
    if city:
        where_conditions.append('lower(city) LIKE ?')
        parameters.append(f'%{city.lower()}%')

    # Price range
    min_price = filters.get('minPrice')
    if min_price is not None:
        where_conditions.append('price >= ?')
        parameters.append(min_price)

    max_price = filters.get('maxPrice')
    if max_price is not None:
        where_conditions.append('price <= ?')
        parameters.append(max_price)

    # Minimum room counts
    bedrooms = filters.get('bedrooms')
    if bedrooms is not None:
        where_conditions.append('bedrooms >= ?')
        parameters.append(bedrooms)

    bathrooms = filters.get('bathrooms')
    if bathrooms is not None:
        where_conditions.append('bathrooms >= ?')
        parameters.append(bathrooms)

    # Feature flags
    for flag, column in FEATURE_COLUMNS.items():
        value = filters.get(flag)
        if value is not None:
            where_conditions.append(f'{column} = ?')
            parameters.append(1 if value else 0)

    # Radius around a point
    lat, lon = filters.get('latitude'), filters.get('longitude')
    if lat is not None and lon is not None:
        radius = filters.get('radius') or 50.0
        where_conditions.append('distance_km(?, ?, latitude, longitude) <= ?')
        parameters.extend([lat, lon, radius])

    where_clause = ' WHERE ' + ' AND '.join(where_conditions) if where_conditions else ''
    return where_clause, parameters


def get_order_clause(sort: Optional[str]) -> str:
    """Generate ORDER BY clause based on sort parameter."""
    sort_options = {
        "newest": "ORDER BY datetime(created_at) DESC",
        "oldest": "ORDER BY datetime(created_at) ASC",
        "price-low": "ORDER BY price ASC",
        "price-high": "ORDER BY price DESC",
        "size-low": "ORDER BY square_feet ASC",
        "size-high": "ORDER BY square_feet DESC",
        "bedrooms-low": "ORDER BY bedrooms ASC",
        "bedrooms-high": "ORDER BY bedrooms DESC",
    }
    # id as tie-breaker keeps offset pagination stable
    return sort_options.get(sort or "", sort_options["newest"]) + ", id ASC"


def row_to_property(row: sqlite3.Row) -> Dict[str, Any]:
    """Convert a properties row into plain Python values."""
    data = dict(row)
    try:
        data['images'] = json.loads(data.get('images') or '[]')
    except (json.JSONDecodeError, TypeError):
        data['images'] = []
    for column in BOOL_COLUMNS:
        if column in data:
            data[column] = bool(data[column])
    return data


def get_properties(filters: Dict[str, Any], sort: str = 'newest',
                   limit: int = 20, offset: int = 0) -> List[Dict]:
    """Get properties with filters, sorting, and pagination."""
    with get_db_connection() as conn:
        where_clause, parameters = build_where_clause(filters)
        order_clause = get_order_clause(sort)

        sql = f'SELECT * FROM properties {where_clause} {order_clause} LIMIT ? OFFSET ?'
        parameters.extend([limit, offset])

        return [row_to_property(row) for row in conn.execute(sql, parameters).fetchall()]


def get_property_by_id(property_id: str) -> Optional[Dict]:
    """Get a single property by ID."""
    with get_db_connection() as conn:
        row = conn.execute('SELECT * FROM properties WHERE id = ?', (property_id,)).fetchone()
        return row_to_property(row) if row else None


def insert_property(data: Dict[str, Any]) -> str:
    """Insert a property record; returns its id."""
    record = {column: data.get(column) for column in PROPERTY_COLUMNS}
    record['id'] = record['id'] or str(uuid.uuid4())
    record['images'] = json.dumps(list(data.get('images') or []))
    for column in BOOL_COLUMNS:
        record[column] = 1 if data.get(column) else 0

    columns = list(record)
    if data.get('created_at'):
        columns.append('created_at')
        record['created_at'] = data['created_at']

    with get_db_connection() as conn:
        conn.execute(
            f"INSERT INTO properties ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
            [record[c] for c in columns],
        )
        conn.commit()
    return record['id']


def add_favorite(user_id: str, property_id: str) -> bool:
    """Favorite a property. Returns False if it already was."""
    with get_db_connection() as conn:
        cur = conn.execute(
            'INSERT OR IGNORE INTO property_favorites (id, property_id, user_id) VALUES (?, ?, ?)',
            (str(uuid.uuid4()), property_id, user_id),
        )
        conn.commit()
        return cur.rowcount > 0


def remove_favorite(user_id: str, property_id: str) -> bool:
    """Remove a favorite. Returns False if there was none."""
    with get_db_connection() as conn:
        cur = conn.execute(
            'DELETE FROM property_favorites WHERE property_id = ? AND user_id = ?',
            (property_id, user_id),
        )
        conn.commit()
        return cur.rowcount > 0


def is_favorited(user_id: str, property_id: str) -> bool:
    with get_db_connection() as conn:
        row = conn.execute(
            'SELECT 1 FROM property_favorites WHERE property_id = ? AND user_id = ?',
            (property_id, user_id),
        ).fetchone()
        return row is not None


def get_favorite_properties(user_id: str) -> List[Dict]:
    """Properties a user has favorited, most recent first."""
    with get_db_connection() as conn:
        rows = conn.execute(
            '''SELECT p.* FROM property_favorites f
               JOIN properties p ON p.id = f.property_id
               WHERE f.user_id = ?
               ORDER BY datetime(f.created_at) DESC, f.rowid DESC''',
            (user_id,),
        ).fetchall()
        return [row_to_property(row) for row in rows]
