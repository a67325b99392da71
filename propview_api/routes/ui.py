"""
Web UI route handlers: application shell, card grid partial and manifest.
"""
import logging
from html import escape
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse

from ..config import config
from ..database import FEATURE_COLUMNS, get_properties

logger = logging.getLogger(__name__)
router = APIRouter(tags=["ui"])

# HTML template for the main page
INDEX_HTML = '''<!doctype html>
<html lang="en" class="h-full">
<head>
  <meta charset="utf-8"/>
  <meta name="viewport" content="width=device-width, initial-scale=1"/>
  <title>Propview</title>
  <link rel="manifest" href="/manifest.json"/>
  <script src="https://unpkg.com/htmx.org@1.9.12"></script>
  <script src="https://cdn.tailwindcss.com"></script>
  <style>.truncate-2{display:-webkit-box;-webkit-line-clamp:2;-webkit-box-orient:vertical;overflow:hidden}</style>
</head>
<body class="h-full bg-slate-50 text-slate-900">
<div class="max-w-7xl mx-auto px-4 py-6">
  <h1 class="text-2xl font-semibold mb-4">Propview: Properties</h1>
  <form id="filters" class="grid grid-cols-1 md:grid-cols-6 gap-3 mb-4"
        hx-get="/ui/cards" hx-target="#grid" hx-push-url="true"
        hx-trigger="change, keyup delay:300ms from:input">
    <input class="border rounded px-3 py-2 md:col-span-2" type="text" name="search" placeholder="Search title, address or city"/>
    <select class="border rounded px-3 py-2" name="propertyType">
      <option value="">Any type</option>
      <option value="house">House</option>
      <option value="condo">Condo</option>
      <option value="townhouse">Townhouse</option>
      <option value="apartment">Apartment</option>
    </select>
    <select class="border rounded px-3 py-2" name="status">
      <option value="">Any status</option>
      <option value="for_sale">For sale</option>
      <option value="for_rent">For rent</option>
    </select>
    <input class="border rounded px-3 py-2" type="number" name="minPrice" placeholder="Min price"/>
    <input class="border rounded px-3 py-2" type="number" name="maxPrice" placeholder="Max price"/>
    <input class="border rounded px-3 py-2" type="number" name="bedrooms" placeholder="Min bedrooms"/>
    <input class="border rounded px-3 py-2" type="number" name="bathrooms" placeholder="Min bathrooms"/>
    <select class="border rounded px-3 py-2" name="sortBy">
      <option value="newest">Newest</option>
      <option value="oldest">Oldest</option>
      <option value="price-low">Price: low to high</option>
      <option value="price-high">Price: high to low</option>
      <option value="size-low">Size: small to large</option>
      <option value="size-high">Size: large to small</option>
      <option value="bedrooms-low">Bedrooms: fewest</option>
      <option value="bedrooms-high">Bedrooms: most</option>
    </select>
    <div class="md:col-span-6 flex flex-wrap items-center gap-3 text-sm">
      <label><input type="checkbox" name="hasGarage" value="true"/> Garage</label>
      <label><input type="checkbox" name="hasPool" value="true"/> Pool</label>
      <label><input type="checkbox" name="hasBalcony" value="true"/> Balcony</label>
      <label><input type="checkbox" name="hasGarden" value="true"/> Garden</label>
      <label><input type="checkbox" name="hasAirConditioning" value="true"/> Air conditioning</label>
      <label><input type="checkbox" name="hasFireplace" value="true"/> Fireplace</label>
      <label><input type="checkbox" name="hasPetsAllowed" value="true"/> Pets allowed</label>
      <a class="ml-auto px-3 py-2 rounded border" href="/api/export/csv" target="_blank">Export CSV</a>
    </div>
  </form>
  <div id="grid" class="grid grid-cols-1 md:grid-cols-3 gap-4" hx-get="/ui/cards" hx-trigger="load"></div>
</div>
</body></html>'''

MANIFEST = {
    "name": "Propview",
    "short_name": "Propview",
    "start_url": "/",
    "display": "standalone",
    "background_color": "#f8fafc",
    "theme_color": "#1e293b",
    "icons": [],
}

SORT_KEYS = (
    "newest", "oldest", "price-low", "price-high",
    "size-low", "size-high", "bedrooms-low", "bedrooms-high",
)


def _number(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError:
        return None


def get_ui_filters(request: Request) -> Dict[str, Any]:
    """Lenient filter parsing for form submissions (blank fields are ignored)."""
    params = request.query_params
    filters: Dict[str, Any] = {}
    for name in ('search', 'keyword', 'status', 'city'):
        value = (params.get(name) or '').strip()
        if value:
            filters[name] = value
    types = [t for t in params.getlist('propertyType') if t.strip()]
    if types:
        filters['propertyType'] = types
    for name in ('minPrice', 'maxPrice'):
        value = _number(params.get(name))
        if value is not None:
            filters[name] = value
    for name in ('bedrooms', 'bathrooms'):
        value = _number(params.get(name))
        if value is not None:
            filters[name] = int(value)
    for flag in FEATURE_COLUMNS:
        if (params.get(flag) or '').lower() in ('true', '1', 'on'):
            filters[flag] = True
    lat, lon = _number(params.get('latitude')), _number(params.get('longitude'))
    if lat is not None and lon is not None:
        filters['latitude'], filters['longitude'] = lat, lon
        filters['radius'] = _number(params.get('radius'))
    return filters


def render_card(prop: Dict[str, Any]) -> str:
    """One property card."""
    images: List[str] = prop.get('images') or []
    title = escape(prop.get('title') or '-')
    city = escape(prop.get('city') or '')
    price = prop.get('price')
    price_text = f'{price:,.0f}' if price else '-'
    if images:
        photo = (f'<img src="{escape(images[0])}" class="w-full h-48 object-cover rounded-t-xl" '
                 f'loading="lazy" alt="{title}"/>')
    else:
        photo = ('<div class="w-full h-48 bg-slate-100 rounded-t-xl flex items-center justify-center '
                 'text-slate-400 text-xs">No photo</div>')
    return (
        f'<article class="bg-white rounded-xl shadow border" data-id="{escape(prop["id"])}">'
        f'{photo}'
        f'<div class="p-3">'
        f'<div class="font-medium truncate-2">{title}</div>'
        f'<div class="text-sm text-slate-500">{city}</div>'
        f'<div class="mt-1 text-lg font-semibold">{price_text}</div>'
        f'<div class="text-xs text-slate-500">{prop.get("bedrooms", 0)} bd · '
        f'{prop.get("bathrooms", 0)} ba · {prop.get("square_feet", 0)} sqft</div>'
        f'</div></article>'
    )


@router.get('/', response_class=HTMLResponse)
async def index():
    """Application shell with the infinite-scroll grid."""
    return HTMLResponse(INDEX_HTML)


@router.get('/ui/cards', response_class=HTMLResponse)
async def ui_cards(request: Request, sort_by: str = Query('newest', alias='sortBy'), offset: int = 0):
    """One page of cards; a full page ends with a sentinel that loads the next one when revealed."""
    try:
        filters = get_ui_filters(request)
        sort = sort_by if sort_by in SORT_KEYS else 'newest'
        page_size = config.DEFAULT_API_LIMIT
        offset = max(0, offset)

        rows = get_properties(filters, sort, page_size, offset)

        html_parts = [render_card(row) for row in rows]
        if not rows and offset == 0:
            html_parts.append('<div class="md:col-span-3 text-slate-500">No properties match these filters.</div>')

        # A short page means there is nothing more to load
        if len(rows) == page_size:
            params = [(k, v) for k, v in request.query_params.multi_items() if k != 'offset']
            params.append(('offset', str(offset + page_size)))
            next_url = '/ui/cards?' + urlencode(params)
            html_parts.append(
                f'<div class="md:col-span-3 h-8" hx-get="{escape(next_url)}" '
                f'hx-trigger="revealed" hx-swap="outerHTML"></div>'
            )

        return HTMLResponse(''.join(html_parts))

    except Exception as e:
        logger.error(f"Error generating UI cards: {e}")
        return HTMLResponse('<div class="text-red-600">Error loading properties</div>')


@router.get('/manifest.json')
async def manifest():
    """Web app manifest for the installable shell."""
    return JSONResponse(MANIFEST)
