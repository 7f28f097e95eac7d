"""XML sitemap of the storefront's public pages."""
import logging
import os
from datetime import date
from typing import List
from xml.etree import ElementTree as ET

from pymongo import DESCENDING

from database import as_utc, get_db

logger = logging.getLogger(__name__)

SITE_URL = os.getenv("SITE_URL", "https://localhost:5000").rstrip("/")
SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
MAX_PRODUCTS = 1000

STATIC_PAGES = [
    ("/", "daily", 1.0),
    ("/products", "daily", 0.9),
    ("/about", "monthly", 0.6),
    ("/contact", "monthly", 0.6),
    ("/shipping", "monthly", 0.5),
    ("/returns", "monthly", 0.5),
    ("/warranty", "monthly", 0.5),
    ("/privacy", "yearly", 0.3),
    ("/terms", "yearly", 0.3),
]


def _render(urls: List[tuple]) -> str:
    urlset = ET.Element("urlset", xmlns=SITEMAP_NS)
    for loc, lastmod, changefreq, priority in urls:
        url = ET.SubElement(urlset, "url")
        ET.SubElement(url, "loc").text = f"{SITE_URL}{loc}"
        ET.SubElement(url, "lastmod").text = lastmod
        ET.SubElement(url, "changefreq").text = changefreq
        ET.SubElement(url, "priority").text = f"{priority:.1f}"
    ET.indent(urlset)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(urlset, encoding="unicode")


def generate_sitemap() -> str:
    today = date.today().isoformat()
    try:
        database = get_db()
        urls = [(loc, today, freq, prio) for loc, freq, prio in STATIC_PAGES]
        for category in database["category"].find().sort("name"):
            urls.append((f"/products?category={category['slug']}", today, "weekly", 0.7))
        products = database["product"].find({"status": "active"}).sort("created_at", DESCENDING).limit(MAX_PRODUCTS)
        for product in products:
            updated = product.get("updated_at")
            lastmod = as_utc(updated).date().isoformat() if updated else today
            urls.append((f"/products/{product['_id']}", lastmod, "weekly", 0.8))
        return _render(urls)
    except Exception:
        logger.exception("Error generating sitemap, serving the basic one")
        return _render([("/", today, "daily", 1.0), ("/products", today, "daily", 0.9)])
