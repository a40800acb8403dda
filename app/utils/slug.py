# app/utils/slug.py
import re
from typing import Optional

from sqlalchemy.orm import Session


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower())
    return slug.strip("-") or "item"


def generate_unique_slug(
    db: Session,
    model,
    title: str,
    exclude_id: Optional[int] = None,
) -> str:
    """Slug for ``title`` that no other row of ``model`` uses (``base``, ``base-1``, ...)."""
    base_slug = slugify(title)

    slug = base_slug
    counter = 1
    while True:
        query = db.query(model.id).filter(model.slug == slug)
        if exclude_id is not None:
            query = query.filter(model.id != exclude_id)
        if query.first() is None:
            return slug
        slug = f"{base_slug}-{counter}"
        counter += 1
