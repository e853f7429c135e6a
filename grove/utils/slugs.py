import re
from typing import Awaitable, Callable, Tuple

FALLBACK_SLUG = "tree"

def slugify(text: str) -> str:
    """Lowercase, keep [a-z0-9], turn whitespace into hyphens and tidy them up."""
    slug = text.lower().strip()
    slug = re.sub(r'[^a-z0-9\s-]', '', slug)
    slug = re.sub(r'\s+', '-', slug)
    slug = re.sub(r'-+', '-', slug)
    slug = slug.strip('-')
    return slug or FALLBACK_SLUG

def candidate_slug(base: str, counter: int) -> str:
    return base if counter == 0 else f"{base}-{counter}"

async def generate_unique_slug(
    base: str, is_taken: Callable[[str], Awaitable[bool]], start: int = 0
) -> Tuple[str, int]:
    """
    Returns the first free candidate of base, base-1, base-2, ... beginning at
    `start`, together with the counter that produced it so a caller that loses a
    race on insert can resume from counter + 1.
    """
    counter = start
    while True:
        slug = candidate_slug(base, counter)
        if not await is_taken(slug):
            return slug, counter
        counter += 1

TIMESTAMP_SLUG = re.compile(r'\d{13,}')

def looks_generated(slug: str) -> bool:
    """Slugs carrying a millisecond timestamp come from an older generator."""
    return bool(TIMESTAMP_SLUG.search(slug))
