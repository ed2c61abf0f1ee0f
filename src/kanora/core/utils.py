import re

ARTICLE_PREFIXES = ("the ", "a ", "an ")

# Characters that are unsafe in a single path component on common filesystems
_PATH_HAZARDS = re.compile(r'[/\\?%*:|"<>]')


def generate_sort_name(name: str) -> str:
    """Builds a case-insensitive sort key for artist and album names.

    Lower-cases the name and strips a single leading English article.

    Args:
        name: Display name, e.g. "The Beatles".

    Returns:
        Sort name, e.g. "beatles".
    """
    sort_name = (name or "").strip().lower()
    for prefix in ARTICLE_PREFIXES:
        if sort_name.startswith(prefix):
            sort_name = sort_name[len(prefix):]
            break
    return sort_name


def sanitize_folder_name(name: str) -> str:
    """Makes a tag value safe to use as one directory name.

    Path-hazardous characters are replaced with "-", leading dots and
    surrounding whitespace are removed. An empty result becomes "_" so the
    organized path never collapses a directory level.
    """
    cleaned = _PATH_HAZARDS.sub("-", name or "")
    cleaned = cleaned.strip().lstrip(".").strip()
    return cleaned or "_"
