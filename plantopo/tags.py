from typing import Optional


def merge_tags(*sources: Optional[dict[str, str]]) -> dict[str, str]:
    """Merge tag maps left to right; later keys win, None sources are skipped."""
    merged: dict[str, str] = {}
    for source in sources:
        if source:
            merged.update(source)

    return merged


def identity_tags(name: str, environment: str) -> dict[str, str]:
    return {"Name": name, "Environment": environment}


def resource_tags(
    global_tags: Optional[dict[str, str]],
    category_tags: Optional[dict[str, str]],
    name: str,
    environment: str,
) -> dict[str, str]:
    """Final tags: global < category-specific < computed identity."""
    return merge_tags(global_tags, category_tags, identity_tags(name, environment))
