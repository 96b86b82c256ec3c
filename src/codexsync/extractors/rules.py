"""Core rules extractor.

Second-level headings (``h2``) open major sections and third-level
headings (``h3``) open subsections inside them. Body text is collected
from the sibling elements up to the next heading of the same or higher
level. Pages without any ``h2`` fall back to splitting on named anchors.
"""

from __future__ import annotations

from collections import defaultdict

from bs4 import BeautifulSoup, Tag

from codexsync.extractors.text import (
    CATEGORY_MAX_LENGTH,
    NAME_MAX_LENGTH,
    SLUG_MAX_LENGTH,
    detect_rule_category,
    element_text,
    slugify,
    to_title_case,
    truncate,
)
from codexsync.models.records import CoreRule

# Sections whose trimmed body is this short or shorter are boilerplate.
MIN_SECTION_LENGTH = 10


def _sibling_tags(start: Tag):
    for sibling in start.next_siblings:
        if isinstance(sibling, Tag):
            yield sibling


def parse_core_rules(html: str, source_url: str) -> list[CoreRule]:
    """Split a rules page into ordered ``CoreRule`` records."""
    soup = BeautifulSoup(html, "html.parser")
    sections: list[dict] = []

    for h2 in soup.find_all("h2"):
        major_title = h2.get_text().strip()
        if len(major_title) < 2:
            continue
        major_slug = slugify(major_title)
        category = detect_rule_category(major_title)

        body: list[str] = []
        subsections: list[tuple[str, list[str]]] = []
        for element in _sibling_tags(h2):
            if element.name == "h2":
                break
            if element.name == "h3":
                subsections.append((element.get_text().strip(), []))
            elif subsections:
                subsections[-1][1].append(element_text(element))
            else:
                body.append(element_text(element))

        content = "\n".join(body).strip()
        if len(content) > MIN_SECTION_LENGTH:
            sections.append(
                {"slug": major_slug, "title": major_title, "category": category, "content": content}
            )
        for sub_title, sub_body in subsections:
            sub_content = "\n".join(sub_body).strip()
            if len(sub_content) > MIN_SECTION_LENGTH:
                sections.append(
                    {
                        "slug": f"{major_slug}-{slugify(sub_title)}",
                        "title": sub_title,
                        "category": category,
                        "subcategory": major_title,
                        "content": sub_content,
                    }
                )

    if not sections:
        sections = _sections_by_anchor(soup)

    return [
        CoreRule(
            slug=section["slug"][:SLUG_MAX_LENGTH],
            title=section["title"][:NAME_MAX_LENGTH],
            category=section["category"][:CATEGORY_MAX_LENGTH],
            subcategory=truncate(section.get("subcategory"), CATEGORY_MAX_LENGTH),
            content=section["content"],
            order_index=index,
            source_url=source_url,
        )
        for index, section in enumerate(sections)
    ]


def _sections_by_anchor(soup: BeautifulSoup) -> list[dict]:
    sections: list[dict] = []
    for anchor in soup.find_all("a", attrs={"name": True}):
        title = anchor["name"].replace("-", " ").strip()
        if len(title) < 3:
            continue
        body: list[str] = []
        for element in _sibling_tags(anchor):
            if element.name in ("h2", "h3") or (element.name == "a" and element.has_attr("name")):
                break
            body.append(element_text(element))
        content = "\n".join(body).strip()
        if len(content) > MIN_SECTION_LENGTH:
            sections.append(
                {
                    "slug": slugify(title),
                    "title": to_title_case(title),
                    "category": detect_rule_category(title),
                    "content": content,
                }
            )
    return sections


def group_rules_by_category(rules: list[CoreRule]) -> dict[str, list[CoreRule]]:
    grouped: dict[str, list[CoreRule]] = defaultdict(list)
    for rule in rules:
        grouped[rule.category].append(rule)
    return dict(grouped)
