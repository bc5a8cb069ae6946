import os
import sys

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from contentful_to_strapi.models.strapi_entry import StrapiEntry
from contentful_to_strapi.steps import STEPS, select_steps
from contentful_to_strapi.utils.field_mapping import (
    map_boolean,
    map_date,
    get_path,
    map_number,
    map_reference,
    map_sizes,
    map_text,
    nest_dotted,
)
from contentful_to_strapi.utils.lookups import build_label_lookup, freeze, normalize_label


def _link(sys_id):
    return {"sys": {"type": "Link", "linkType": "Entry", "id": sys_id}}


def test_scalar_mappers():
    assert map_text("Hello") == "Hello"
    assert map_text("") is None
    assert map_text(None) is None
    assert map_number("3") == 3
    assert map_number(2.5) == 2.5
    assert map_number(None) is None
    assert map_date("2024-05-01T10:00:00Z") == "2024-05-01T10:00:00Z"
    assert map_date(None) is None
    assert map_boolean(True) is True
    assert map_boolean("true") is True
    assert map_boolean("yes") is False
    assert map_boolean(None) is False


def test_map_sizes_accepts_labels_and_objects():
    assert map_sizes(["S", {"size": "M"}, "L"]) == ["S", "M", "L"]
    assert map_sizes(None) is None
    assert map_sizes("S") is None


def test_dotted_paths_read_and_nest():
    fields = {"hero": {"image": {"sys": {"id": "a1"}}, "title": "Hi"}, "plain": 1}
    assert get_path(fields, "hero.title") == "Hi"
    assert get_path(fields, "plain") == 1
    assert get_path(fields, "hero.missing.deeper") is None
    assert get_path(fields, "plain.x") is None
    assert nest_dotted({"hero.title": "Hi", "hero.image": 7, "slug": "home"}) == {
        "hero": {"title": "Hi", "image": 7},
        "slug": "home",
    }


def test_map_reference_translates_ids_and_drops_unmapped():
    mapping = {"t1": "doc-1", "t2": 7}
    assert map_reference([_link("t1"), _link("missing"), _link("t2")], mapping) == ["doc-1", 7]
    assert map_reference([_link("missing")], mapping) is None
    assert map_reference(_link("t2"), mapping) == 7
    assert map_reference(_link("missing"), mapping) is None
    assert map_reference(None, mapping) is None


def test_map_reference_matches_text_labels():
    mapping = {"meeting rooms": "doc-mr", "phone booth": 4}
    assert map_reference([" Meeting  Rooms", "Phone Booth", "Unknown"], mapping) == ["doc-mr", 4]
    assert map_reference(["", "unknown"], mapping) is None


def test_normalize_label():
    assert normalize_label("  Caf&eacute;   &amp;  Bar ") == "Café & Bar"
    assert normalize_label(None) == ""


def test_label_lookup_is_read_only_and_case_insensitive():
    lookup = build_label_lookup(
        [
            {"id": 1, "documentId": "d1", "slug": "Spring-Notes"},
            {"id": 2, "slug": "autumn"},
            {"id": 3, "documentId": "d3", "slug": "spring-notes"},
            {"id": 4},
        ],
        "slug",
    )
    assert dict(lookup) == {"spring-notes": "d1", "autumn": 2}
    with pytest.raises(TypeError):
        lookup["new"] = 5  # type: ignore[index]
    frozen = freeze({"a": 1})
    with pytest.raises(TypeError):
        frozen["b"] = 2  # type: ignore[index]


def test_entry_slug_falls_back_to_title():
    entry = StrapiEntry(title="  Olá Mundo! 2024 ", slug=None)
    assert entry.slug == "olá-mundo-2024"
    assert entry.title == "Olá Mundo! 2024"


def test_entry_without_slug_key_gets_none():
    payload = StrapiEntry(title="Day pass", priceText="$20").to_strapi_payload()
    assert payload == {"data": {"title": "Day pass", "priceText": "$20"}}


def test_entry_payload_drops_none_and_dedups_relations():
    entry = StrapiEntry(title="Post", slug="post", tags=["d1", "d2", "d1"], featuredImage=None, comingSoon=False)
    assert entry.to_strapi_payload() == {
        "data": {"title": "Post", "slug": "post", "tags": ["d1", "d2"], "comingSoon": False},
    }


def test_declared_steps_run_after_their_dependencies():
    seen = set()
    for step in STEPS:
        assert set(step.depends_on) <= seen, step.name
        seen.add(step.name)


def test_select_steps_keeps_declaration_order():
    assert [s.name for s in select_steps(["journals", "journal-tags"])] == ["journal-tags", "journals"]
    assert len(select_steps(None)) == len(STEPS)
    with pytest.raises(KeyError):
        select_steps(["nope"])


def test_steps_run_in_migration_order():
    assert [s.name for s in STEPS] == [
        "space-tags", "location-tags", "journal-tags", "shop-items", "spaces", "journals",
        "pages", "events", "location-options", "locations", "home-page",
    ]
    by_name = {s.name: s for s in STEPS}
    assert by_name["spaces"].depends_on == ["space-tags"]
    assert by_name["locations"].depends_on == ["location-tags", "location-options", "spaces"]
    assert by_name["home-page"].depends_on == ["shop-items"]
    assert by_name["home-page"].single and by_name["home-page"].natural_key is None
    assert by_name["space-tags"].label_source == "spaceTags"
    assert by_name["shop-items"].fields["price"][1] is map_number
