"""
Declared migration steps.

Each :class:`MigrationStep` moves one Contentful content type into one
Strapi collection.  Steps run in the order of :data:`STEPS`; a step whose
relation fields point at another step must come after it, so that the
source id → destination id mapping of the dependency is already known.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from contentful_to_strapi.utils.field_mapping import map_boolean, map_date, map_number, map_sizes, map_text

FieldMapper = Callable[[Any], Any]


@dataclasses.dataclass(frozen=True)
class MigrationStep:
    """
    :param name: Step id, also the key of its id mapping.
    :param content_type: Contentful content type id.
    :param collection: Strapi plural API id.
    :param natural_key: Destination attribute used for the existence check.
    :param fields: destination attribute → (Contentful field, mapper).
    :param rich_text_fields: destination attribute → Contentful rich-text field.
    :param media_fields: destination attribute → single asset field.
    :param gallery_fields: destination attribute → list-of-assets field.
    :param reference_fields: destination attribute → (Contentful field, dependency step name).
    :param label_source: When set, records are not Contentful entries but the
        distinct labels found in this text-list field of ``content_type``.
    :param single: Strapi single type, written in place instead of created.

    Field names may be dotted paths, see
    :mod:`contentful_to_strapi.utils.field_mapping`.
    """

    name: str
    content_type: str
    collection: str
    natural_key: Optional[str] = "slug"
    fields: Mapping[str, Tuple[str, FieldMapper]] = dataclasses.field(default_factory=dict)
    rich_text_fields: Mapping[str, str] = dataclasses.field(default_factory=dict)
    media_fields: Mapping[str, str] = dataclasses.field(default_factory=dict)
    gallery_fields: Mapping[str, str] = dataclasses.field(default_factory=dict)
    reference_fields: Mapping[str, Tuple[str, str]] = dataclasses.field(default_factory=dict)
    include: int = 2
    label_source: Optional[str] = None
    single: bool = False

    @property
    def depends_on(self) -> List[str]:
        seen: Dict[str, None] = {}
        for _, dependency in self.reference_fields.values():
            seen.setdefault(dependency, None)
        return list(seen)


SPACE_TAGS = MigrationStep(
    name="space-tags",
    content_type="locationSpace",
    collection="space-tags",
    label_source="spaceTags",
    include=0,
    fields={
        "title": ("title", map_text),
        "slug": ("slug", map_text),
    },
)

JOURNAL_TAGS = MigrationStep(
    name="journal-tags",
    content_type="journalTag",
    collection="journaltags",
    fields={
        "tagTitle": ("tagTitle", map_text),
        "title": ("tagTitle", map_text),
        "slug": ("slug", map_text),
    },
)

LOCATION_TAGS = MigrationStep(
    name="location-tags",
    content_type="locationTag",
    collection="location-tags",
    fields={
        "title": ("title", map_text),
        "slug": ("slug", map_text),
    },
)

SHOP_ITEMS = MigrationStep(
    name="shop-items",
    content_type="shopItem",
    collection="shopitems",
    fields={
        "title": ("title", map_text),
        "slug": ("slug", map_text),
        "subtitle": ("subtitle", map_text),
        "price": ("price", map_number),
        "oneSize": ("oneSize", map_boolean),
        "sizes": ("sizes", map_sizes),
    },
    media_fields={"mainImage": "mainImage", "hoverImage": "hoverImage"},
)

SPACES = MigrationStep(
    name="spaces",
    content_type="locationSpace",
    collection="spaces",
    fields={
        "title": ("title", map_text),
        "slug": ("slug", map_text),
        "description": ("description", map_text),
        "optixResourceId": ("optixResourceId", map_text),
    },
    media_fields={"featuredImage": "featuredImage"},
    reference_fields={"spaceTags": ("spaceTags", "space-tags")},
)

PAGES = MigrationStep(
    name="pages",
    content_type="page",
    collection="pages",
    fields={
        "title": ("title", map_text),
        "slug": ("slug", map_text),
        "buttonLink": ("buttonLink", map_text),
        "buttonText": ("buttonText", map_text),
    },
    rich_text_fields={"content": "content"},
    media_fields={"heroImage": "heroImage", "video": "video"},
)

LOCATION_OPTIONS = MigrationStep(
    name="location-options",
    content_type="locationOption",
    collection="location-options",
    natural_key="title",
    fields={
        "title": ("title", map_text),
        "priceText": ("priceText", map_text),
        "description": ("description", map_text),
        "bookingUrl": ("bookingUrl", map_text),
        "optixPlanId": ("optixPlanId", map_text),
        "optixProductId": ("optixProductId", map_text),
    },
)

EVENTS = MigrationStep(
    name="events",
    content_type="event",
    collection="events",
    fields={
        "title": ("title", map_text),
        "subtitle": ("subtitle", map_text),
        "slug": ("slug", map_text),
        "startTime": ("startTime", map_date),
        "endTime": ("endTime", map_date),
        "destinationUrl": ("destinationUrl", map_text),
        "summary": ("summary", map_text),
    },
)

JOURNALS = MigrationStep(
    name="journals",
    content_type="journal",
    collection="magazine-posts",
    fields={
        "title": ("title", map_text),
        "slug": ("slug", map_text),
        "titleColor": ("titleColor", map_text),
        "comingSoon": ("comingSoon", map_boolean),
        "introduction": ("introduction", map_text),
        "featuredStory": ("featuredStory", map_boolean),
    },
    rich_text_fields={"body": "body"},
    media_fields={"featuredImage": "featuredImage", "thumbnailImage": "thumbnailImage"},
    reference_fields={"tags": ("tags", "journal-tags")},
)

LOCATIONS = MigrationStep(
    name="locations",
    content_type="location",
    collection="locations",
    fields={
        "title": ("title", map_text),
        "subtitle": ("subtitle", map_text),
        "about": ("about", map_text),
        "slug": ("slug", map_text),
        "meetingSpacesDescriptionText": ("meetingSpacesDescriptionText", map_text),
        "meetingSpacesHeaderText": ("meetingSpacesHeaderText", map_text),
        "optionsDescriptionText": ("optionsDescriptionText", map_text),
        "bookMeetingSpaceUrl": ("bookMeetingSpaceUrl", map_text),
    },
    media_fields={"featuredImage": "featuredImage", "locationVideo": "locationVideo"},
    gallery_fields={"locationGallery": "locationGallery"},
    reference_fields={
        "locationTags": ("locationTags", "location-tags"),
        "locationOptions": ("locationOptions", "location-options"),
        "spaces": ("spaces", "spaces"),
    },
)

HOME_PAGE = MigrationStep(
    name="home-page",
    content_type="homePage",
    collection="home-page",
    natural_key=None,
    single=True,
    fields={
        "hero.titleFirstSentence": ("hero.titleFirstSentence", map_text),
        "hero.titleSecondSentence": ("hero.titleSecondSentence", map_text),
        "locations.title": ("locations.title", map_text),
        "locations.description": ("locations.description", map_text),
        "events.title": ("events.title", map_text),
        "events.description": ("events.description", map_text),
        "journal.title": ("journal.title", map_text),
        "journal.description": ("journal.description", map_text),
        "shop.title": ("shop.title", map_text),
        "shop.description": ("shop.description", map_text),
    },
    media_fields={
        "hero.image": "hero.image",
        "locations.videoFile": "locations.videoFile",
        "locations.videoImagePlaceholder": "locations.videoImagePlaceholder",
        "events.heroImage": "events.heroImage",
        "shop.heroImage": "shop.heroImage",
    },
    reference_fields={
        "shop.rectangularProductOne": ("shop.rectangularProductOne", "shop-items"),
        "shop.rectangularProductTwo": ("shop.rectangularProductTwo", "shop-items"),
        "shop.squareProductOne": ("shop.squareProductOne", "shop-items"),
        "shop.squareProductTwo": ("shop.squareProductTwo", "shop-items"),
        "shop.squareProductThree": ("shop.squareProductThree", "shop-items"),
    },
)

STEPS: Tuple[MigrationStep, ...] = (
    SPACE_TAGS,
    LOCATION_TAGS,
    JOURNAL_TAGS,
    SHOP_ITEMS,
    SPACES,
    JOURNALS,
    PAGES,
    EVENTS,
    LOCATION_OPTIONS,
    LOCATIONS,
    HOME_PAGE,
)


def select_steps(names: Optional[Iterable[str]] = None, steps: Iterable[MigrationStep] = STEPS) -> List[MigrationStep]:
    """
    Return the declared steps named in ``names`` (all when empty), in
    declaration order.

    :raises KeyError: for an unknown step name.
    """
    declared = list(steps)
    if not names:
        return declared
    wanted = list(names)
    known = {step.name for step in declared}
    unknown = [name for name in wanted if name not in known]
    if unknown:
        raise KeyError(f"Unknown migration step(s): {', '.join(unknown)}")
    return [step for step in declared if step.name in wanted]
