# module_utils/image_resolver.py
#
# Resolve a datacenter image selection to exactly one image id.
#
# Selection is either a private image name (taken as-is, never validated)
# or a public lookup by id / os / code against the datacenter catalog.
# Public matching is an ordered table of guarded rules, first match wins:
#
#   A  id confirmed       id exists and every requested filter points at it
#   B  os disambiguates   exactly one image has the requested os
#   C  code disambiguates exactly one image has the requested code
#
# Anything else fails with a listing of the whole public catalog.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Optional

from .cloud_api import CloudApiError, as_str

PRIVATE_IMAGES_DOCS_URL = "https://docs.cloud.ims-network.net"

IMAGE_FIELDS = ("id", "os", "code", "name")


class ImageResolutionError(Exception):
    pass


class ConflictingInputsError(ImageResolutionError):
    def __init__(self) -> None:
        super().__init__(
            "When specifying private_image_name, other attributes must not be set"
        )


class FetchError(ImageResolutionError):
    pass


class CatalogFormatError(FetchError):
    pass


class AmbiguousOrNotFoundError(ImageResolutionError):
    def __init__(self, catalog: "Catalog") -> None:
        self.catalog = catalog
        super().__init__(
            "could not find matching image, available public images: \n"
            f"{format_available_images(catalog)}\n\n"
            "Private images are not listed, see the following link for details: "
            f"{PRIVATE_IMAGES_DOCS_URL}"
        )


@dataclass(frozen=True)
class Image:
    id: str
    os: str
    code: str
    name: str

    @classmethod
    def from_payload(cls, entry: Any) -> "Image":
        if not isinstance(entry, dict):
            raise CatalogFormatError(
                f"catalog entry must be an object, got {type(entry).__name__}: {entry!r}"
            )
        for key in IMAGE_FIELDS:
            if not isinstance(entry.get(key), str):
                raise CatalogFormatError(
                    f"catalog entry field '{key}' must be a string: {entry!r}"
                )
        return cls(**{key: entry[key] for key in IMAGE_FIELDS})


Catalog = Dict[str, Image]


def build_catalog(entries: list) -> Catalog:
    catalog: Catalog = {}
    for entry in entries:
        image = Image.from_payload(entry)
        catalog[image.id] = image
    return catalog


def format_available_images(catalog: Catalog) -> str:
    lines = [f"{'os':<10} {'code':<30} name"]
    for image in sorted(catalog.values(), key=lambda i: (i.os, i.code, i.name)):
        lines.append(f'{_quoted(image.os):<10} {_quoted(image.code):<30} {_quoted(image.name)}')
    return "\n".join(lines)


def _quoted(value: str) -> str:
    return f'"{value}"'


@dataclass(frozen=True)
class SelectionInputs:
    datacenter_id: str
    id: str = ""
    os: str = ""
    code: str = ""
    private_image_name: str = ""

    def __post_init__(self) -> None:
        # Selection values are compared exactly as given.
        object.__setattr__(self, "datacenter_id", as_str(self.datacenter_id))
        for name in ("id", "os", "code", "private_image_name"):
            object.__setattr__(self, name, as_str(getattr(self, name), strip=False))
        if not self.datacenter_id:
            raise ValueError("datacenter_id is required")


@dataclass(frozen=True)
class Resolution:
    id: str
    os: str
    code: str
    rule: str = field(default="", compare=False)

    def as_dict(self) -> dict:
        return {"id": self.id, "os": self.os, "code": self.code}


@dataclass
class ImageState:
    """The resolved attributes a caller keeps between reads."""

    id: str = ""
    os: str = ""
    code: str = ""

    @classmethod
    def from_inputs(cls, inputs: SelectionInputs) -> "ImageState":
        return cls(id=inputs.id, os=inputs.os, code=inputs.code)

    def apply(self, resolution: Resolution) -> None:
        self.id = resolution.id
        self.os = resolution.os
        self.code = resolution.code

    def clear_id(self) -> None:
        self.id = ""

    def clear(self) -> None:
        self.id = ""
        self.os = ""
        self.code = ""

    def as_dict(self) -> dict:
        return {"id": self.id, "os": self.os, "code": self.code}


# -------------------------------------------------------------------
# matching
# -------------------------------------------------------------------


def _ids_matching(catalog: Catalog, attr: str, value: str) -> FrozenSet[str]:
    if not value:
        return frozenset()
    return frozenset(
        image_id for image_id, image in catalog.items() if getattr(image, attr) == value
    )


@dataclass(frozen=True)
class Candidates:
    inputs: SelectionInputs
    catalog: Catalog
    exact: Optional[Image]
    by_os: FrozenSet[str]
    by_code: FrozenSet[str]

    @classmethod
    def collect(cls, inputs: SelectionInputs, catalog: Catalog) -> "Candidates":
        return cls(
            inputs=inputs,
            catalog=catalog,
            exact=catalog.get(inputs.id) if inputs.id else None,
            by_os=_ids_matching(catalog, "os", inputs.os),
            by_code=_ids_matching(catalog, "code", inputs.code),
        )


def _single(ids: FrozenSet[str]) -> Optional[str]:
    if len(ids) == 1:
        return next(iter(ids))
    return None


def match_by_id(c: Candidates) -> Optional[Resolution]:
    image = c.exact
    if image is None:
        return None
    if c.inputs.os and not (c.by_os == {image.id} and image.os == c.inputs.os):
        return None
    if c.inputs.code and not (c.by_code == {image.id} and image.code == c.inputs.code):
        return None
    return Resolution(id=image.id, os=image.os, code=image.code, rule="id")


def match_by_os(c: Candidates) -> Optional[Resolution]:
    image_id = _single(c.by_os)
    if image_id is None:
        return None
    if c.exact is not None and c.exact.os != c.inputs.os:
        return None
    if c.by_code and c.by_code != {image_id}:
        return None
    return Resolution(
        id=image_id, os=c.inputs.os, code=c.catalog[image_id].code, rule="os"
    )


def match_by_code(c: Candidates) -> Optional[Resolution]:
    image_id = _single(c.by_code)
    if image_id is None:
        return None
    if c.exact is not None and c.exact.code != c.inputs.code:
        return None
    if c.by_os and image_id not in c.by_os:
        return None
    return Resolution(
        id=image_id, os=c.catalog[image_id].os, code=c.inputs.code, rule="code"
    )


MATCH_RULES = (match_by_id, match_by_os, match_by_code)


def match_image(inputs: SelectionInputs, catalog: Catalog) -> Resolution:
    candidates = Candidates.collect(inputs, catalog)
    for rule in MATCH_RULES:
        resolution = rule(candidates)
        if resolution is not None:
            return resolution
    raise AmbiguousOrNotFoundError(catalog)


# -------------------------------------------------------------------
# resolver
# -------------------------------------------------------------------


class ImageResolver:
    """
    Resolve selection inputs using ``fetch(datacenter_id) -> list`` for the
    public catalog. ``fetch`` is expected to raise CloudApiError on failure.
    """

    def __init__(self, fetch: Callable[[str], list]) -> None:
        self._fetch = fetch

    def resolve(self, inputs: SelectionInputs) -> Resolution:
        if inputs.private_image_name:
            if inputs.os or inputs.code:
                raise ConflictingInputsError()
            return Resolution(
                id=inputs.private_image_name,
                os=inputs.os,
                code=inputs.code,
                rule="private",
            )

        catalog = self.fetch_catalog(inputs.datacenter_id)
        return match_image(inputs, catalog)

    def fetch_catalog(self, datacenter_id: str) -> Catalog:
        try:
            entries = self._fetch(datacenter_id)
        except CloudApiError as exc:
            raise FetchError(str(exc)) from exc
        if not isinstance(entries, list):
            raise CatalogFormatError(
                f"image catalog must be a list, got {type(entries).__name__}"
            )
        return build_catalog(entries)

    def read(self, inputs: SelectionInputs, state: ImageState) -> Resolution:
        """
        Resolve and write the outcome into ``state``.

        Fetch failures clear the id, unmatched selections clear id, os and
        code; conflicting inputs leave the state alone.
        """
        try:
            resolution = self.resolve(inputs)
        except FetchError:
            state.clear_id()
            raise
        except AmbiguousOrNotFoundError:
            state.clear()
            raise
        state.apply(resolution)
        return resolution
