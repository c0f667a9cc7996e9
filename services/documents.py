"""Configuration document model and JSON parsing."""
from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Annotated, Any, Iterable, Mapping, Optional, Tuple, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from services.errors import ConfigDocumentError

Version = Tuple[int, int, int, int]

# Bare build numbers in documents are Windows 10 / Server 2016 and later builds.
BARE_BUILD_PREFIX = (10, 0)


class RegistryValueType(str, Enum):
    DWORD = "DWord"
    STRING = "String"
    EXPAND_STRING = "ExpandString"
    BINARY = "Binary"
    MULTI_STRING = "MultiString"
    QWORD = "QWord"


class RegistryBlockType(str, Enum):
    DEFAULT_PROFILE = "DefaultProfile"
    DIRECT = "Direct"
    NONE = "None"


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


def _name_list(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    if not isinstance(value, (list, tuple)):
        raise ValueError("expected a list of names")
    return tuple(str(item) for item in value if item is not None and str(item).strip())


RequiredText = Annotated[str, AfterValidator(_require_text)]
NameList = Annotated[Tuple[str, ...], BeforeValidator(_name_list)]


class DocumentModel(BaseModel):
    """Base for document blocks: frozen, camelCase aliases, keys matched without regard to case."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _match_key_case(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        aliases: dict[str, str] = {}
        for name, info in cls.model_fields.items():
            alias = info.alias or name
            aliases[name.lower()] = alias
            aliases[alias.lower()] = alias
        matched = {
            aliases.get(str(key).lower(), str(key)): value for key, value in data.items() if value is not None
        }
        return cls._prepare(matched)

    @classmethod
    def _prepare(cls, data: dict[str, Any]) -> dict[str, Any]:
        return data


class RegistryEntry(DocumentModel):
    path: RequiredText
    name: str = ""
    value_type: RegistryValueType = Field(alias="type")
    value: Any = Field(default=None, validate_default=True)
    note: str = ""

    @field_validator("value_type", mode="before")
    @classmethod
    def _parse_value_type(cls, value: Any) -> RegistryValueType:
        return _enum_member(RegistryValueType, value, "registry type")

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any, info: ValidationInfo) -> Any:
        value_type = info.data.get("value_type")
        if value_type is None:
            return value
        try:
            return coerce_registry_value(value, value_type)
        except TypeError as exc:
            raise ValueError(f"cannot convert {value!r} to {value_type.value}") from exc


class OwnerChange(DocumentModel):
    root: RequiredText
    key: RequiredText
    sid: RequiredText


class CopySpec(DocumentModel):
    source: RequiredText
    destination: RequiredText


class RegistryBlock(DocumentModel):
    block_type: Optional[RegistryBlockType] = Field(default=None, alias="type")
    raw_type: str = ""
    set_entries: Tuple[RegistryEntry, ...] = Field(default=(), alias="set")
    remove: NameList = ()
    change_owner: Tuple[OwnerChange, ...] = ()

    @classmethod
    def _prepare(cls, data: dict[str, Any]) -> dict[str, Any]:
        raw = data.get("type")
        text = raw.value if isinstance(raw, RegistryBlockType) else str(raw or "")
        data.setdefault("rawType", text)
        data["type"] = next((member for member in RegistryBlockType if member.value.lower() == text.lower()), None)
        return data


class ServerStartMenu(DocumentModel):
    feature: RequiredText
    exists: Tuple[CopySpec, ...] = ()
    not_exists: Tuple[CopySpec, ...] = ()


class ClientStartMenu(DocumentModel):
    """Copy lists keyed by OS name (``Windows10``, ``Windows11``, ...)."""

    layouts: Mapping[str, Tuple[CopySpec, ...]] = Field(default_factory=dict, validate_default=True)

    @classmethod
    def _prepare(cls, data: dict[str, Any]) -> dict[str, Any]:
        if "layouts" in data:
            return data
        return {"layouts": {key: value for key, value in data.items() if key.lower() != "type"}}

    @field_validator("layouts", mode="after")
    @classmethod
    def _freeze_layouts(cls, value: Mapping[str, Tuple[CopySpec, ...]]) -> Mapping[str, Tuple[CopySpec, ...]]:
        return MappingProxyType(dict(value))

    def layout_for(self, os_name: str) -> Tuple[CopySpec, ...]:
        for name, copies in self.layouts.items():
            if name.lower() == os_name.lower():
                return copies
        return ()


def _start_menu_kind(value: Any) -> str | None:
    if isinstance(value, ServerStartMenu):
        return "server"
    if isinstance(value, ClientStartMenu):
        return "client"
    if isinstance(value, Mapping):
        return str(_lookup(value, "type") or "").lower() or None
    return None


StartMenuBlock = Annotated[
    Union[Annotated[ServerStartMenu, Tag("server")], Annotated[ClientStartMenu, Tag("client")]],
    Discriminator(
        _start_menu_kind,
        custom_error_type="start_menu_type",
        custom_error_message="unsupported type, expected 'Server' or 'Client'",
    ),
]


class ServicesBlock(DocumentModel):
    stop: NameList = ()
    start: NameList = ()
    restart: NameList = ()


# Nested JSON groups flattened onto ConfigDocument fields.
NESTED_LISTS = (
    ("files", "copy", "filesCopy"),
    ("paths", "remove", "pathsRemove"),
    ("features", "disable", "featuresDisable"),
    ("capabilities", "remove", "capabilitiesRemove"),
    ("packages", "remove", "packagesRemove"),
)


class ConfigDocument(DocumentModel):
    source: str = "<memory>"
    description: str = ""
    minimum_build: Optional[Version] = None
    maximum_build: Optional[Version] = None
    registry: Optional[RegistryBlock] = None
    start_menu: Optional[StartMenuBlock] = None
    files_copy: Tuple[CopySpec, ...] = ()
    paths_remove: NameList = ()
    features_disable: NameList = ()
    capabilities_remove: NameList = ()
    packages_remove: NameList = ()
    services: ServicesBlock = Field(default_factory=ServicesBlock)

    @classmethod
    def _prepare(cls, data: dict[str, Any]) -> dict[str, Any]:
        for group, member, alias in NESTED_LISTS:
            for key in [key for key in data if key.lower() == group]:
                block = data.pop(key)
                if not isinstance(block, Mapping):
                    raise ValueError(f"{group}: expected an object")
                value = _lookup(block, member)
                if value is not None:
                    data[alias] = value
        return data

    @field_validator("minimum_build", "maximum_build", mode="before")
    @classmethod
    def _parse_build(cls, value: Any) -> Version | None:
        if isinstance(value, tuple) or value is None or str(value).strip() == "":
            return value or None
        return parse_version(value)

    @model_validator(mode="after")
    def _check_build_range(self) -> "ConfigDocument":
        if self.minimum_build is not None and self.maximum_build is not None and self.minimum_build > self.maximum_build:
            raise ValueError(
                f"minimumBuild {format_version(self.minimum_build)} is greater than "
                f"maximumBuild {format_version(self.maximum_build)}"
            )
        return self

    def gate_reason(self, os_version: Version) -> str | None:
        """Return why the document does not apply to ``os_version``, or ``None``."""
        if self.minimum_build is not None and os_version < self.minimum_build:
            return f"OS version {format_version(os_version)} is below minimum {format_version(self.minimum_build)}"
        if self.maximum_build is not None and os_version > self.maximum_build:
            return f"OS version {format_version(os_version)} is above maximum {format_version(self.maximum_build)}"
        return None

    def applies_to(self, os_version: Version) -> bool:
        return self.gate_reason(os_version) is None


def parse_version(value: Any) -> Version:
    """Parse ``10.0.19041[.n]``; a bare build number such as ``19041`` means ``10.0.19041``."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid version: {value!r}")
    text = str(value).strip()
    parts = text.split(".")
    if not text or len(parts) > 4:
        raise ValueError(f"Invalid version: {value!r}")
    try:
        numbers = [int(part) for part in parts]
    except ValueError as exc:
        raise ValueError(f"Invalid version: {value!r}") from exc
    if len(numbers) == 1:
        numbers = [*BARE_BUILD_PREFIX, numbers[0]]
    while len(numbers) < 4:
        numbers.append(0)
    return (numbers[0], numbers[1], numbers[2], numbers[3])


def format_version(version: Version) -> str:
    parts = list(version)
    while len(parts) > 3 and parts[-1] == 0:
        parts.pop()
    return ".".join(str(part) for part in parts)


def load_document(path: Path | str) -> ConfigDocument:
    source = str(path)
    try:
        with open(path, "r", encoding="utf-8-sig") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as exc:
        raise ConfigDocumentError(source, f"cannot read JSON: {exc}") from exc
    return parse_document(data, source=source)


def parse_document(data: Any, *, source: str = "<memory>") -> ConfigDocument:
    if not isinstance(data, Mapping):
        raise ConfigDocumentError(source, "document root must be a JSON object")
    try:
        document = ConfigDocument.model_validate(data)
    except ValidationError as exc:
        raise ConfigDocumentError(source, _describe_errors(exc)) from exc
    return document.model_copy(update={"source": source})


def coerce_registry_value(value: Any, value_type: RegistryValueType) -> Any:
    if value_type in (RegistryValueType.DWORD, RegistryValueType.QWORD):
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        text = str(value).strip()
        try:
            return int(text, 0)
        except ValueError:
            return int(text)
    if value_type is RegistryValueType.BINARY:
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        if isinstance(value, list):
            return bytes(int(item) for item in value)
        cleaned = str(value).replace(",", "").replace(" ", "")
        return bytes.fromhex(cleaned)
    if value_type is RegistryValueType.MULTI_STRING:
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        return [str(value)]
    return "" if value is None else str(value)


def describe_blocks(document: ConfigDocument) -> Iterable[str]:
    if document.registry is not None:
        yield "registry"
    if document.start_menu is not None:
        yield "startMenu"
    for name, values in (
        ("files.copy", document.files_copy),
        ("paths.remove", document.paths_remove),
        ("features.disable", document.features_disable),
        ("capabilities.remove", document.capabilities_remove),
        ("packages.remove", document.packages_remove),
        ("services.stop", document.services.stop),
        ("services.start", document.services.start),
        ("services.restart", document.services.restart),
    ):
        if values:
            yield name


def _enum_member(enum: type[Enum], value: Any, label: str) -> Any:
    if isinstance(value, enum):
        return value
    for member in enum:
        if member.value.lower() == str(value).lower():
            return member
    raise ValueError(f"unsupported {label} {value!r}")


def _lookup(data: Mapping[str, Any], name: str) -> Any:
    if name in data:
        return data[name]
    for key, value in data.items():
        if str(key).lower() == name.lower():
            return value
    return None


def _describe_errors(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(messages)
