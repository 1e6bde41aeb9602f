from __future__ import annotations

from pathlib import PurePath

from .types import SupportedFileType, SupportedTypeEntry, SupportedTypesResponse

_BY_EXTENSION: dict[str, SupportedFileType] = {
    extension: file_type
    for file_type in SupportedFileType
    for extension in file_type.extensions
}


def _normalize_extension(extension: str) -> str:
    return extension.strip().lstrip(".").lower()


def classify(extension: str) -> SupportedFileType | None:
    return _BY_EXTENSION.get(_normalize_extension(extension))


def classify_filename(filename: str) -> SupportedFileType | None:
    suffix = PurePath(filename).suffix
    if not suffix:
        return None
    return classify(suffix)


def extensions_for_all() -> set[str]:
    return set(_BY_EXTENSION)


def supported_types_response() -> SupportedTypesResponse:
    return SupportedTypesResponse(
        types=[
            SupportedTypeEntry(
                name=file_type.name.lower(),
                mime_type=file_type.mime_type,
                extensions=list(file_type.extensions),
            )
            for file_type in SupportedFileType
        ],
        extensions=sorted(_BY_EXTENSION),
    )
