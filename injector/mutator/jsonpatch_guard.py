from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Union

import jsonpatch

from ..common.errors import PatchBuildError


def decode_patch(patch: Union[bytes, str, List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    if isinstance(patch, (bytes, str)):
        try:
            data = json.loads(patch)
        except json.JSONDecodeError as exc:
            raise PatchBuildError(f"invalid JSON patch: {exc}") from exc
    else:
        data = patch
    if not isinstance(data, list):
        raise PatchBuildError("JSON patch must be an array")
    return data


def apply_patch(
    document: Mapping[str, Any],
    patch: Union[bytes, str, List[Dict[str, Any]]],
) -> Dict[str, Any]:
    """Apply ``patch`` to a copy of ``document``; dangling paths raise PatchBuildError."""

    operations = decode_patch(patch)
    try:
        return jsonpatch.apply_patch(document, operations, in_place=False)
    except (jsonpatch.JsonPatchException, jsonpatch.JsonPointerException) as exc:
        raise PatchBuildError(f"bad path or conflict: {exc}") from exc


__all__ = ["apply_patch", "decode_patch"]
