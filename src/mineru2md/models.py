"""Typed model of the layout JSON produced by MinerU."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


class LayoutParseError(ValueError):
    """Raised when the layout JSON is malformed or misses required fields."""


def _fail(where: str, message: str) -> LayoutParseError:
    return LayoutParseError(f"{where}: {message}")


def _require(data: Dict[str, Any], key: str, where: str) -> Any:
    if key not in data or data[key] is None:
        raise _fail(f"{where}.{key}", "missing required field")
    return data[key]


def _as_object(value: Any, where: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise _fail(where, f"expected object, got {type(value).__name__}")
    return value


def _as_list(value: Any, where: str) -> List[Any]:
    if not isinstance(value, list):
        raise _fail(where, f"expected array, got {type(value).__name__}")
    return value


def _as_number(value: Any, where: str) -> float:
    # bool is an int subclass but never a valid coordinate
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _fail(where, f"expected number, got {type(value).__name__}")
    return float(value)


def _as_str(value: Any, where: str) -> str:
    if not isinstance(value, str):
        raise _fail(where, f"expected string, got {type(value).__name__}")
    return value


def _as_int(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _fail(where, f"expected integer, got {type(value).__name__}")
    return value


def _bbox(data: Dict[str, Any], where: str) -> List[float]:
    raw = _as_list(_require(data, "bbox", where), f"{where}.bbox")
    return [_as_number(v, f"{where}.bbox[{i}]") for i, v in enumerate(raw)]


def _optional(data: Dict[str, Any], key: str, where: str, convert) -> Any:
    value = data.get(key)
    if value is None:
        return None
    return convert(value, f"{where}.{key}")


@dataclass
class Span:
    bbox: List[float]
    type: str
    content: Optional[str] = None
    image_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any, where: str = "span") -> "Span":
        data = _as_object(data, where)
        return cls(
            bbox=_bbox(data, where),
            type=_as_str(_require(data, "type", where), f"{where}.type"),
            content=_optional(data, "content", where, _as_str),
            image_path=_optional(data, "image_path", where, _as_str),
        )


@dataclass
class Line:
    bbox: List[float]
    spans: List[Span]

    @classmethod
    def from_dict(cls, data: Any, where: str = "line") -> "Line":
        data = _as_object(data, where)
        raw_spans = _as_list(_require(data, "spans", where), f"{where}.spans")
        return cls(
            bbox=_bbox(data, where),
            spans=[Span.from_dict(raw, f"{where}.spans[{i}]") for i, raw in enumerate(raw_spans)],
        )


@dataclass
class Block:
    """A layout block; either carries ``lines`` (leaf) or ``blocks`` (container)."""

    bbox: List[float]
    type: str
    angle: Optional[float] = None
    lines: Optional[List[Line]] = None
    blocks: Optional[List["Block"]] = None
    index: Optional[int] = None
    sub_type: Optional[str] = None

    @classmethod
    def _from_own_fields(cls, data: Dict[str, Any], where: str) -> "Block":
        raw_lines = _optional(data, "lines", where, _as_list)
        lines = None
        if raw_lines is not None:
            lines = [Line.from_dict(raw, f"{where}.lines[{i}]") for i, raw in enumerate(raw_lines)]
        return cls(
            bbox=_bbox(data, where),
            type=_as_str(_require(data, "type", where), f"{where}.type"),
            angle=_optional(data, "angle", where, _as_number),
            lines=lines,
            index=_optional(data, "index", where, _as_int),
            sub_type=_optional(data, "sub_type", where, _as_str),
        )

    @classmethod
    def from_dict(cls, data: Any, where: str = "block") -> "Block":
        # Nested blocks are built with an explicit stack so that deep trees
        # never hit the interpreter recursion limit.
        root = cls._from_own_fields(_as_object(data, where), where)
        pending: List[Tuple["Block", Dict[str, Any], str]] = [(root, data, where)]
        while pending:
            block, raw, path = pending.pop()
            raw_children = _optional(raw, "blocks", path, _as_list)
            if raw_children is None:
                continue
            block.blocks = []
            for i, raw_child in enumerate(raw_children):
                child_where = f"{path}.blocks[{i}]"
                raw_child = _as_object(raw_child, child_where)
                child = cls._from_own_fields(raw_child, child_where)
                block.blocks.append(child)
                pending.append((child, raw_child, child_where))
        return root


@dataclass
class Page:
    para_blocks: List[Block]
    discarded_blocks: List[Block]
    page_size: Tuple[float, float]
    page_idx: int

    @classmethod
    def from_dict(cls, data: Any, where: str = "page") -> "Page":
        data = _as_object(data, where)
        raw_para = _as_list(_require(data, "para_blocks", where), f"{where}.para_blocks")
        raw_discarded = _as_list(_require(data, "discarded_blocks", where), f"{where}.discarded_blocks")
        raw_size = _as_list(_require(data, "page_size", where), f"{where}.page_size")
        if len(raw_size) != 2:
            raise _fail(f"{where}.page_size", f"expected 2 numbers, got {len(raw_size)}")
        page_idx = _as_int(_require(data, "page_idx", where), f"{where}.page_idx")
        if page_idx < 0:
            raise _fail(f"{where}.page_idx", "must be >= 0")
        return cls(
            para_blocks=[Block.from_dict(raw, f"{where}.para_blocks[{i}]") for i, raw in enumerate(raw_para)],
            discarded_blocks=[
                Block.from_dict(raw, f"{where}.discarded_blocks[{i}]") for i, raw in enumerate(raw_discarded)
            ],
            page_size=(
                _as_number(raw_size[0], f"{where}.page_size[0]"),
                _as_number(raw_size[1], f"{where}.page_size[1]"),
            ),
            page_idx=page_idx,
        )


@dataclass
class LayoutDocument:
    pdf_info: List[Page] = field(default_factory=list)
    backend: Optional[str] = None
    version_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "LayoutDocument":
        data = _as_object(data, "$")
        raw_pages = _as_list(_require(data, "pdf_info", "$"), "$.pdf_info")
        return cls(
            pdf_info=[Page.from_dict(raw, f"pdf_info[{i}]") for i, raw in enumerate(raw_pages)],
            backend=_optional(data, "_backend", "$", _as_str),
            version_name=_optional(data, "_version_name", "$", _as_str),
        )


@dataclass
class TocEntry:
    title: str
    page: int
    anchor_id: str
    level: int


def parse_layout_json(text: str) -> LayoutDocument:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LayoutParseError(str(exc)) from exc
    except RecursionError as exc:
        raise LayoutParseError("document nesting is too deep") from exc
    return LayoutDocument.from_dict(data)


def load_layout_file(path: Path) -> LayoutDocument:
    """Read and parse a layout JSON file.

    ``OSError`` from reading escapes unchanged; malformed content raises
    ``LayoutParseError``.
    """
    raw = path.read_bytes()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise LayoutParseError(f"input is not valid UTF-8: {exc}") from exc
    return parse_layout_json(text)
