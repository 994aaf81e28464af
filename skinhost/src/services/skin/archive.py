"""Skin archive reading and layout document resolution.

A skin is a zip archive holding ``skin.xml``, XML fragments it pulls in with
``<include file="..."/>``, and compiled scripts referenced by ``<script
file="..."/>``. This module turns an archive into a fully resolved layout
tree:

1. ``read_layout`` parses the root document and inlines includes recursively.
2. ``instantiate_groups`` copies each ``groupdef`` template's children into
   the childless ``group`` nodes that reference it by id.
3. ``annotate_scripts`` attaches each script's program bytes as the
   ``script`` annotation.

Skins are authored on case-insensitive file systems with either path
separator, so member lookup ignores case and treats ``\\`` as ``/``.
"""

from __future__ import annotations

import io
import logging
import posixpath
import re
import zipfile
from pathlib import Path
from typing import Callable, Optional, Union
from xml.etree import ElementTree

from .errors import ArchiveLoadError
from .node import GROUP, GROUPDEF, INCLUDE, SCRIPT, Node, ScriptProgram

logger = logging.getLogger(__name__)

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>", re.IGNORECASE)
_FRAGMENT_TAG = "skinhost-fragment"
_MAX_GROUP_NESTING = 64


def normalize_member(path: str) -> str:
    """Archive path with forward slashes and no leading "./" or "/"."""
    normalized = posixpath.normpath(path.replace("\\", "/")).lstrip("/")
    return "" if normalized == "." else normalized


def _element_to_node(element: ElementTree.Element) -> Node:
    return Node(
        name=element.tag,
        attributes={k.lower(): v for k, v in element.attrib.items()},
        children=tuple(_element_to_node(child) for child in element),
    )


def parse_fragment(text: str, source: str = "<string>") -> list[Node]:
    """Parse XML text that may hold several top-level elements.

    Raises:
        ArchiveLoadError: If the text is not well-formed.
    """
    body = _XML_DECLARATION.sub("", text, count=1)
    try:
        wrapper = ElementTree.fromstring(f"<{_FRAGMENT_TAG}>{body}</{_FRAGMENT_TAG}>")
    except ElementTree.ParseError as e:
        raise ArchiveLoadError(f"XML parse error in {source}: {e}")
    return [_element_to_node(child) for child in wrapper]


def map_tree(node: Node, fn: Callable[[Node], Node]) -> Node:
    """Rebuild a tree bottom-up, applying ``fn`` to every node."""
    children = tuple(map_tree(child, fn) for child in node.children)
    return fn(node.with_children(children))


class SkinArchive:
    """Read access to one skin archive.

    Example:
        archive = SkinArchive.from_path(Path("skins/bento.wal"))
        xml_tree = archive.read_layout()
        maki_tree = archive.initialize(xml_tree)
    """

    def __init__(
        self,
        zip_file: zipfile.ZipFile,
        name: str = "",
        max_include_depth: int = 16,
    ) -> None:
        self._zip = zip_file
        self.name = name
        self.max_include_depth = max_include_depth
        self._members: dict[str, str] = {}
        for info in zip_file.infolist():
            if info.is_dir():
                continue
            self._members.setdefault(normalize_member(info.filename).lower(), info.filename)

    @classmethod
    def from_bytes(cls, data: bytes, name: str = "", **kwargs) -> "SkinArchive":
        try:
            return cls(zipfile.ZipFile(io.BytesIO(data)), name=name, **kwargs)
        except zipfile.BadZipFile as e:
            raise ArchiveLoadError(f"Not a skin archive {name or '<bytes>'}: {e}")

    @classmethod
    def from_path(cls, path: Union[str, Path], **kwargs) -> "SkinArchive":
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise ArchiveLoadError(f"Cannot read skin archive {path}: {e}")
        return cls.from_bytes(data, name=str(path), **kwargs)

    @property
    def members(self) -> list[str]:
        return list(self._members.values())

    def resolve(self, path: str) -> Optional[str]:
        """Actual member name for ``path``, matched case-insensitively."""
        return self._members.get(normalize_member(path).lower())

    def has_file(self, path: str) -> bool:
        return self.resolve(path) is not None

    def read_bytes(self, path: str) -> bytes:
        member = self.resolve(path)
        if member is None:
            raise ArchiveLoadError(f"File not found in {self.name or 'archive'}: {path}")
        return self._zip.read(member)

    def read_text(self, path: str) -> str:
        data = self.read_bytes(path)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            return data.decode("latin-1")

    def read_fragment(self, path: str) -> list[Node]:
        return parse_fragment(self.read_text(path), source=path)

    def read_xml(self, path: str) -> Node:
        """Parse a document with exactly one root element."""
        nodes = self.read_fragment(path)
        if len(nodes) != 1:
            raise ArchiveLoadError(f"{path} must have exactly one root element, found {len(nodes)}")
        return nodes[0]

    def read_layout(self, path: str = "skin.xml") -> Node:
        """Parse the root layout document and inline all includes."""
        root = self.read_xml(path)
        base_dir = posixpath.dirname(normalize_member(path))
        return self.inline_includes(root, base_dir, (normalize_member(path).lower(),))

    # =========================================================================
    # Include inlining
    # =========================================================================

    def inline_includes(
        self,
        node: Node,
        base_dir: str = "",
        stack: tuple[str, ...] = (),
    ) -> Node:
        """Replace ``<include>`` children with the included documents' elements.

        Raises:
            ArchiveLoadError: On a missing file, an include cycle, or nesting
                deeper than ``max_include_depth``.
        """
        children: list[Node] = []
        for child in node.children:
            if child.name == INCLUDE:
                children.extend(self._expand_include(child, base_dir, stack))
            else:
                children.append(self.inline_includes(child, base_dir, stack))
        return node.with_children(children)

    def _expand_include(self, include: Node, base_dir: str, stack: tuple[str, ...]) -> list[Node]:
        file = include.file
        if not file:
            raise ArchiveLoadError("<include> without a file attribute")

        member = self._resolve_include(file, base_dir)
        key = normalize_member(member).lower()
        if key in stack:
            raise ArchiveLoadError(f"Include cycle: {' -> '.join(stack + (key,))}")
        if len(stack) >= self.max_include_depth:
            raise ArchiveLoadError(f"Includes nested deeper than {self.max_include_depth} at {file}")

        logger.debug(f"Inlining {member}")
        included_dir = posixpath.dirname(normalize_member(member))
        wrapper = Node(name=INCLUDE, children=tuple(self.read_fragment(member)))
        return list(self.inline_includes(wrapper, included_dir, stack + (key,)).children)

    def _resolve_include(self, file: str, base_dir: str) -> str:
        relative = posixpath.join(base_dir, file.replace("\\", "/")) if base_dir else file
        for candidate in (relative, file):
            member = self.resolve(candidate)
            if member is not None:
                return member
        raise ArchiveLoadError(f"Included file not found: {file} (from {base_dir or '/'})")

    # =========================================================================
    # Template instantiation and script annotation
    # =========================================================================

    def instantiate_groups(self, tree: Node) -> Node:
        """Fill each childless group that names a groupdef with the template's children.

        The template's attributes apply first and the group's own attributes
        override them. Groupdefs are left in place; templates are never
        expanded inside other templates, only in their instances.
        """
        templates: dict[str, Node] = {}
        for node in tree.iter():
            if node.name == GROUPDEF and node.element_id:
                templates[node.element_id.lower()] = node

        def instantiate(node: Node, active: tuple[str, ...]) -> Node:
            if node.name == GROUPDEF:
                return node

            template_id = (node.element_id or "").lower()
            if node.name == GROUP and not node.children and template_id in templates:
                if template_id in active or len(active) >= _MAX_GROUP_NESTING:
                    logger.warning(f"Not instantiating recursive group {node.element_id!r}")
                    return node
                template = templates[template_id]
                attributes = dict(template.attributes)
                attributes.update(node.attributes)
                children = tuple(instantiate(c, active + (template_id,)) for c in template.children)
                return Node(name=GROUP, attributes=attributes, children=children, annotations=node.annotations)

            return node.with_children([instantiate(c, active) for c in node.children])

        return instantiate(tree, ())

    def annotate_scripts(self, tree: Node) -> Node:
        """Attach the compiled program of every script node found in the archive."""

        def annotate(node: Node) -> Node:
            if node.name != SCRIPT or not node.file:
                return node
            member = self.resolve(node.file)
            if member is None:
                logger.warning(f"Script file missing from archive: {node.file}")
                return node
            return node.with_annotations(script=ScriptProgram(source_file=member, data=self._zip.read(member)))

        return map_tree(tree, annotate)

    def initialize(self, xml_tree: Node) -> Node:
        """Build the script-annotated layout tree from the resolved document."""
        return self.annotate_scripts(self.instantiate_groups(xml_tree))

    @property
    def closed(self) -> bool:
        return self._zip.fp is None

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "SkinArchive":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


__all__ = [
    "SkinArchive",
    "map_tree",
    "normalize_member",
    "parse_fragment",
]
