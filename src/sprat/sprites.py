"""
SVG sprite sheet assembly.
"""
from __future__ import annotations

import copy
import re
from pathlib import Path

from .core import BatchStep
from .dependencies import PipDependency


SVG_NS = 'http://www.w3.org/2000/svg'
XLINK_NS = 'http://www.w3.org/1999/xlink'
STACK_CSS = ':root>svg{display:none}:root>svg:target{display:block}'
# Attributes of a source's root element that the stacked copy keeps.
KEPT_ROOT_ATTRIBUTES = ('viewBox', 'width', 'height', 'preserveAspectRatio', 'fill', 'stroke')

_NUMBER = re.compile(r'\s*([0-9.]+)(px)?\s*')


def sprite_id(path: Path):
    """
    Derive a fragment-safe sprite id from a file name.
    """
    return re.sub(r'[^\w-]+', '-', path.stem).strip('-') or 'sprite'


class SVGSpriteStep(BatchStep):
    """
    Combine several SVG files into one sprite sheet in "stack" mode: each
    source becomes a nested `<svg id="<name>">` of which only the one named in
    the URL fragment is displayed, e.g. `sprites.svg#logo`. Ids inside each
    source are prefixed with its sprite id so they cannot collide.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('lxml'),
        }

    def __init__(self, namespace_ids: bool = True):
        self.namespace_ids = namespace_ids

    def _namespace_ids(self, element, prefix: str):
        renames = {}
        for node in element.iter():
            if isinstance(node.tag, str) and (old := node.get('id')):
                renames[old] = f'{prefix}_{old}'
                node.set('id', renames[old])
        if not renames:
            return

        def fix_refs(value: str):
            value = re.sub(
                r'url\(\s*#([^)\s]+)\s*\)',
                lambda m: f'url(#{renames.get(m[1], m[1])})',
                value,
            )
            if value.startswith('#') and value[1:] in renames:
                value = '#' + renames[value[1:]]
            return value

        for node in element.iter():
            if not isinstance(node.tag, str):
                continue
            for attr, value in node.attrib.items():
                if '#' in value:
                    node.set(attr, fix_refs(value))
            if node.tag == f'{{{SVG_NS}}}style' and node.text:
                node.text = fix_refs(node.text)

    def stack_member(self, path: Path):
        from lxml import etree

        parser = etree.XMLParser(remove_comments=True, remove_blank_text=True, resolve_entities=False)
        source = etree.parse(str(path), parser).getroot()
        name = sprite_id(path)

        member = etree.Element(f'{{{SVG_NS}}}svg', nsmap={None: SVG_NS})
        for attr in KEPT_ROOT_ATTRIBUTES:
            if (value := source.get(attr)) is not None:
                member.set(attr, value)
        if member.get('viewBox') is None:
            width = _NUMBER.fullmatch(source.get('width', ''))
            height = _NUMBER.fullmatch(source.get('height', ''))
            if width and height:
                member.set('viewBox', f'0 0 {width[1]} {height[1]}')

        for child in source:
            member.append(copy.deepcopy(child))
        if self.namespace_ids:
            self._namespace_ids(member, name)
        # Set after namespacing so the member's own id stays unprefixed.
        member.set('id', name)
        return member

    def assemble(self, paths: list[Path]) -> bytes:
        from lxml import etree

        root = etree.Element(f'{{{SVG_NS}}}svg', nsmap={None: SVG_NS, 'xlink': XLINK_NS})
        style = etree.SubElement(root, f'{{{SVG_NS}}}style')
        style.text = STACK_CSS

        seen: dict[str, Path] = {}
        for path in sorted(paths, key=lambda p: p.name):
            member = self.stack_member(path)
            if (name := member.get('id')) in seen:
                raise ValueError(f'{path} and {seen[name]} would share the sprite id {name!r}')
            seen[name] = path
            root.append(member)

        return etree.tostring(root, xml_declaration=True, encoding='utf-8')

    def __call__(self, paths: list[Path], output_paths: list[Path]):
        data = self.assemble(paths)
        for target_path in output_paths:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            target_path.write_bytes(data)
