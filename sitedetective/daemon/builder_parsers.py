"""Parsers that flatten page-builder storage into BuilderElements.

Each builder keeps page structure differently: Elementor as a JSON tree in
record meta, Divi and WPBakery as shortcodes in the body, Gutenberg as block
comments in the body. Everything comes out as the same flat element list.
"""

import json
import re
from html import unescape
from typing import Any, Dict, List, Optional, Union
from urllib.parse import unquote

from loguru import logger

from .models import BuilderElement


TAG_RE = re.compile(r'<[^>]+>')
ATTR_RE = re.compile(r'(\w+)="([^"]*)"')
DIVI_RE = re.compile(r'\[et_pb_([a-zA-Z0-9_]+)([^\]]*)\](?:(.*?)\[/et_pb_\1\])?', re.S)
WPBAKERY_RE = re.compile(r'\[vc_([a-zA-Z0-9_]+)([^\]]*)\](?:(.*?)\[/vc_\1\])?', re.S)
BLOCK_RE = re.compile(
    r'<!--\s+(/)?wp:([a-z][a-z0-9_-]*(?:/[a-z][a-z0-9_-]*)?)\s+(\{.*?\}\s+)?(/)?-->',
    re.S
)


def strip_tags(html: str) -> str:
    return " ".join(unescape(TAG_RE.sub(" ", html or "")).split())


def parse_attributes(attributes: str, decode: bool = False) -> Dict[str, str]:
    """key="value" pairs from a shortcode's attribute string."""
    return {
        key: unquote(value) if decode else value
        for key, value in ATTR_RE.findall(attributes or "")
    }


# Elementor

def parse_elementor(data: Union[str, List[Any], None], edit_ref: str) -> List[BuilderElement]:
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError as e:
            logger.warning(f"Unreadable Elementor data: {e}")
            return []
    if not isinstance(data, list):
        return []
    elements: List[BuilderElement] = []
    _walk_elementor(data, edit_ref, elements)
    return elements


def _walk_elementor(nodes: List[Any], edit_ref: str, out: List[BuilderElement]) -> None:
    for node in nodes:
        if not isinstance(node, dict):
            continue
        widget_type = node.get('widgetType')
        if widget_type:
            settings = node.get('settings') or {}
            text, link = _elementor_content(widget_type, settings)
            out.append(BuilderElement(
                type=widget_type,
                edit_ref=edit_ref,
                builder='elementor',
                text=text,
                link=link,
            ))
        children = node.get('elements')
        if isinstance(children, list):
            _walk_elementor(children, edit_ref, out)


def _elementor_content(widget_type: str, settings: Dict[str, Any]):
    if widget_type == 'heading':
        return settings.get('title', ''), ''
    if widget_type == 'text-editor':
        return strip_tags(settings.get('editor', '')), ''
    if widget_type == 'button':
        return settings.get('text', ''), (settings.get('link') or {}).get('url', '')
    if widget_type == 'image':
        return settings.get('alt_text', ''), (settings.get('image') or {}).get('url', '')
    if widget_type == 'nav-menu':
        return str(settings.get('menu', '')), ''
    return '', ''


# Divi and WPBakery

def parse_divi(body: str, edit_ref: str) -> List[BuilderElement]:
    elements = []
    for module, raw_attrs, inner in DIVI_RE.findall(body or ""):
        attrs = parse_attributes(raw_attrs)
        if module == 'button':
            text, link = attrs.get('button_text', ''), attrs.get('button_url', '')
        elif module == 'image':
            text, link = attrs.get('alt', ''), attrs.get('src', '')
        elif module == 'menu':
            text, link = attrs.get('menu_id', ''), ''
        else:
            text, link = strip_tags(inner) or attrs.get('title', ''), ''
        elements.append(BuilderElement(type=module, edit_ref=edit_ref,
                                       builder='divi', text=text, link=link))
    return elements


def parse_wpbakery(body: str, edit_ref: str) -> List[BuilderElement]:
    elements = []
    for shortcode, raw_attrs, inner in WPBAKERY_RE.findall(body or ""):
        attrs = parse_attributes(raw_attrs, decode=True)
        if shortcode == 'btn':
            text, link = attrs.get('title', ''), attrs.get('link', '')
        elif shortcode == 'single_image':
            text, link = attrs.get('image', ''), ''
        elif shortcode == 'wp_menu':
            text, link = attrs.get('nav_menu', ''), ''
        else:
            text, link = strip_tags(inner) or attrs.get('title', ''), ''
        elements.append(BuilderElement(type=shortcode, edit_ref=edit_ref,
                                       builder='wpbakery', text=text, link=link))
    return elements


# Gutenberg

def parse_blocks(body: str) -> List[Dict[str, Any]]:
    """
    Parse serialized block comments into a block tree.

    Produces dicts shaped like {blockName, attrs, innerHTML, innerBlocks}.
    Text outside any block is ignored.
    """
    root: Dict[str, Any] = {'innerBlocks': [], 'innerHTML': ''}
    stack = [root]
    position = 0

    for match in BLOCK_RE.finditer(body or ""):
        closing, name, raw_attrs, self_closing = match.groups()
        if len(stack) > 1:
            stack[-1]['innerHTML'] += body[position:match.start()]
        position = match.end()

        if '/' not in name:
            name = f"core/{name}"

        if closing:
            if len(stack) > 1 and stack[-1]['blockName'] == name:
                stack.pop()
            continue

        try:
            attrs = json.loads(raw_attrs) if raw_attrs else {}
        except ValueError:
            attrs = {}
        block = {'blockName': name, 'attrs': attrs, 'innerHTML': '', 'innerBlocks': []}
        stack[-1]['innerBlocks'].append(block)
        if not self_closing:
            stack.append(block)

    return root['innerBlocks']


def parse_gutenberg(blocks: Union[str, List[Dict[str, Any]]], edit_ref: str) -> List[BuilderElement]:
    if isinstance(blocks, str):
        blocks = parse_blocks(blocks)
    elements: List[BuilderElement] = []
    _walk_blocks(blocks, edit_ref, elements)
    return elements


def _walk_blocks(blocks: List[Dict[str, Any]], edit_ref: str, out: List[BuilderElement]) -> None:
    for block in blocks:
        name = block.get('blockName')
        if not name:
            continue
        attrs = block.get('attrs') or {}
        html = block.get('innerHTML') or ''
        text, link = _block_content(name, attrs, html, block)
        out.append(BuilderElement(type=name, edit_ref=edit_ref, builder='gutenberg',
                                  text=text, link=link))
        inner = block.get('innerBlocks') or []
        # Navigation links are folded into their parent's text
        if name != 'core/navigation':
            _walk_blocks(inner, edit_ref, out)


def _block_content(name: str, attrs: Dict[str, Any], html: str, block: Dict[str, Any]):
    if name in ('core/paragraph', 'core/heading'):
        return strip_tags(html), ''
    if name == 'core/button':
        if 'text' in attrs:
            return attrs['text'], attrs.get('url', '')
        match = re.search(r'>([^<]+)<', html)
        href = re.search(r'href="([^"]*)"', html)
        return (match.group(1).strip() if match else '',
                attrs.get('url') or (href.group(1) if href else ''))
    if name == 'core/image':
        return attrs.get('alt', '') or attrs.get('caption', ''), ''
    if name == 'core/navigation':
        labels = [
            (inner.get('attrs') or {}).get('label', '')
            for inner in block.get('innerBlocks') or []
            if inner.get('blockName') == 'core/navigation-link'
        ]
        return " | ".join(label for label in labels if label), ''
    if name == 'core/navigation-link':
        return attrs.get('label', ''), attrs.get('url', '')
    if name == 'core/shortcode':
        return html.strip(), ''
    return strip_tags(html), ''


def detect_builders(body: str, meta: Optional[Dict[str, Any]], edit_ref: str) -> List[BuilderElement]:
    """Every builder element found in a content record."""
    meta = meta or {}
    elements: List[BuilderElement] = []
    if meta.get('_elementor_data'):
        elements.extend(parse_elementor(meta['_elementor_data'], edit_ref))
    if '[et_pb_' in (body or ''):
        elements.extend(parse_divi(body, edit_ref))
    if '[vc_' in (body or ''):
        elements.extend(parse_wpbakery(body, edit_ref))
    if meta.get('blocks'):
        elements.extend(parse_gutenberg(meta['blocks'], edit_ref))
    elif '<!-- wp:' in (body or ''):
        elements.extend(parse_gutenberg(body, edit_ref))
    return elements
