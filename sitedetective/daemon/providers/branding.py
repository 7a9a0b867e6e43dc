"""Stylesheet rules and the branding audit.

As a provider this finds CSS rules whose selector or declarations mention a
search term. The audit summarizes colors, typography and custom properties
across every stylesheet and grades how consistent the branding is.
"""

import colorsys
import re
from collections import Counter, defaultdict
from typing import Any, Dict, List, Sequence

from ..matching import best_match
from ..models import EvidenceItem, FileRef, ScanPhase, SearchTerm, SourceType
from .base import ScanContext, ScanProvider


RULE_RE = re.compile(r'([^{}]+)\{([^{}]*)\}')
COLOR_PATTERNS = {
    'hex': re.compile(r'#([a-fA-F0-9]{3,8})\b'),
    'rgb': re.compile(r'rgb\s*\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*\)'),
    'rgba': re.compile(r'rgba\s*\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*,\s*([0-9]*\.?[0-9]+)\s*\)'),
    'hsl': re.compile(r'hsl\s*\(\s*(\d+)\s*,\s*(\d+)%\s*,\s*(\d+)%\s*\)'),
    'hsla': re.compile(r'hsla\s*\(\s*(\d+)\s*,\s*(\d+)%\s*,\s*(\d+)%\s*,\s*([0-9]*\.?[0-9]+)\s*\)'),
}
FONT_FAMILY_RE = re.compile(r'font-family\s*:\s*([^;}]+)', re.I)
CUSTOM_PROPERTY_RE = re.compile(r'--([a-zA-Z0-9_-]+)\s*:\s*([^;}]+)')

WEB_SAFE_FONTS = {
    'Arial', 'Helvetica', 'Times New Roman', 'Times', 'Courier New', 'Courier',
    'Verdana', 'Georgia', 'Palatino', 'Garamond', 'Bookman', 'Tahoma',
    'Trebuchet MS', 'Arial Black', 'Impact', 'sans-serif', 'serif', 'monospace',
}
SERIF_FONTS = {'Times New Roman', 'Georgia', 'Palatino', 'Garamond', 'Bookman', 'serif'}
MONOSPACE_FONTS = {'Courier New', 'Courier', 'monospace'}
GOOGLE_FONTS = {
    'Roboto', 'Open Sans', 'Lato', 'Montserrat', 'Source Sans Pro',
    'Raleway', 'Poppins', 'Nunito', 'Ubuntu', 'Playfair Display',
}
COLOR_NAMES = {
    '#000000': 'Black',
    '#ffffff': 'White',
    '#ff0000': 'Red',
    '#00ff00': 'Green',
    '#0000ff': 'Blue',
    '#ffff00': 'Yellow',
    '#ff00ff': 'Magenta',
    '#00ffff': 'Cyan',
    '#808080': 'Gray',
    '#0073aa': 'WordPress Blue',
}

PRIMARY_COLOR_COUNT = 5


def hsl_to_hex(h: float, s: float, l: float) -> str:
    r, g, b = colorsys.hls_to_rgb(h / 360, l / 100, s / 100)
    return '#{:02x}{:02x}{:02x}'.format(round(r * 255), round(g * 255), round(b * 255))


def to_hex(kind: str, match: "re.Match") -> str:
    """Normalize a color match to lowercase hex; alpha is dropped."""
    if kind == 'hex':
        return match.group(0).lower()
    if kind in ('rgb', 'rgba'):
        r, g, b = (min(255, int(v)) for v in match.group(1, 2, 3))
        return f'#{r:02x}{g:02x}{b:02x}'
    h, s, l = (int(v) for v in match.group(1, 2, 3))
    return hsl_to_hex(h, s, l)


def parse_font_stack(value: str) -> List[str]:
    fonts = [f.strip().strip('"\'') for f in value.split(',')]
    return [f for f in fonts if f]


def color_family(hex_value: str) -> str:
    digits = hex_value.lstrip('#')
    if len(digits) == 3:
        digits = ''.join(c * 2 for c in digits)
    if len(digits) < 6:
        return 'Mixed'
    r, g, b = (int(digits[i:i + 2], 16) for i in (0, 2, 4))
    if r > g and r > b:
        return 'Red'
    if g > r and g > b:
        return 'Green'
    if b > r and b > g:
        return 'Blue'
    if r == g == b:
        return 'Grayscale'
    return 'Mixed'


def font_category(font: str) -> str:
    if font in SERIF_FONTS:
        return 'Serif'
    if font in MONOSPACE_FONTS:
        return 'Monospace'
    return 'Sans-serif'


def _line_of(content: str, position: int) -> int:
    return content.count('\n', 0, position) + 1


def selector_start(match: "re.Match") -> int:
    raw = match.group(1)
    return match.start(1) + len(raw) - len(raw.lstrip())


def audit_stylesheets(stylesheets: Sequence[FileRef]) -> Dict[str, Any]:
    """Color palette, typography and custom properties across stylesheets."""
    color_counts: Counter = Counter()
    color_values: Dict[str, set] = defaultdict(set)
    font_groups: Dict[str, Dict[str, Any]] = {}
    custom_properties = []

    for sheet in stylesheets:
        content = sheet.content
        for kind, pattern in COLOR_PATTERNS.items():
            for match in pattern.finditer(content):
                hex_value = to_hex(kind, match)
                color_counts[hex_value] += 1
                color_values[hex_value].add(match.group(0))

        for match in FONT_FAMILY_RE.finditer(content):
            stack = parse_font_stack(match.group(1))
            if not stack:
                continue
            primary = stack[0]
            group = font_groups.setdefault(primary, {
                'primary_font': primary,
                'font_stack': stack,
                'fallbacks': stack[1:],
                'usage_count': 0,
                'is_web_safe': primary in WEB_SAFE_FONTS,
                'font_category': font_category(primary),
                'google_font': primary in GOOGLE_FONTS,
            })
            group['usage_count'] += 1

        for match in CUSTOM_PROPERTY_RE.finditer(content):
            custom_properties.append({
                'property': f"--{match.group(1)}",
                'value': match.group(2).strip(),
                'file': sheet.path,
                'line': _line_of(content, match.start()),
            })

    ranked = color_counts.most_common()
    all_colors = [
        {
            'hex': hex_value,
            'original_values': sorted(color_values[hex_value]),
            'total_frequency': count,
            'color_name': COLOR_NAMES.get(hex_value, 'Custom Color'),
            'color_family': color_family(hex_value),
            'is_primary': index < PRIMARY_COLOR_COUNT,
        }
        for index, (hex_value, count) in enumerate(ranked)
    ]

    report = {
        'type': 'branding_audit',
        'files_analyzed': [s.path for s in stylesheets],
        'color_palette': {
            'primary_colors': [c for c in all_colors if c['is_primary']],
            'all_colors': all_colors,
            'total_unique_colors': len(all_colors),
            'color_families': dict(Counter(c['color_family'] for c in all_colors)),
        },
        'typography': {
            'font_families': list(font_groups.values()),
        },
        'custom_properties': custom_properties,
    }
    report['consistency_score'] = consistency_score(report)
    report['recommendations'] = recommendations(report)
    return report


def consistency_score(report: Dict[str, Any]) -> int:
    score = 100
    if report['color_palette']['total_unique_colors'] > 15:
        score -= 20
    fonts = report['typography']['font_families']
    if len(fonts) > 4:
        score -= 15
    for font in fonts:
        if not font['is_web_safe'] and len(font['fallbacks']) < 2:
            score -= 10
    if report['custom_properties']:
        score += 10
    return max(0, min(100, score))


def recommendations(report: Dict[str, Any]) -> List[str]:
    advice = []
    if report['color_palette']['total_unique_colors'] > 15:
        advice.append("Consolidate the color palette; more than 15 unique colors are in use")
    fonts = report['typography']['font_families']
    if len(fonts) > 4:
        advice.append("Limit typography to at most 4 font families")
    for font in fonts:
        if not font['is_web_safe'] and len(font['fallbacks']) < 2:
            advice.append(f"Add fallback fonts for {font['primary_font']}")
    if not report['custom_properties']:
        advice.append("Define brand colors and fonts as CSS custom properties")
    return advice


class BrandingProvider(ScanProvider):
    name = "branding"
    phase = ScanPhase.BRANDING_AUDIT
    estimated_cost = 1.0

    def units(self, context: ScanContext) -> Sequence[FileRef]:
        return context.source.list_stylesheets()

    def scan_units(self, units: Sequence[FileRef], terms: List[SearchTerm],
                   context: ScanContext) -> List[EvidenceItem]:
        evidence = []
        for sheet in units:
            for match in RULE_RE.finditer(sheet.content):
                selector = " ".join(match.group(1).split())
                declarations = " ".join(match.group(2).split())
                term, confidence = best_match(terms, selector, declarations)
                if term is None:
                    continue
                evidence.append(EvidenceItem(
                    source_type=SourceType.STYLESHEET,
                    location=f"{sheet.path} {selector}",
                    matched_text=selector,
                    confidence=confidence,
                    context=f"{selector} {{ {declarations} }}",
                    edit_reference=sheet.edit_ref or "customize.php?autofocus[section]=custom_css",
                    structural_hint='likely_stylesheet',
                    line=_line_of(sheet.content, selector_start(match)),
                    provider=self.name,
                ))
        return evidence

    def audit(self, context: ScanContext) -> Dict[str, Any]:
        return audit_stylesheets(self.units(context))
