"""Evidence providers, one per kind of source."""

from typing import Dict, List

from ..models import ScanPhase
from .base import ScanContext, ScanProvider
from .branding import BrandingProvider, audit_stylesheets
from .builders import BuilderProvider
from .extensions import ExtensionProvider
from .hints import StructuralHintProvider
from .menus import MenuProvider
from .records import RecordProvider
from .shortcodes import ShortcodeProvider
from .templates import TemplateProvider
from .widgets import WidgetProvider


def quick_providers() -> List[ScanProvider]:
    """Quick-scan order: cheapest and most telling sources first."""
    return [
        StructuralHintProvider(),
        MenuProvider(),
        TemplateProvider(),
        WidgetProvider(),
        ShortcodeProvider(),
    ]


def deep_providers() -> Dict[ScanPhase, List[ScanProvider]]:
    """Providers run by each deep-scan phase. Synthesis has none."""
    return {
        ScanPhase.THEME_FILES: [
            StructuralHintProvider(),
            MenuProvider(),
            TemplateProvider(),
            WidgetProvider(),
            ShortcodeProvider(),
        ],
        ScanPhase.EXTENSIONS: [ExtensionProvider()],
        ScanPhase.DATABASE: [RecordProvider()],
        ScanPhase.BUILDERS: [BuilderProvider()],
        ScanPhase.BRANDING_AUDIT: [BrandingProvider()],
        ScanPhase.SYNTHESIS: [],
    }


__all__ = [
    'ScanContext',
    'ScanProvider',
    'StructuralHintProvider',
    'MenuProvider',
    'TemplateProvider',
    'WidgetProvider',
    'ShortcodeProvider',
    'BuilderProvider',
    'RecordProvider',
    'ExtensionProvider',
    'BrandingProvider',
    'audit_stylesheets',
    'quick_providers',
    'deep_providers',
]
