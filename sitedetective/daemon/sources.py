"""Collaborator interfaces the detective reads the site through.

The engine never talks to the CMS directly. It reads menus, templates,
widgets, records, extensions and stylesheets from a ContentSource, and
builder elements from a BuilderAdapter. StaticContentSource and
StaticBuilderAdapter serve a site snapshot loaded from YAML or JSON.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import yaml
from loguru import logger

from .builder_parsers import detect_builders
from .models import (
    BuilderElement,
    ExtensionRef,
    FileRef,
    MenuItem,
    PageContext,
    Record,
    WidgetRef,
)


class ContentSource(Protocol):
    def list_menus(self) -> List[MenuItem]: ...

    def list_template_files(self, page: PageContext) -> List[FileRef]: ...

    def list_widgets(self) -> List[WidgetRef]: ...

    def get_record(self, record_id: Any) -> Optional[Record]: ...

    def list_record_ids(self) -> List[Any]: ...

    def list_active_extensions(self) -> List[ExtensionRef]: ...

    def list_stylesheets(self) -> List[FileRef]: ...


class BuilderAdapter(Protocol):
    def detect(self, page: PageContext) -> List[BuilderElement]: ...


class Explainer(Protocol):
    async def explain(self, query: str, digest: Dict[str, Any], timeout_ms: int) -> str: ...


def _file_ref(data: Dict[str, Any]) -> FileRef:
    return FileRef(
        path=data['path'],
        content=data.get('content', ''),
        modified_at=float(data.get('modified_at', 0.0)),
        edit_ref=data.get('edit_ref', ''),
    )


class StaticContentSource:
    """ContentSource backed by an in-memory site snapshot."""

    def __init__(self,
                 menus: Optional[List[MenuItem]] = None,
                 templates: Optional[List[FileRef]] = None,
                 widgets: Optional[List[WidgetRef]] = None,
                 records: Optional[List[Record]] = None,
                 extensions: Optional[List[ExtensionRef]] = None,
                 stylesheets: Optional[List[FileRef]] = None):
        self.menus = list(menus or [])
        self.templates = list(templates or [])
        self.widgets = list(widgets or [])
        self.records = {r.id: r for r in records or []}
        self.extensions = list(extensions or [])
        self.stylesheets = list(stylesheets or [])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StaticContentSource":
        return cls(
            menus=[MenuItem(**m) for m in data.get('menus', [])],
            templates=[_file_ref(t) for t in data.get('templates', [])],
            widgets=[WidgetRef(**w) for w in data.get('widgets', [])],
            records=[
                Record(id=r['id'], body=r.get('body', ''),
                       meta=r.get('meta', {}) or {}, title=r.get('title', ''))
                for r in data.get('records', [])
            ],
            extensions=[
                ExtensionRef(
                    name=e['name'],
                    version=str(e.get('version', '')),
                    files=tuple(_file_ref(f) for f in e.get('files', [])),
                    edit_ref=e.get('edit_ref', ''),
                )
                for e in data.get('extensions', [])
            ],
            stylesheets=[_file_ref(s) for s in data.get('stylesheets', [])],
        )

    def list_menus(self) -> List[MenuItem]:
        return list(self.menus)

    def list_template_files(self, page: PageContext) -> List[FileRef]:
        return list(self.templates)

    def list_widgets(self) -> List[WidgetRef]:
        return list(self.widgets)

    def get_record(self, record_id: Any) -> Optional[Record]:
        return self.records.get(record_id)

    def list_record_ids(self) -> List[Any]:
        return list(self.records)

    def list_active_extensions(self) -> List[ExtensionRef]:
        return list(self.extensions)

    def list_stylesheets(self) -> List[FileRef]:
        return list(self.stylesheets)


class StaticBuilderAdapter:
    """BuilderAdapter that parses builder data stored on the page's record."""

    def __init__(self, source: StaticContentSource):
        self.source = source

    def detect(self, page: PageContext) -> List[BuilderElement]:
        if page.page_id is None:
            return []
        record = self.source.get_record(page.page_id)
        if record is None:
            return []
        edit_ref = f"post.php?post={record.id}&action=edit"
        return detect_builders(record.body, record.meta, edit_ref)


def load_site_snapshot(path: Path) -> StaticContentSource:
    """Load a site snapshot from a .yaml/.yml or .json file."""
    path = Path(path).expanduser()
    logger.info(f"Loading site snapshot from: {path}")
    with open(path, 'r', encoding='utf-8') as f:
        if path.suffix == '.json':
            data = json.load(f)
        else:
            data = yaml.safe_load(f) or {}
    return StaticContentSource.from_dict(data)
