"""Jinja2 template engine for generated service configuration."""
from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError as JinjaTemplateError,
    select_autoescape,
)

from .atomic import FILE_MODE, ensure_dir, write_text


class TemplateError(RuntimeError):
    """Raised when a template cannot be loaded or rendered."""


class TemplateEngine:
    """Render built-in templates, optionally shadowed by an override directory."""

    def __init__(self, environment: Environment) -> None:
        """Wrap a configured Jinja2 environment."""
        self.environment = environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine searching *override_dir* before the package templates."""
        loaders = []
        if override_dir is not None and override_dir.is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("owehost", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            autoescape=select_autoescape(["html"]),
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        return cls(environment)

    def render_to_string(self, name: str, context: Mapping[str, object]) -> str:
        """Render template *name* with *context*."""
        try:
            template = self.environment.get_template(name)
            return template.render(**context)
        except JinjaTemplateError as exc:
            raise TemplateError(f"Failed to render template {name}: {exc}") from exc

    def render_to_path(
        self,
        name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = FILE_MODE,
    ) -> bool:
        """Render *name* into *destination*; return False when content is unchanged."""
        content = self.render_to_string(name, context)
        if destination.is_file():
            try:
                current = destination.read_text(encoding="utf-8")
            except OSError:
                current = None
            if current == content:
                destination.chmod(mode)
                return False
        ensure_dir(destination.parent)
        write_text(destination, content, mode=mode)
        return True


__all__ = ["TemplateEngine", "TemplateError"]
