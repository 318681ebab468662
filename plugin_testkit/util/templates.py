"""
Payload fragments for the sample mutator, rendered with Jinja2.

Fragments are looked up in the workspace's ``templates/`` directory
first and then in the ones shipped with the package, so a workspace can
override any fragment by name.
"""

import shutil
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, Template

# Default fragments ship inside the package
PACKAGE_TEMPLATES = Path(__file__).parent.parent / "templates"
FRAGMENT_GLOB = "*.j2"


class TemplateLoader:
    """Finds, compiles and renders fragments (workspace first, then package)."""

    def __init__(self, workspace_root: Path | None = None):
        """
        Initialize template loader.

        Args:
            workspace_root: Path to workspace directory (None for package fragments only)
        """
        self.workspace_root = Path(workspace_root) if workspace_root else None
        self.workspace_templates = (
            self.workspace_root / "templates" if self.workspace_root else None
        )
        self.default_templates = PACKAGE_TEMPLATES
        self._env: Environment | None = None
        self._compiled: dict[str, Template] = {}

    def has_custom_templates(self) -> bool:
        return self.workspace_templates is not None and self.workspace_templates.is_dir()

    def search_path(self) -> list[Path]:
        """Fragment directories in lookup order."""
        directories = [self.default_templates]
        if self.has_custom_templates():
            directories.insert(0, self.workspace_templates)
        return directories

    @property
    def env(self) -> Environment:
        # Fragments are spliced into sources byte for byte
        if self._env is None:
            self._env = Environment(
                loader=FileSystemLoader([str(d) for d in self.search_path()]),
                keep_trailing_newline=True,
                undefined=StrictUndefined,
                autoescape=False,
            )
        return self._env

    def get_template_path(self, template_name: str) -> Path:
        """
        Path of the fragment that will be used for ``template_name``.

        Raises:
            FileNotFoundError: If no directory on the search path has it
        """
        for directory in self.search_path():
            candidate = directory / template_name
            if candidate.is_file():
                return candidate

        searched = ", ".join(str(d) for d in self.search_path())
        raise FileNotFoundError(f"Fragment '{template_name}' not found (searched {searched})")

    def load_template(self, template_name: str) -> Template:
        """Compile a fragment once and reuse it."""
        if template_name not in self._compiled:
            self.get_template_path(template_name)
            self._compiled[template_name] = self.env.get_template(template_name)
        return self._compiled[template_name]

    def render(self, template_name: str, context: dict) -> str:
        """
        Render a fragment.

        Raises:
            FileNotFoundError: If the fragment does not exist
            jinja2.UndefinedError: If the fragment uses a name missing from ``context``
        """
        return self.load_template(template_name).render(**context)

    def copy_default_templates_to_workspace(self) -> Path:
        """
        Copy the package fragments into the workspace for editing.

        An existing ``templates/`` directory is moved to ``templates.backup/``
        (replacing any previous backup).

        Returns:
            The workspace templates directory
        """
        if self.workspace_templates is None:
            raise ValueError("No workspace configured for template copy")

        if self.workspace_templates.exists():
            backup_dir = self.workspace_root / "templates.backup"
            if backup_dir.exists():
                shutil.rmtree(backup_dir)
            shutil.move(str(self.workspace_templates), str(backup_dir))

        shutil.copytree(self.default_templates, self.workspace_templates)
        self._env = None
        self._compiled.clear()
        return self.workspace_templates

    def list_available_templates(self) -> list[tuple[str, str]]:
        """
        Fragments by name, each with the source that wins the lookup.

        Returns:
            (source, name) pairs, source being "workspace" or "default";
            workspace fragments come first
        """
        sources = [("default", self.default_templates)]
        if self.has_custom_templates():
            sources.insert(0, ("workspace", self.workspace_templates))

        winners: dict[str, str] = {}
        for source, directory in sources:
            for path in sorted(directory.rglob(FRAGMENT_GLOB)):
                winners.setdefault(path.relative_to(directory).as_posix(), source)
        return [(source, name) for name, source in winners.items()]
