# ============================================================================
# PROJECT SERVICE
# ============================================================================
# EPOCH: 1 - MODEL BUILDS
# STATUS: Core - Project loading
# PURPOSE: Load models, sources, tests and macros from a project directory
# CREATED: 10 OCT 2026
# ============================================================================
"""
Project Service

Loads a project directory into a LoadedProject:

    project.yml                 ProjectConfig (paths, vars, namespace config)
    <model-paths>/**/*.sql      one model per file; name = file stem,
                                namespace = directory relative to the model path
    <model-paths>/**/*.yml      schema files: sources, model descriptions,
                                columns, config and column tests
    <test-paths>/**/*.sql       singular tests; name = file stem
    <macro-paths>/**/*.sql      {% macro %} blocks shared by every model

Inline configuration is read from {{ config(key=value, ...) }} at the top
of a model or singular test. Precedence for a model, most specific last:
namespace '+' config < schema file config < inline config().

Any problem reading the project raises ProjectLoadError naming the file.
"""

import ast
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from core.contracts import TestKind
from core.errors import ProjectLoadError
from core.models import (
    LoadedProject,
    ModelDefinition,
    ProjectConfig,
    SourceDefinition,
    TestSpec,
)
from orchestrator.engine.references import get_reference_extractor

logger = logging.getLogger(__name__)

PROJECT_FILE = "project.yml"

_CONFIG_CALL = re.compile(r"\{\{\s*config\s*\((?P<args>.*?)\)\s*\}\}", re.DOTALL)

# Keys inside a test entry that are test arguments rather than config
_TEST_CONFIG_KEYS = ("severity", "where")


def parse_config_call(text: str, path: Optional[str] = None) -> Dict[str, Any]:
    """
    Keyword arguments of the first {{ config(...) }} block, as Python literals.

    Raises:
        ProjectLoadError: arguments are not literal keyword arguments
    """
    match = _CONFIG_CALL.search(text)
    if not match:
        return {}
    try:
        call = ast.parse(f"config({match.group('args')})", mode="eval").body
        if call.args:
            raise ValueError("config() accepts keyword arguments only")
        return {kw.arg: ast.literal_eval(kw.value) for kw in call.keywords}
    except (SyntaxError, ValueError) as e:
        raise ProjectLoadError(f"Invalid config() block: {e}", path=path)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class ProjectService:
    """Service for loading a model project from disk."""

    def __init__(self, project_dir: str):
        """
        Initialize project service.

        Args:
            project_dir: Directory containing project.yml
        """
        self.project_dir = Path(project_dir)
        self.extractor = get_reference_extractor()
        self._project: Optional[LoadedProject] = None

    @property
    def project(self) -> LoadedProject:
        """Loaded project (loads on first access)."""
        if self._project is None:
            self._project = self.load()
        return self._project

    def reload(self) -> LoadedProject:
        """Re-read the project from disk."""
        self._project = self.load()
        return self._project

    def load(self) -> LoadedProject:
        """
        Read the whole project.

        Returns:
            LoadedProject

        Raises:
            ProjectLoadError: missing/invalid project.yml, unreadable or
                              invalid model, schema, test or macro file
        """
        config = self._load_config()

        models: Dict[str, ModelDefinition] = {}
        sources: List[SourceDefinition] = []
        schema_entries: Dict[str, Tuple[Dict[str, Any], str]] = {}

        for model_root in self._paths(config.model_paths):
            for schema_file in self._files(model_root, ("*.yml", "*.yaml")):
                file_sources, file_models = self._load_schema_file(schema_file)
                sources.extend(file_sources)
                for entry in file_models:
                    schema_entries[entry["name"]] = (entry, str(schema_file))

            for sql_file in self._files(model_root, ("*.sql",)):
                model = self._load_model(config, model_root, sql_file, schema_entries)
                if model.name in models:
                    raise ProjectLoadError(
                        f"Duplicate model name: {model.name} "
                        f"({models[model.name].path}, {model.path})",
                        path=str(sql_file),
                    )
                models[model.name] = model

        # Schema entries are read before their models; attach them now
        for name, (entry, schema_path) in sorted(schema_entries.items()):
            if name not in models:
                logger.warning(f"Schema entry for unknown model {name} in {schema_path}")
                continue
            models[name] = self._apply_schema_entry(config, models[name], entry, schema_path)

        tests = []
        for test_root in self._paths(config.test_paths):
            for sql_file in self._files(test_root, ("*.sql",)):
                tests.append(self._load_singular_test(sql_file))

        macros = []
        for macro_root in self._paths(config.macro_paths):
            for sql_file in self._files(macro_root, ("*.sql",)):
                macros.append(self._read(sql_file))

        project = LoadedProject(
            config=config,
            models=[models[name] for name in sorted(models)],
            sources=sources,
            tests=tests,
            macros=macros,
            root=str(self.project_dir),
        )
        logger.info(
            f"Loaded project {config.name}: {len(project.models)} models, "
            f"{len(sources)} sources, {len(tests)} singular tests, {len(macros)} macro files"
        )
        return project

    # ------------------------------------------------------------------
    # project.yml
    # ------------------------------------------------------------------

    def _load_config(self) -> ProjectConfig:
        path = self.project_dir / PROJECT_FILE
        if not path.exists():
            raise ProjectLoadError(f"{PROJECT_FILE} not found in {self.project_dir}", path=str(path))
        data = self._read_yaml(path)
        try:
            return ProjectConfig(**data)
        except ValidationError as e:
            raise ProjectLoadError(f"Invalid {PROJECT_FILE}: {e}", path=str(path))

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def _load_model(
        self,
        config: ProjectConfig,
        model_root: Path,
        sql_file: Path,
        schema_entries: Dict[str, Tuple[Dict[str, Any], str]],
    ) -> ModelDefinition:
        sql = self._read(sql_file)
        relative = sql_file.parent.relative_to(model_root)
        namespace = ".".join(relative.parts)

        inline = parse_config_call(sql, path=str(sql_file))
        tags: List[str] = []
        for scope in config.scoped_configs([p for p in namespace.split(".") if p]):
            tags.extend(_as_list(scope.get("tags")))
        tags.extend(_as_list(inline.get("tags")))

        try:
            return ModelDefinition(
                name=sql_file.stem,
                sql=sql,
                namespace=namespace,
                materialized=inline.get("materialized"),
                schema=inline.get("schema"),
                tags=list(dict.fromkeys(tags)),
                description=inline.get("description"),
                path=str(sql_file),
            )
        except ValidationError as e:
            raise ProjectLoadError(f"Invalid model {sql_file.stem}: {e}", path=str(sql_file))

    def _apply_schema_entry(
        self,
        config: ProjectConfig,
        model: ModelDefinition,
        entry: Dict[str, Any],
        schema_path: str,
    ) -> ModelDefinition:
        """Merge a schema-file entry into a model; inline config() still wins."""
        inline = parse_config_call(model.sql, path=model.path)
        entry_config = entry.get("config") or {}

        columns: Dict[str, Optional[str]] = {}
        tests: List[TestSpec] = []
        for column in entry.get("columns") or []:
            if not isinstance(column, dict) or "name" not in column:
                raise ProjectLoadError(f"Column entries of {model.name} need a name", path=schema_path)
            columns[column["name"]] = column.get("description")
            for test_entry in column.get("tests") or column.get("data_tests") or []:
                tests.append(self._generic_test(model.name, column["name"], test_entry, schema_path))

        tags = list(model.tags) + _as_list(entry_config.get("tags")) + _as_list(entry.get("tags"))

        updates: Dict[str, Any] = {
            "description": model.description or entry.get("description"),
            "columns": columns,
            "tests": tests,
            "tags": list(dict.fromkeys(tags)),
        }
        if "materialized" not in inline and entry_config.get("materialized"):
            updates["materialized"] = entry_config["materialized"]
        if "schema" not in inline and entry_config.get("schema"):
            updates["schema"] = entry_config["schema"]

        data = model.model_dump(by_alias=True)
        data.update(updates)
        try:
            return ModelDefinition(**data)
        except ValidationError as e:
            raise ProjectLoadError(f"Invalid schema entry for {model.name}: {e}", path=schema_path)

    def _generic_test(self, model: str, column: str, entry: Any, schema_path: str) -> TestSpec:
        """
        Parse one column test entry.

        Accepted forms:
            - unique
            - accepted_values: {values: [...], severity: warn}
            - relationships: {to: ref('stg_orders'), field: order_key}
            - not_null: {config: {severity: warn, where: "..."}}
        """
        if isinstance(entry, str):
            kind_name, arguments = entry, {}
        elif isinstance(entry, dict) and len(entry) == 1:
            kind_name, arguments = next(iter(entry.items()))
            arguments = dict(arguments or {})
        else:
            raise ProjectLoadError(f"Unreadable test entry on {model}.{column}: {entry!r}", path=schema_path)

        try:
            kind = TestKind(kind_name)
        except ValueError:
            raise ProjectLoadError(f"Unknown test '{kind_name}' on {model}.{column}", path=schema_path)
        if kind == TestKind.SINGULAR:
            raise ProjectLoadError(f"Singular tests belong in test paths, not on {model}.{column}", path=schema_path)

        test_config = arguments.pop("config", None) or {}
        for key in _TEST_CONFIG_KEYS:
            if key in test_config and key not in arguments:
                arguments[key] = test_config[key]

        try:
            return TestSpec(kind=kind, model=model, column=column, path=schema_path, **arguments)
        except (ValidationError, TypeError) as e:
            raise ProjectLoadError(f"Invalid {kind_name} test on {model}.{column}: {e}", path=schema_path)

    # ------------------------------------------------------------------
    # Schema files
    # ------------------------------------------------------------------

    def _load_schema_file(self, path: Path) -> Tuple[List[SourceDefinition], List[Dict[str, Any]]]:
        data = self._read_yaml(path)

        sources: List[SourceDefinition] = []
        for source in data.get("sources") or []:
            source_name = source.get("name")
            schema = source.get("schema", source_name)
            for table in source.get("tables") or []:
                try:
                    sources.append(SourceDefinition(
                        source_name=source_name,
                        table_name=table.get("name"),
                        schema=schema,
                        identifier=table.get("identifier"),
                        description=table.get("description"),
                    ))
                except ValidationError as e:
                    raise ProjectLoadError(f"Invalid source {source_name}: {e}", path=str(path))

        models = []
        for entry in data.get("models") or []:
            if not isinstance(entry, dict) or not entry.get("name"):
                raise ProjectLoadError("Model entries need a name", path=str(path))
            models.append(entry)
        return sources, models

    # ------------------------------------------------------------------
    # Singular tests
    # ------------------------------------------------------------------

    def _load_singular_test(self, sql_file: Path) -> TestSpec:
        sql = self._read(sql_file)
        inline = parse_config_call(sql, path=str(sql_file))
        depends_on = self.extractor.extract_refs(sql)
        try:
            return TestSpec(
                kind=TestKind.SINGULAR,
                name=sql_file.stem,
                sql=sql,
                severity=inline.get("severity", "error"),
                depends_on=depends_on,
                description=inline.get("description"),
                path=str(sql_file),
            )
        except ValidationError as e:
            raise ProjectLoadError(f"Invalid singular test {sql_file.stem}: {e}", path=str(sql_file))

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    def _paths(self, relative_paths: List[str]) -> List[Path]:
        roots = []
        for relative in relative_paths:
            root = self.project_dir / relative
            if root.is_dir():
                roots.append(root)
            else:
                logger.debug(f"Project path not found, skipping: {root}")
        return roots

    def _files(self, root: Path, patterns: Tuple[str, ...]) -> List[Path]:
        found = set()
        for pattern in patterns:
            found.update(root.rglob(pattern))
        return sorted(found)

    def _read(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ProjectLoadError(f"Cannot read {path}: {e}", path=str(path))

    def _read_yaml(self, path: Path) -> Dict[str, Any]:
        try:
            data = yaml.safe_load(self._read(path))
        except yaml.YAMLError as e:
            raise ProjectLoadError(f"Invalid YAML: {e}", path=str(path))
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ProjectLoadError("Expected a mapping at the top level", path=str(path))
        return data


__all__ = [
    "PROJECT_FILE",
    "ProjectService",
    "parse_config_call",
]
