"""
Structural Miner — Tier 2

Extracts facts from the file writes, edits, reads and shell commands in a
session. Zero API calls: everything here is pattern matching over tool
inputs that event normalization already pulled out of the transcript.

Per-file extractors run on every Write/Edit event; each is independent and
additive. Data-file detection runs across all event types and tracks
reference counts so frequently-touched files surface as canonical sources.
The combined output is deduplicated by key, keeping the most confident
version.

Usage:
    from curator.memory.extraction.structural import extract

    facts = extract(transcript.tool_events)
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Callable

from curator.memory.extraction.tech_map import (
    LANGUAGE_MANIFESTS,
    MANIFEST_FRAMEWORKS,
    Preference,
    lookup_deploy_config,
    lookup_package,
)
from curator.memory.models import Scope, StructuralFact, ToolEvent

logger = logging.getLogger(__name__)

PREFERENCE_CONFIDENCE = 0.6
CANONICAL_MIN_REFERENCES = 3

MAX_CSS_VARIABLES = 10
MAX_THEME_COLORS = 5
MAX_DEPENDENCIES = 15
MAX_DEV_DEPENDENCIES = 10
MAX_ROUTES = 10
MAX_SCHEMA_NAMES = 8
MAX_SNIFFED_FIELDS = 10

MUTATING_TOOLS = {"Write", "Edit"}

DATA_FILE_EXTENSIONS = {
    ".jsonl", ".ndjson", ".csv", ".tsv", ".parquet", ".pickle", ".pkl",
    ".sqlite", ".db", ".sqlite3", ".arrow", ".feather", ".h5", ".hdf5",
    ".xlsx", ".xls",
}

CONFIG_FILES = {
    "tsconfig.json",
    "tsconfig.base.json",
    ".eslintrc.json",
    ".eslintrc.js",
    "eslint.config.js",
    "eslint.config.mjs",
    ".prettierrc",
    ".prettierrc.json",
    "prettier.config.js",
    "tailwind.config.js",
    "tailwind.config.ts",
    "next.config.js",
    "next.config.ts",
    "next.config.mjs",
    "vite.config.ts",
    "vite.config.js",
    "nuxt.config.ts",
    "svelte.config.js",
    "drizzle.config.ts",
    "prisma/schema.prisma",
    "docker-compose.yml",
    "docker-compose.yaml",
    "Dockerfile",
    ".env.example",
    "jest.config.js",
    "jest.config.ts",
    "vitest.config.ts",
    "biome.json",
}

ENV_FILES = {".env.example", ".env.local", ".env.sample"}

_STYLE_FILE_RE = re.compile(r"\.(css|scss|sass|less)$")
_CSS_VAR_RE = re.compile(r"--([\w-]+)\s*:\s*([^;]+)")
_THEME_COLOR_RE = re.compile(r"(?:colors?|primary|secondary|accent)\s*[:{]\s*['\"]?(#[\da-fA-F]+|[\w-]+)['\"]?")

_ROUTE_FILE_RE = re.compile(r"(?:route|endpoint|api|controller)", re.I)
_ROUTE_CALL_RE = re.compile(r"(?:app|router)\.(get|post|put|patch|delete)\s*\(\s*['\"`]([^'\"`]+)['\"`]", re.I)
_ROUTE_EXPORT_RE = re.compile(r"export\s+(?:async\s+)?function\s+(GET|POST|PUT|PATCH|DELETE)\b", re.I)

_LINE_COMMENT_RE = re.compile(r"//.*$", re.M)

_BASH_DATA_FILE_RE = re.compile(
    r"(?:^|\s|['\"])([^\s'\"]*\.(?:jsonl|ndjson|csv|tsv|parquet|pickle|pkl|sqlite|db|sqlite3|arrow|feather|h5|hdf5|xlsx|xls))\b",
    re.I,
)

_PRISMA_MODEL_RE = re.compile(r"^model\s+(\w+)\s*\{", re.M)
_DRIZZLE_PATH_RE = re.compile(r"drizzle.*schema|schema.*drizzle", re.I)
_DRIZZLE_TABLE_RE = re.compile(r"(?:pgTable|mysqlTable|sqliteTable)\s*\(\s*['\"](\w+)['\"]")
_PY_MODELS_PATH_RE = re.compile(r"models/.*\.py$")
_PY_MODEL_CLASS_RE = re.compile(r"class\s+(\w+)\s*\(.*(?:Model|Base|db\.Model)\)")
_TYPEORM_PATH_RE = re.compile(r"entities/.*\.ts$|entity\.ts$")
_TYPEORM_ENTITY_RE = re.compile(r"@Entity\(\)[\s\S]*?class\s+(\w+)")
_SEQUELIZE_PATH_RE = re.compile(r"models/.*\.(ts|js)$")
_SEQUELIZE_HINT_RE = re.compile(r"define\s*\(|sequelize\.define", re.I)
_SEQUELIZE_MODEL_RE = re.compile(r"(?:sequelize\.define|\.define)\s*\(\s*['\"](\w+)['\"]")
_MIGRATION_PATH_RE = re.compile(r"migrations?/")
_MIGRATION_EXT_RE = re.compile(r"\.(ts|js|py|rb|sql)$")

_ENV_DATABASE_URL_RE = re.compile(r"DATABASE_URL\s*=\s*['\"]?([\w+]+)://", re.M)
_PRISMA_PROVIDER_RE = re.compile(r"provider\s*=\s*\"(\w+)\"", re.I)
_DRIZZLE_DIALECT_RE = re.compile(r"dialect\s*:\s*['\"](\w+)['\"]", re.I)
_SQLALCHEMY_ENGINE_RE = re.compile(r"create_engine\s*\(", re.I)
_SQLALCHEMY_DIALECT_RE = re.compile(r"create_engine\s*\(\s*['\"](\w+)(?::|\+)", re.I)
_DJANGO_DATABASES_RE = re.compile(r"DATABASES\s*=\s*\{")
_DJANGO_ENGINE_RE = re.compile(r"['\"]ENGINE['\"]\s*:\s*['\"][^'\"]*\.(\w+)['\"]", re.I)

# Connection-string scheme -> dialect label
DB_SCHEMES = {
    "postgres": "PostgreSQL",
    "postgresql": "PostgreSQL",
    "mysql": "MySQL",
    "sqlite": "SQLite",
    "mongodb": "MongoDB",
    "mongodb+srv": "MongoDB",
    "redis": "Redis",
}

# Well-known environment variable names -> dialect label, checked in order
DB_ENV_HINTS = [
    (re.compile(r"POSTGRES_|PG_HOST|PGHOST", re.I), "PostgreSQL"),
    (re.compile(r"MYSQL_HOST|MYSQL_DATABASE", re.I), "MySQL"),
    (re.compile(r"MONGO_URI|MONGODB_", re.I), "MongoDB"),
    (re.compile(r"REDIS_URL|REDIS_HOST", re.I), "Redis"),
]

PRISMA_PROVIDERS = {
    "postgresql": "PostgreSQL",
    "mysql": "MySQL",
    "sqlite": "SQLite",
    "mongodb": "MongoDB",
}


# =============================================================================
# Helpers
# =============================================================================

def basename(file_path: str) -> str:
    return file_path.rsplit("/", 1)[-1]


def get_extension(file_path: str) -> str:
    return os.path.splitext(file_path)[1].lower()


def has_data_extension(file_path: str) -> bool:
    return get_extension(file_path) in DATA_FILE_EXTENSIONS


def capitalize(text: str) -> str:
    return text[:1].upper() + text[1:]


def _load_json(content: str) -> Any:
    try:
        return json.loads(content)
    except (json.JSONDecodeError, ValueError):
        return None


def _preference(pref: Preference, file_path: str) -> StructuralFact:
    return StructuralFact(
        category="preferences",
        key=pref.key,
        value=f"Uses {pref.description}",
        confidence=PREFERENCE_CONFIDENCE,
        scope=Scope.GLOBAL,
        source=file_path,
    )


# =============================================================================
# Per-file extractors (Write/Edit events)
# =============================================================================

def extract_css_tokens(file_path: str, content: str) -> list[StructuralFact]:
    """Custom properties and theme color literals from style files."""
    if not _STYLE_FILE_RE.search(file_path) and "tailwind" not in file_path:
        return []

    facts = []
    name = basename(file_path)

    variables = [f"--{m.group(1)}: {m.group(2).strip()}" for m in _CSS_VAR_RE.finditer(content)]
    if variables:
        facts.append(StructuralFact(
            category="design",
            key=f"css-variables-{name}",
            value=", ".join(variables[:MAX_CSS_VARIABLES]),
            confidence=1.0,
            source=file_path,
        ))

    colors = [m.group(0).strip() for m in _THEME_COLOR_RE.finditer(content)]
    if colors:
        facts.append(StructuralFact(
            category="design",
            key=f"theme-colors-{name}",
            value=", ".join(colors[:MAX_THEME_COLORS]),
            confidence=0.9,
            source=file_path,
        ))

    return facts


def extract_dependencies(file_path: str, content: str) -> list[StructuralFact]:
    """Runtime and dev dependency summaries from package.json."""
    if not file_path.endswith("package.json"):
        return []

    pkg = _load_json(content)
    if not isinstance(pkg, dict):
        return []

    facts = []
    deps = pkg.get("dependencies")
    if isinstance(deps, dict) and deps:
        listed = [f"{name}@{version}" for name, version in deps.items()][:MAX_DEPENDENCIES]
        facts.append(StructuralFact(
            category="architecture",
            key="dependencies",
            value=", ".join(listed),
            confidence=1.0,
            source=file_path,
        ))

    dev_deps = pkg.get("devDependencies")
    if isinstance(dev_deps, dict) and dev_deps:
        listed = [f"{name}@{version}" for name, version in dev_deps.items()][:MAX_DEV_DEPENDENCIES]
        facts.append(StructuralFact(
            category="tooling",
            key="dev-dependencies",
            value=", ".join(listed),
            confidence=1.0,
            source=file_path,
        ))

    return facts


def summarize_config(filename: str, config: dict[str, Any]) -> str:
    """Short digest of the salient settings in a JSON config."""
    if filename in ("tsconfig.json", "tsconfig.base.json"):
        opts = config.get("compilerOptions")
        if not isinstance(opts, dict):
            return ""
        parts = []
        if opts.get("target"):
            parts.append(f"target: {opts['target']}")
        if opts.get("module"):
            parts.append(f"module: {opts['module']}")
        if opts.get("jsx"):
            parts.append(f"jsx: {opts['jsx']}")
        if opts.get("strict"):
            parts.append("strict mode")
        return ", ".join(parts)

    keys = list(config.keys())[:5]
    return f"keys: {', '.join(keys)}"


def extract_config_decisions(file_path: str, content: str) -> list[StructuralFact]:
    """Digest of allow-listed config files; non-JSON configs just note the touch."""
    name = basename(file_path)
    if name not in CONFIG_FILES and file_path not in CONFIG_FILES and not file_path.endswith("prisma/schema.prisma"):
        return []

    key = f"config-{name.replace('.', '-')}"

    if name.endswith(".json") or name.endswith(".jsonc"):
        config = _load_json(_LINE_COMMENT_RE.sub("", content))
        if not isinstance(config, dict):
            return []
        summary = summarize_config(name, config)
        if not summary:
            return []
        return [StructuralFact(category="config", key=key, value=summary, confidence=1.0, source=file_path)]

    return [StructuralFact(
        category="config",
        key=key,
        value=f"{name} configured",
        confidence=0.7,
        source=file_path,
    )]


def extract_route_definitions(file_path: str, content: str) -> list[StructuralFact]:
    """Verb + path pairs from router calls or file-convention handler exports."""
    if not _ROUTE_FILE_RE.search(file_path):
        return []

    routes = [f"{m.group(1).upper()} {m.group(2)}" for m in _ROUTE_CALL_RE.finditer(content)]
    routes.extend(f"{m.group(1).upper()} {file_path}" for m in _ROUTE_EXPORT_RE.finditer(content))

    if not routes:
        return []

    return [StructuralFact(
        category="api",
        key=f"routes-{basename(file_path)}",
        value=", ".join(routes[:MAX_ROUTES]),
        confidence=0.9,
        source=file_path,
    )]


def extract_tech_preferences(file_path: str, content: str) -> list[StructuralFact]:
    """Global preference facts from manifests and deployment configs."""
    facts = []
    name = basename(file_path)

    if name == "package.json":
        pkg = _load_json(content)
        if isinstance(pkg, dict):
            all_deps: dict[str, Any] = {}
            for section in ("dependencies", "devDependencies"):
                if isinstance(pkg.get(section), dict):
                    all_deps.update(pkg[section])
            for dep_name in all_deps:
                pref = lookup_package(dep_name)
                if pref:
                    facts.append(_preference(pref, file_path))

    language = LANGUAGE_MANIFESTS.get(name)
    if language:
        facts.append(_preference(language, file_path))
        for pattern, pref in MANIFEST_FRAMEWORKS.get(name, []):
            if pattern.search(content):
                facts.append(_preference(pref, file_path))

    deploy = lookup_deploy_config(name)
    if deploy:
        facts.append(_preference(deploy, file_path))

    return facts


def _schema_fact(kind: str, name: str, value: str, file_path: str) -> StructuralFact:
    return StructuralFact(
        category="data",
        key=f"schema-{kind}-{name}",
        value=value,
        confidence=0.95,
        source=file_path,
    )


def extract_schema_definitions(file_path: str, content: str) -> list[StructuralFact]:
    """Entity and table names from ORM schemas, model classes and migrations."""
    facts = []
    name = basename(file_path)

    if name == "schema.prisma" or file_path.endswith("prisma/schema.prisma"):
        models = _PRISMA_MODEL_RE.findall(content)
        if models:
            listed = ", ".join(models[:MAX_SCHEMA_NAMES])
            facts.append(_schema_fact("prisma", name, f"Prisma schema at {file_path} — models: {listed}", file_path))

    if _DRIZZLE_PATH_RE.search(file_path):
        tables = _DRIZZLE_TABLE_RE.findall(content)
        if tables:
            listed = ", ".join(tables[:MAX_SCHEMA_NAMES])
            facts.append(_schema_fact("drizzle", name, f"Drizzle schema at {file_path} — tables: {listed}", file_path))

    if name == "models.py" or _PY_MODELS_PATH_RE.search(file_path):
        models = _PY_MODEL_CLASS_RE.findall(content)
        if models:
            listed = ", ".join(models[:MAX_SCHEMA_NAMES])
            facts.append(_schema_fact("models", name, f"Models at {file_path} — classes: {listed}", file_path))

    if _TYPEORM_PATH_RE.search(file_path):
        entities = _TYPEORM_ENTITY_RE.findall(content)
        if entities:
            listed = ", ".join(entities[:MAX_SCHEMA_NAMES])
            facts.append(_schema_fact("typeorm", name, f"TypeORM entity at {file_path} — entities: {listed}", file_path))

    if _SEQUELIZE_PATH_RE.search(file_path) and _SEQUELIZE_HINT_RE.search(content):
        models = _SEQUELIZE_MODEL_RE.findall(content)
        if models:
            listed = ", ".join(models[:MAX_SCHEMA_NAMES])
            facts.append(_schema_fact("sequelize", name, f"Sequelize models at {file_path} — models: {listed}", file_path))

    if _MIGRATION_PATH_RE.search(file_path) and _MIGRATION_EXT_RE.search(file_path):
        facts.append(StructuralFact(
            category="data",
            key=f"migration-{name}",
            value=f"Database migration: {file_path}",
            confidence=0.8,
            source=file_path,
        ))

    return facts


def detect_db_type_from_env(content: str) -> str | None:
    """Dialect from DATABASE_URL's scheme or well-known variable names."""
    match = _ENV_DATABASE_URL_RE.search(content)
    if match:
        scheme = match.group(1).lower()
        return DB_SCHEMES.get(scheme, capitalize(scheme))

    for pattern, label in DB_ENV_HINTS:
        if pattern.search(content):
            return label
    return None


def extract_database_connections(file_path: str, content: str) -> list[StructuralFact]:
    """
    Database dialect signals from env files and ORM configs.

    Values name the dialect and the file only; connection strings and
    credentials never leave the content.
    """
    facts = []
    name = basename(file_path)

    if name in ENV_FILES:
        db_type = detect_db_type_from_env(content)
        if db_type:
            facts.append(StructuralFact(
                category="data",
                key="db-connection",
                value=f"{db_type} database (config in {file_path})",
                confidence=0.9,
                source=file_path,
            ))

    if name == "schema.prisma" or file_path.endswith("prisma/schema.prisma"):
        match = _PRISMA_PROVIDER_RE.search(content)
        if match:
            provider = match.group(1)
            label = PRISMA_PROVIDERS.get(provider, provider)
            facts.append(StructuralFact(
                category="data",
                key="db-connection-prisma",
                value=f"{label} via Prisma (config in {file_path})",
                confidence=0.95,
                source=file_path,
            ))

    if name in ("drizzle.config.ts", "drizzle.config.js"):
        match = _DRIZZLE_DIALECT_RE.search(content)
        if match:
            facts.append(StructuralFact(
                category="data",
                key="db-connection-drizzle",
                value=f"{capitalize(match.group(1))} via Drizzle (config in {file_path})",
                confidence=0.9,
                source=file_path,
            ))

    if file_path.endswith(".py"):
        if _SQLALCHEMY_ENGINE_RE.search(content):
            match = _SQLALCHEMY_DIALECT_RE.search(content)
            dialect = capitalize(match.group(1)) if match else "SQL"
            facts.append(StructuralFact(
                category="data",
                key="db-connection-sqlalchemy",
                value=f"{dialect} via SQLAlchemy (in {file_path})",
                confidence=0.85,
                source=file_path,
            ))
        if _DJANGO_DATABASES_RE.search(content):
            match = _DJANGO_ENGINE_RE.search(content)
            engine = capitalize(match.group(1)) if match else "SQL"
            facts.append(StructuralFact(
                category="data",
                key="db-connection-django",
                value=f"{engine} via Django (in {file_path})",
                confidence=0.85,
                source=file_path,
            ))

    return facts


FileExtractor = Callable[[str, str], list[StructuralFact]]

FILE_EXTRACTORS: list[FileExtractor] = [
    extract_css_tokens,
    extract_dependencies,
    extract_config_decisions,
    extract_route_definitions,
    extract_tech_preferences,
    extract_schema_definitions,
    extract_database_connections,
]


# =============================================================================
# Data files (all event types)
# =============================================================================

def sniff_fields(content: str, ext: str) -> str | None:
    """Field names from the first JSONL record or CSV/TSV header row."""
    lines = content.split("\n")
    first_line = lines[0].strip() if lines else ""
    if not first_line:
        return None

    if ext in (".jsonl", ".ndjson"):
        obj = _load_json(first_line)
        if isinstance(obj, dict) and obj:
            return ", ".join(list(obj.keys())[:MAX_SNIFFED_FIELDS])

    if ext in (".csv", ".tsv"):
        sep = "\t" if ext == ".tsv" else ","
        headers = [re.sub(r"^[\"']|[\"']$", "", h.strip()) for h in first_line.split(sep)]
        # Numeric first rows are data, not headers
        if headers and all(re.match(r"^[a-zA-Z_]", h) for h in headers):
            return ", ".join(headers[:MAX_SNIFFED_FIELDS])

    return None


def _data_file_references(event: ToolEvent) -> list[tuple[str, float, str]]:
    """(path, confidence, content) triples for data files an event touches."""
    if event.tool in MUTATING_TOOLS:
        file_path = event.get_str("file_path")
        content = event.get_str("content") or event.get_str("new_string")
        if file_path and has_data_extension(file_path):
            return [(file_path, 0.95, content)]
    elif event.tool == "Read":
        file_path = event.get_str("file_path")
        if file_path and has_data_extension(file_path):
            return [(file_path, 0.85, "")]
    elif event.tool == "Bash":
        command = event.get_str("command")
        return [(m.group(1), 0.75, "") for m in _BASH_DATA_FILE_RE.finditer(command)]
    return []


def extract_data_files(events: list[ToolEvent]) -> list[StructuralFact]:
    """Data files referenced anywhere in the session, plus canonical sources."""
    facts = []
    ref_counts: dict[str, int] = {}

    for event in events:
        for path, confidence, content in _data_file_references(event):
            ext = get_extension(path)
            ref_counts[path] = ref_counts.get(path, 0) + 1

            value = f"{path} ({ext.lstrip('.').upper()})"
            if content:
                fields = sniff_fields(content, ext)
                if fields:
                    value += f" — fields: {fields}"

            facts.append(StructuralFact(
                category="data",
                key=f"data-file-{basename(path)}",
                value=value,
                confidence=confidence,
                source=path,
            ))

    for path, count in ref_counts.items():
        if count >= CANONICAL_MIN_REFERENCES:
            facts.append(StructuralFact(
                category="data",
                key=f"canonical-{basename(path)}",
                value=f"{path} — frequently-referenced data source ({count}x)",
                confidence=1.0,
                source=path,
            ))

    return facts


# =============================================================================
# Entry point
# =============================================================================

def dedupe(facts: list[StructuralFact]) -> list[StructuralFact]:
    """One fact per key; the higher confidence wins, ties keep the first seen."""
    seen: dict[str, StructuralFact] = {}
    for fact in facts:
        existing = seen.get(fact.key)
        if existing is None or fact.confidence > existing.confidence:
            seen[fact.key] = fact
    return list(seen.values())


def extract(events: list[ToolEvent]) -> list[StructuralFact]:
    """
    Mine candidate facts from normalized tool events.

    Args:
        events: ToolEvent list from the transcript

    Returns:
        Deduplicated StructuralFact list
    """
    facts: list[StructuralFact] = []

    for event in events:
        if event.tool not in MUTATING_TOOLS:
            continue

        file_path = event.get_str("file_path")
        content = event.get_str("content") or event.get_str("new_string")
        if not file_path or not content:
            continue

        for extractor in FILE_EXTRACTORS:
            try:
                facts.extend(extractor(file_path, content))
            except Exception as e:
                logger.warning(f"{extractor.__name__} failed on {file_path}: {e}")

    facts.extend(extract_data_files(events))

    return dedupe(facts)
