"""Settings for gradebridge: defaults, optional YAML overrides, and environment."""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

import yaml
from dotenv import load_dotenv


DEFAULT_IDENTITY_KEYWORDS = ('name', 'id', 'email', 'sis', 'section')
DEFAULT_MODEL = 'gemini-2.5-flash'
DEFAULT_OUTPUT_NAME = 'canvas_import_ready.csv'


class ConfigError(ValueError):
    """Raised for malformed settings files."""


@dataclass(frozen=True)
class HeaderRule:
    """
    Picks the first header that contains one of `contains` or equals one of
    `equals`. Comparisons are case-sensitive.
    """

    contains: tuple = ()
    equals: tuple = ()

    def matches(self, header):
        return header in self.equals or any(text in header for text in self.contains)

    def find(self, headers):
        for header in headers:
            if self.matches(header):
                return header
        return None


@dataclass(frozen=True)
class MatchRules:
    """Header heuristics used to pair target rows with source rows."""

    target_id: HeaderRule = HeaderRule(contains=('SIS User ID',), equals=('ID',))
    source_id: HeaderRule = HeaderRule(contains=('Student ID',), equals=('ID',))
    target_name: HeaderRule = HeaderRule(contains=('Student',))
    source_name: HeaderRule = HeaderRule(contains=('Name', 'Student'))


@dataclass
class Settings:
    default_points: str = '10'
    identity_keywords: tuple = DEFAULT_IDENTITY_KEYWORDS
    match: MatchRules = field(default_factory=MatchRules)
    model: str = DEFAULT_MODEL
    output_filename: str = DEFAULT_OUTPUT_NAME
    gemini_api_key: str = ''


def _parse_rule(name, block):
    if not isinstance(block, dict):
        raise ConfigError(f"match.{name} must be a mapping with 'contains' and/or 'equals'")

    unknown = set(block) - {'contains', 'equals'}
    if unknown:
        raise ConfigError(f"Unknown keys in match.{name}: {', '.join(sorted(unknown))}")

    values = {}
    for key in ('contains', 'equals'):
        items = block.get(key) or []
        if isinstance(items, str):
            items = [items]
        if not all(isinstance(item, str) for item in items):
            raise ConfigError(f"match.{name}.{key} must be a list of strings")
        values[key] = tuple(items)

    return HeaderRule(**values)


def settings_from_dict(data):
    """Build Settings from a parsed YAML document."""
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError('Settings file must contain a mapping at the top level')

    allowed = {'default_points', 'identity_keywords', 'match', 'analysis', 'output_filename'}
    unknown = set(data) - allowed
    if unknown:
        raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}")

    settings = Settings()

    if 'default_points' in data:
        settings.default_points = str(data['default_points'])

    if 'identity_keywords' in data:
        keywords = data['identity_keywords']
        if not isinstance(keywords, list):
            raise ConfigError('identity_keywords must be a list')
        settings.identity_keywords = tuple(str(k).lower() for k in keywords)

    if 'match' in data:
        block = data['match'] or {}
        if not isinstance(block, dict):
            raise ConfigError('match must be a mapping')
        unknown = set(block) - {'target_id', 'source_id', 'target_name', 'source_name'}
        if unknown:
            raise ConfigError(f"Unknown match rules: {', '.join(sorted(unknown))}")
        rules = {name: _parse_rule(name, rule) for name, rule in block.items()}
        settings.match = replace(MatchRules(), **rules)

    if 'analysis' in data:
        analysis = data['analysis'] or {}
        if not isinstance(analysis, dict):
            raise ConfigError('analysis must be a mapping')
        settings.model = analysis.get('model', settings.model)

    if 'output_filename' in data:
        settings.output_filename = str(data['output_filename'])

    return settings


def load_settings(path=None):
    """
    Load settings from an optional YAML file plus the environment.

    GEMINI_API_KEY is read after loading a .env file from the working
    directory, if there is one.
    """
    if path:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"Settings file not found: {path}")
        with open(config_path, 'r', encoding='utf-8') as f:
            settings = settings_from_dict(yaml.safe_load(f))
    else:
        settings = Settings()

    load_dotenv()
    settings.gemini_api_key = os.getenv('GEMINI_API_KEY', '')
    return settings
