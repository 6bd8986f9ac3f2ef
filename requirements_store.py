"""
Load and save the requirements document (jx-requirements.yml) of a git working tree.
"""

import logging
import os
from typing import Tuple

import yaml

from core.errors import ConfigError
from core.models import RequirementsDocument

REQUIREMENTS_FILE_NAME = "jx-requirements.yml"


class RequirementsStore:
    """Reads and writes the single requirements document of a working tree."""

    def __init__(self, file_name: str = REQUIREMENTS_FILE_NAME):
        self.file_name = file_name
        self.logger = logging.getLogger('gitopsboot.store')

    def path_for(self, dir: str) -> str:
        return os.path.join(dir, self.file_name)

    def load(self, dir: str, must_exist: bool = False) -> Tuple[RequirementsDocument, str]:
        """Load the document of ``dir``.

        Returns the document and the path it lives at. When the file is missing
        and ``must_exist`` is False an empty document is returned for that path.

        Raises:
            ConfigError: If the file is required but missing, or does not parse
        """
        path = self.path_for(dir)
        if not os.path.isfile(path):
            if must_exist:
                raise ConfigError(f"no {self.file_name} found in directory {dir}", target=dir)
            self.logger.debug(f"No {self.file_name} in {dir}, starting from an empty document")
            return RequirementsDocument(), path
        return self.load_file(path), path

    def load_file(self, path: str) -> RequirementsDocument:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"failed to parse requirements file {path}: {e}", target=path) from e
        except OSError as e:
            raise ConfigError(f"failed to read requirements file {path}: {e}", target=path) from e

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError(f"requirements file {path} does not contain a mapping", target=path)
        environments = raw.get('environments')
        if environments is not None and (
            not isinstance(environments, list) or not all(isinstance(e, dict) for e in environments)
        ):
            raise ConfigError(f"requirements file {path} has an invalid 'environments' field", target=path)
        apps = raw.get('apps')
        if apps is not None and (
            not isinstance(apps, list) or not all(isinstance(a, (str, dict)) for a in apps)
        ):
            raise ConfigError(f"requirements file {path} has an invalid 'apps' field", target=path)
        return RequirementsDocument.from_dict(raw)

    def save(self, document: RequirementsDocument, path: str) -> None:
        try:
            with open(path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(document.to_dict(), f, default_flow_style=False, allow_unicode=True, sort_keys=False, width=120)
        except OSError as e:
            raise ConfigError(f"failed to save requirements file {path}: {e}", target=path) from e
        self.logger.debug(f"Saved requirements to {path}")
