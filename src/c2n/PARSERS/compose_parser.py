# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Parsers for Docker Compose YAML files.

The parser only produces the generic document tree (nested dicts, lists
and scalars); validation and translation work on that tree.
"""
import logging
import os
from typing import Any, Dict, List, Optional

import yaml
from dotenv import dotenv_values

from ..errors import ComposeParseError
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = logging.getLogger(__name__)


class ComposeParser:
    """
    Parser for docker-compose.yml files.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None, env_file: Optional[str] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: A dictionary of environment variables for interpolation.
            Defaults to the process environment.
        :param env_file: Optional .env file whose values are added to the context.
        """
        self.context = dict(os.environ) if context is None else dict(context)
        if env_file:
            for key, value in dotenv_values(env_file).items():
                self.context.setdefault(key, value or "")
        self.warnings: List[str] = []

    def parse(self, compose_path: str) -> Dict[str, Any]:
        """
        Parses a compose file from a path.

        :param compose_path: Path to the compose file.
        :return: The parsed document tree.
        :raises ComposeParseError: If the file is not a Compose mapping.
        """
        with open(compose_path, "r") as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> Dict[str, Any]:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :return: The parsed document tree.
        :raises ComposeParseError: If the YAML is invalid or its root is not a mapping.
        :raises InterpolationError: If a required variable is unset.
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ComposeParseError(f"Failed to parse YAML: {e}") from e

        if not isinstance(data, dict):
            raise ComposeParseError("Invalid YAML structure: the document root must be a mapping")

        # interpolate string values of the loaded tree, never the raw text
        missing: List[str] = []
        data = EnvironmentInterpolator.interpolate_tree(data, self.context, missing)
        self.warnings = [f"Variable '{name}' is not set. Defaulting to a blank string." for name in missing]

        logger.debug("Parsed compose document with sections: %s", ", ".join(map(str, data.keys())))
        return data
