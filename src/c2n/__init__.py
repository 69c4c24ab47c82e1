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
C2N - Compose to Nomad

Translates Docker Compose application descriptions into Nomad job
specifications, rendered as HCL or JSON.
"""

__version__ = "0.1.0"
__author__ = "Michael Maillet, Damien Davison, Sacha Davison"
__license__ = "Apache-2.0"

SUPPORTED_COMPOSE_VERSIONS = ["3.0", "3.1", "3.2", "3.3", "3.4", "3.5", "3.6", "3.7", "3.8", "3.9"]
SUPPORTED_NOMAD_VERSIONS = ["1.4+", "1.5+", "1.6+"]

from .MODELS.conversion import ConversionOptions, ConversionResult, ResourceDefaults, ValidationResult
from .VALIDATION.compose_validator import validate_compose_file, validate_compose_version
from .CONVERTERS.to_nomad import ComposeToNomadConverter, convert, convert_compose
from .GENERATORS.hcl_generator import generate_hcl, generate_json

__all__ = [
    "ConversionOptions",
    "ConversionResult",
    "ResourceDefaults",
    "ValidationResult",
    "ComposeToNomadConverter",
    "convert",
    "convert_compose",
    "generate_hcl",
    "generate_json",
    "validate_compose_file",
    "validate_compose_version",
]
