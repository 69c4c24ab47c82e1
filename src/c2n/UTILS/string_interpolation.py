"""
Utilities for Compose-style variable interpolation.
"""
import re
from typing import Any, Dict, List, Optional

from ..errors import InterpolationError


class EnvironmentInterpolator:
    """
    Interpolates environment variables the way Docker Compose does.

    Supports ``$VAR``, ``${VAR}``, ``${VAR:-default}``, ``${VAR-default}``,
    ``${VAR:+value}``, ``${VAR+value}``, ``${VAR:?message}``,
    ``${VAR?message}`` and ``$$`` for a literal dollar sign.
    """
    PATTERN = re.compile(
        r"\$(?:"
        r"(?P<escaped>\$)"
        r"|\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<modifier>:?[-+?])(?P<argument>[^}]*))?\}"
        r"|(?P<named>[A-Za-z_][A-Za-z0-9_]*)"
        r")"
    )

    @classmethod
    def interpolate(
        cls,
        template: str,
        context: Dict[str, str],
        missing: Optional[List[str]] = None,
    ) -> str:
        """
        Interpolates variables in the template string using the provided context.

        Unset variables without a default resolve to an empty string, as in
        Compose; their names are appended to ``missing`` when given.

        :param template: The string containing variable references.
        :param context: The environment variables context.
        :param missing: Optional list collecting unset variable names.
        :return: The interpolated string.
        :raises InterpolationError: If a ``?`` variable is unset (or empty for ``:?``).
        """
        def replace(match):
            if match.group("escaped"):
                return "$"

            name = match.group("braced") or match.group("named")
            modifier = match.group("modifier")
            argument = match.group("argument") or ""
            value = context.get(name)

            if modifier is None:
                if value is None:
                    if missing is not None and name not in missing:
                        missing.append(name)
                    return ""
                return value

            # ':' variants also treat an empty value as unset
            is_set = bool(value) if modifier.startswith(":") else value is not None
            kind = modifier[-1]
            if kind == "-":
                return value if is_set else argument
            if kind == "+":
                return argument if is_set else ""
            if not is_set:
                raise InterpolationError(name, argument or None)
            return value

        return cls.PATTERN.sub(replace, template)

    @classmethod
    def interpolate_tree(
        cls,
        node: Any,
        context: Dict[str, str],
        missing: Optional[List[str]] = None,
    ) -> Any:
        """
        Interpolates every string value of a parsed document.

        Mapping keys and non-string scalars are left untouched, so a
        substituted value is never read back as YAML.
        """
        if isinstance(node, str):
            return cls.interpolate(node, context, missing)
        if isinstance(node, dict):
            return {key: cls.interpolate_tree(value, context, missing) for key, value in node.items()}
        if isinstance(node, list):
            return [cls.interpolate_tree(item, context, missing) for item in node]
        return node
