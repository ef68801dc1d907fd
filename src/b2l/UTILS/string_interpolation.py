"""
Variable interpolation for configuration files.
"""
import re
from typing import Dict

# $$ | ${NAME} | ${NAME:-default} | ${NAME:+alternative}
VARIABLE_PATTERN = re.compile(r'\$\$|\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([-+])([^}]*))?\}')

class EnvironmentInterpolator:
    """
    Expands ``${VAR}``, ``${VAR:-default}`` and ``${VAR:+alternative}``
    placeholders. ``$$`` produces a literal ``$``.
    """
    @staticmethod
    def interpolate(template: str, context: Dict[str, str]) -> str:
        """
        Expands all placeholders in ``template``.

        :param template: Text containing placeholders.
        :param context: Variable values.
        :return: The expanded text.
        :raises KeyError: If a bare ``${VAR}`` is not set in ``context``.
        """
        def replace(match):
            if match.group(0) == '$$':
                return '$'
            name, modifier, alternative = match.groups()
            value = context.get(name)
            if modifier == '-':
                return value if value else alternative
            if modifier == '+':
                return alternative if value else ''
            if value is None:
                raise KeyError(f"Variable {name} not found in context")
            return value

        return VARIABLE_PATTERN.sub(replace, template)
