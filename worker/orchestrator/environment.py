import re
from typing import Dict

_PLACEHOLDER = re.compile(r"\$\{env\.([A-Za-z_][A-Za-z0-9_]*)\}")


class EnvironmentSubstitution:
    """Replaces ``${env.KEY}`` placeholders; unknown keys are left as written."""

    def __init__(self, variables: Dict[str, str] | None = None):
        self.variables = dict(variables or {})

    def substitute(self, text: str) -> str:
        if not text or not self.variables:
            return text
        return _PLACEHOLDER.sub(lambda m: str(self.variables.get(m.group(1), m.group(0))), text)
