"""
File Templates

Placeholder content for the required files a world spec declares
(README.md, project.yaml, environment.yml, ...). A required file names a
template id; the id is looked up here and rendered with the spec's
variable context. Inline ``content`` in the spec bypasses the lookup.
"""

import logging
from dataclasses import dataclass

from .errors import SpecError
from .variables import VariableContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileTemplate:
    """A named placeholder file body."""
    name: str
    body: str
    description: str = ""

    def render(self, variables: VariableContext, **extra) -> str:
        text, unresolved = variables.with_values(**extra).expand(self.body)
        for token in unresolved:
            logger.debug("Template %s left ${%s} unresolved", self.name, token.name)
        return text


_README = """\
# ${PROJECT_NAME}

${DESCRIPTION}

- World type: ${WORLD_TYPE}
- Created: ${DATE} by ${USER}
"""

_PROJECT_YAML = """\
name: "${PROJECT_NAME}"
world_type: "${WORLD_TYPE}"
owner: "${USER}"
created: "${DATE}"
"""

_ENVIRONMENT_YML = """\
name: ${PROJECT_ID}
channels:
  - conda-forge
dependencies:
  - python
"""

BUILTIN_TEMPLATES = {
    t.name: t
    for t in (
        FileTemplate("empty", "", "Empty file"),
        FileTemplate("gitkeep", "", "Keeps an otherwise empty directory"),
        FileTemplate("readme", _README, "Project README"),
        FileTemplate("project_yaml", _PROJECT_YAML, "Legacy project descriptor"),
        FileTemplate("environment_yml", _ENVIRONMENT_YML, "Conda environment stub"),
    )
}


def get_template(name: str) -> FileTemplate:
    try:
        return BUILTIN_TEMPLATES[name]
    except KeyError:
        raise SpecError(
            f"Unknown file template: {name!r} "
            f"(available: {', '.join(sorted(BUILTIN_TEMPLATES))})",
            kind=SpecError.INVALID_FIELD,
        ) from None


def render_required_file(required, variables: VariableContext, description: str = "") -> str:
    """Render the body of a RequiredFile."""
    if required.content is not None:
        return required.content
    return get_template(required.template).render(variables, DESCRIPTION=description)
