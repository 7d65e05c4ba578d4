"""Template rendering utilities."""

import logging
from typing import Any, Callable, Optional, Set
from jinja2 import Environment, BaseLoader, StrictUndefined, TemplateError, meta


logger = logging.getLogger(__name__)


class StringTemplateLoader(BaseLoader):
    """Template loader for string templates."""

    def __init__(self, template_string: str):
        self.template_string = template_string

    def get_source(self, environment, template):
        return self.template_string, None, lambda: True


def create_environment(template_str: str, finalize: Optional[Callable[[Any], Any]] = None) -> Environment:
    """Create a strict Jinja2 environment for a single string template.

    ``finalize`` is applied to the value of every ``{{ ... }}`` expression,
    which is where output escaping is enforced.
    """
    return Environment(
        loader=StringTemplateLoader(template_str),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
        finalize=finalize,
    )


def render_template(template_str: str, finalize: Optional[Callable[[Any], Any]] = None, **context: Any) -> str:
    """Render a Jinja2 template string with given context."""
    try:
        env = create_environment(template_str, finalize)
        template = env.get_template("")
        return template.render(**context)

    except TemplateError as e:
        logger.error(f"Template rendering error: {e}")
        raise


def find_placeholders(template_str: str) -> Set[str]:
    """Return the names referenced by ``{{ ... }}`` expressions in a template.

    Raises jinja2.TemplateSyntaxError if the template cannot be parsed.
    """
    env = create_environment(template_str)
    return set(meta.find_undeclared_variables(env.parse(template_str)))
