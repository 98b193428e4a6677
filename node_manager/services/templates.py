from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

APPLICATION_YML = "application.yml.j2"
CONFIG_INI = "config.ini.j2"
GROUP_GENESIS = "group.genesis.j2"
GROUP_INI = "group.ini.j2"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    autoescape=False,
)


def render(template_name: str, **context) -> str:
    """Render a packaged template; a missing variable raises instead of rendering blank."""
    return _env.get_template(template_name).render(**context)
