"""Project file loading and build option handling."""

from .build_config import (
    BuildOptions,
    parse_option_args,
    render_config_header,
    write_config_header,
)
from .project_config import DEFAULT_PROJECT_FILE, ProjectConfig, load_project

__all__ = [
    "BuildOptions",
    "DEFAULT_PROJECT_FILE",
    "ProjectConfig",
    "load_project",
    "parse_option_args",
    "render_config_header",
    "write_config_header",
]
