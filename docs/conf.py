"""Sphinx configuration for fastapi-carrierhub."""

project = "fastapi-carrierhub"
author = "fastapi-carrierhub contributors"
release = "0.1.0"

extensions = [
    "myst_parser",
    "autodoc2",
    "sphinx.ext.intersphinx",
]

autodoc2_packages = [
    {
        "path": "../src/fastapi_carrierhub",
        "module": "fastapi_carrierhub",
        "exclude_dirs": ["__pycache__"],
    },
]

myst_enable_extensions = [
    "colon_fence",
    "fieldlist",
    "deflist",
]

templates_path = ["_templates"]
exclude_patterns = ["_build"]

html_theme = "furo"
html_title = "fastapi-carrierhub"

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
    "fastapi": ("https://fastapi.tiangolo.com", None),
    "pydantic": ("https://docs.pydantic.dev/latest", None),
    "sqlalchemy": ("https://docs.sqlalchemy.org/en/20", None),
}

source_suffix = {
    ".rst": "restructuredtext",
    ".md": "markdown",
}

# Pydantic model internals clutter the rendered API pages.
autodoc2_hidden_objects = ["private", "inherited"]
myst_heading_anchors = 2
