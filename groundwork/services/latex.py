"""
LaTeX source for a resume's accepted bullets.

Templates live in groundwork/templates and use LaTeX-safe Jinja2 delimiters
(<<< var >>>, <%% block %%>, <# comment #>) so TeX braces need no escaping.
"""
from pathlib import Path
from typing import Iterable, List, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from groundwork.models.persona import Persona
from groundwork.services.persona_filter import order_sections

TEMPLATES_PATH = Path(__file__).resolve().parent.parent / "templates"
RESUME_TEMPLATE = "resume.tex.j2"

SECTION_TITLES = {
    "experience": "Experience",
    "project": "Projects",
    "open_source": "Open Source",
    "education": "Education",
    "publication": "Publications",
    "certification": "Certifications",
    "award": "Awards",
    "skill": "Skills",
    "extracurricular": "Activities",
}

_LATEX_SPECIALS = {
    "\\": r"\textbackslash{}",
    "&": r"\&",
    "%": r"\%",
    "$": r"\$",
    "#": r"\#",
    "_": r"\_",
    "{": r"\{",
    "}": r"\}",
    "~": r"\textasciitilde{}",
    "^": r"\textasciicircum{}",
}


def escape_latex(text: str) -> str:
    """Escape TeX special characters in plain text."""
    return "".join(_LATEX_SPECIALS.get(ch, ch) for ch in str(text or ""))


def _build_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_PATH)),
        variable_start_string="<<<",
        variable_end_string=">>>",
        block_start_string="<%%",
        block_end_string="%%>",
        comment_start_string="<#",
        comment_end_string="#>",
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )
    env.filters["tex"] = escape_latex
    return env


_env = _build_env()


def section_title(section: str) -> str:
    return SECTION_TITLES.get(section, section.replace("_", " ").title())


def render_resume_latex(bullets: Iterable, persona: Optional[Persona] = None, headline: str = "") -> str:
    """
    Render bullets (anything with .section, .position and .bullet_text) to LaTeX.

    Sections follow the persona's section_order, then the default order.
    """
    grouped = {}
    for bullet in sorted(bullets, key=lambda b: (b.position, b.bullet_text)):
        grouped.setdefault(bullet.section, []).append(bullet.bullet_text)

    sections: List[dict] = [
        {"title": section_title(section), "bullets": grouped[section]}
        for section in order_sections(grouped.keys(), persona)
    ]
    return _env.get_template(RESUME_TEMPLATE).render(headline=headline, sections=sections)
