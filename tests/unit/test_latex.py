from types import SimpleNamespace

from groundwork.models.persona import Persona
from groundwork.services.latex import escape_latex, render_resume_latex
from groundwork.services.typesetting import parse_latex_log


def bullet(text, section="experience", position=0):
    return SimpleNamespace(bullet_text=text, section=section, position=position)


def test_escape_latex_specials() -> None:
    assert escape_latex("R&D 100% $5 #1 a_b") == r"R\&D 100\% \$5 \#1 a\_b"
    assert escape_latex(r"{x}\~^") == r"\{x\}\textbackslash{}\textasciitilde{}\textasciicircum{}"
    assert escape_latex(None) == ""


def test_bullets_are_grouped_and_escaped() -> None:
    source = render_resume_latex(
        [
            bullet("Cut p99 latency 40% for billing", position=0),
            bullet("Python & Go", section="skill", position=1),
            bullet("Wrote the C# client", position=2),
        ],
        headline="Backend_Engineer",
    )
    assert source.startswith(r"\documentclass")
    assert r"{\Large\bfseries Backend\_Engineer}" in source
    assert source.index(r"\section*{Experience}") < source.index(r"\section*{Skills}")
    assert r"\item Cut p99 latency 40\% for billing" in source
    assert r"\item Python \& Go" in source
    assert r"\item Wrote the C\# client" in source
    assert "No grounded content yet." not in source


def test_persona_section_order_is_applied() -> None:
    persona = Persona(name="skills-first", section_order=["skill"])
    source = render_resume_latex([bullet("Python", section="skill"), bullet("Shipped", section="experience")], persona)
    assert source.index(r"\section*{Skills}") < source.index(r"\section*{Experience}")


def test_empty_resume_renders_placeholder() -> None:
    source = render_resume_latex([])
    assert "No grounded content yet." in source
    assert r"\section*" not in source
    assert r"\end{document}" in source


def test_parse_latex_log_errors_and_warnings() -> None:
    log = "\n".join([
        "This is pdfTeX, Version 3.141592653",
        "./resume.tex:14: Undefined control sequence.",
        "! Undefined control sequence.",
        "l.14 \\itme",
        "LaTeX Warning: Reference `fig' on page 1 undefined.",
        "Overfull \\hbox (12.3pt too wide) in paragraph at lines 20--21",
    ])
    errors, warnings = parse_latex_log(log)
    assert "Undefined control sequence." in errors
    assert "line 14: Undefined control sequence." in errors
    assert len(errors) == 2
    assert warnings == ["Reference `fig' on page 1 undefined.", "12.3pt too wide"]


def test_clean_log_has_no_errors() -> None:
    errors, warnings = parse_latex_log("Output written on resume.pdf (1 page, 30000 bytes).")
    assert errors == [] and warnings == []
