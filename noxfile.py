"""Nox sessions for the dropbot test suite and ruff checks."""

import nox

nox.options.sessions = ["tests", "lint"]
python_versions = ["3.11", "3.12"]
source_paths = ["dropbot", "tests", "noxfile.py"]


@nox.session(python=python_versions)
def tests(session):
    """Run the suite with branch coverage of the dropbot package."""
    session.install("-e", ".[test]")
    session.run(
        "pytest",
        "--cov=dropbot",
        "--cov-branch",
        "--cov-report=term-missing",
        "--cov-fail-under=80",
        *session.posargs,
    )


@nox.session(python=python_versions[0])
def lint(session):
    """Lint and check formatting; pass ``-- --fix`` to apply fixes."""
    session.install("ruff>=0.1.0")
    if "--fix" in session.posargs:
        session.run("ruff", "format", *source_paths)
        session.run("ruff", "check", "--fix", *source_paths)
        return
    session.run("ruff", "check", *source_paths)
    session.run("ruff", "format", "--check", *source_paths)
