"""Nox sessions for testing across multiple Python versions."""

import nox

# Test against Python 3.10 through 3.13
nox.options.sessions = ["tests", "integration"]
nox.options.default_venv_backend = "uv"

PYTHONS = ["3.10", "3.11", "3.12", "3.13"]


@nox.session(python=PYTHONS)
def tests(session):
    """Run the unit tests with coverage."""
    session.install(".[dev]")
    session.run(
        "pytest",
        "tests/unit",
        "-q",
        "--cov=origin_dispatch",
        "--cov-report=term-missing",
        *session.posargs,
    )


@nox.session(python=PYTHONS[-1])
def integration(session):
    """Run end-to-end tests against the in-process origin."""
    session.install(".[dev]")
    session.run("pytest", "tests/integration", "-q", "--no-cov", *session.posargs)


@nox.session(python=PYTHONS[-1])
def benchmarks(session):
    """Measure dispatch overhead; prints timings."""
    session.install(".[dev]")
    session.run("pytest", "benchmarks/", "-v", "-s", "--no-cov", *session.posargs)


@nox.session(python=PYTHONS)
def type_check(session):
    """Run mypy type checking."""
    session.install(".[dev]")
    session.run("mypy", "src/origin_dispatch", *session.posargs)
