[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ankiced"
version = "0.1.0"
description = "Browse, edit and clean up the decks and notes of an Anki collection database"
requires-python = ">=3.10"
keywords = ["anki", "flashcards", "sqlite", "html", "sanitizer", "notes"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Education",
    "Topic :: Database",
    "Topic :: Text Processing :: Markup :: HTML",
]
dependencies = [
    "pyyaml>=6.0",
    "html5lib>=1.1",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["ankiced"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
