"""
Questions Hub core package.

This package currently focuses on the package import subsystem. It exposes
dataclasses for extracted document blocks and parsed package trees, the
structural parser that turns loosely formatted quiz documents into tours,
blocks and questions, the `.qhub` archive reader, the database importer and
a job pipeline that drives uploads through extraction, parsing, importing
and finalization with retries.
"""
