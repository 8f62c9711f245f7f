"""Candidate list parsing.

Each non-empty line is ``<pname> <oldVersion> <newVersion> [<sourceUrl>]``.
Malformed lines are returned as error strings so the batch can log them and
move on.
"""

from typing import List, Union

from .models import Candidate, Options

ParsedLine = Union[Candidate, str]


def parse_update_line(line: str, options: Options) -> ParsedLine:
    """Parse one line into a Candidate, or an error message."""
    tokens = line.split()
    if len(tokens) not in (3, 4):
        return f"Unable to parse update: {line.strip()}"
    name, old_version, new_version = tokens[:3]
    url = tokens[3] if len(tokens) == 4 else None
    return Candidate(
        package_name=name,
        old_version=old_version,
        new_version=new_version,
        source_url=url,
        options=options,
    )


def parse_updates(text: str, options: Options) -> List[ParsedLine]:
    """Parse a whole candidate list, skipping blank lines."""
    return [parse_update_line(line, options) for line in text.splitlines() if line.strip()]
