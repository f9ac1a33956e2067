"""
Report renderer: chat message bodies from the Jinja2 templates in report/templates,
and the CSV sheet attached by the works-ratio report.
"""

import csv
import io
import os
from functools import lru_cache
from typing import Dict, Iterable, List, Sequence, Tuple

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

TEMPLATES_DIR = os.path.join(os.path.dirname(__file__), 'templates')

WORKS_RATIO_HEADER = [
    'Developer',
    'Resolution date',
    'Issue link',
    'Issue type',
    'Original estimate,h',
    'Time spent,h',
    'Diff,h',
    'Diff, %',
]


@lru_cache(maxsize=1)
def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(TEMPLATES_DIR),
        autoescape=select_autoescape(['html', 'xml']),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def render_template(name: str, **context) -> str:
    """Render one template by file name and strip surrounding blank lines."""
    return _environment().get_template(name).render(**context).strip()


def group_links(groups: Dict[str, List[str]]) -> List[Tuple[str, List[str]]]:
    """Sorted (author, links) pairs; links keep their insertion order."""
    return [(author, list(groups[author])) for author in sorted(groups)]


def render_bucket(kind: str, bucket: str, groups: Dict[str, List[str]], **context) -> str:
    """Message for one attention bucket of an aging detector.

    kind is 'forgotten_branches' or 'forgotten_pull_requests'; an empty group map renders ''.
    """
    if not groups:
        return ''
    return render_template(f"{kind}_{bucket}.txt.j2", groups=group_links(groups), **context)


def render_works_ratio_csv(rows: Iterable[Sequence]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(WORKS_RATIO_HEADER)
    for row in rows:
        writer.writerow(row)
    return output.getvalue()
