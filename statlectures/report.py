"""
Report Rendering Module
=======================

Assembles a lecture into a single self-contained HTML file: prose, code
snippets, tables and matplotlib figures embedded as PNG images. The page is
rendered from a Jinja2 template with autoescaping on.
"""

import base64
import io
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from jinja2 import Environment
from markupsafe import Markup, escape

logger = logging.getLogger(__name__)

_INLINE_CODE_RE = re.compile(r'`([^`]+)`')

STYLE = """
body { font-family: Georgia, 'Times New Roman', serif; max-width: 860px; margin: 2em auto;
       line-height: 1.55; color: #222; padding: 0 1em; }
h1 { border-bottom: 2px solid #444; padding-bottom: 0.2em; }
h2 { margin-top: 1.8em; color: #333; }
pre { background: #f5f5f5; padding: 0.8em; overflow-x: auto; border-left: 3px solid #888; }
code { font-family: Menlo, Consolas, monospace; font-size: 0.92em; background: #f0f0f0; padding: 0 0.2em; }
table.dataframe { border-collapse: collapse; margin: 1em 0; font-size: 0.9em; }
table.dataframe th, table.dataframe td { border: 1px solid #ccc; padding: 0.3em 0.7em; text-align: right; }
table.dataframe th { background: #eee; }
figure { margin: 1.5em 0; text-align: center; }
figure img { max-width: 100%; }
figcaption, .caption { font-size: 0.9em; color: #555; font-style: italic; }
.metrics { background: #f7f9fc; border: 1px solid #d6dde8; padding: 0.6em 1em; }
.meta { color: #666; font-size: 0.9em; }
"""

TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{{ title }}</title>
<style>{{ style | safe }}</style>
</head>
<body>
<h1>{{ title }}</h1>
<p class="meta">{% if author %}{{ author }} · {% endif %}{{ date }}</p>
{% for kind, payload in sections %}
{% if kind == 'heading' %}
<h{{ payload[1] }}>{{ payload[0] | inline_code }}</h{{ payload[1] }}>
{% elif kind == 'text' %}
<p>{{ payload | inline_code }}</p>
{% elif kind == 'code' %}
<pre><code>{{ payload }}</code></pre>
{% elif kind == 'table' %}
{{ payload[0] | safe }}
{% if payload[2] %}
<p class="caption">(first rows shown)</p>
{% endif %}
{% if payload[1] %}
<p class="caption">{{ payload[1] | inline_code }}</p>
{% endif %}
{% elif kind == 'figure' %}
<figure><img src="data:image/png;base64,{{ payload[0] }}" alt="figure">{% if payload[1] %}<figcaption>{{ payload[1] | inline_code }}</figcaption>{% endif %}</figure>
{% elif kind == 'metrics' %}
<div class="metrics"><ul>{% for key, value in payload[0].items() %}<li><strong>{{ key }}</strong>: {{ value }}</li>{% endfor %}</ul>{% if payload[1] %}<p class="caption">{{ payload[1] | inline_code }}</p>{% endif %}</div>
{% endif %}
{% endfor %}
</body>
</html>
"""

SECTION_KINDS = ('heading', 'text', 'code', 'table', 'figure', 'metrics')


def _format_text(text: str) -> Markup:
    escaped = str(escape(text))
    return Markup(_INLINE_CODE_RE.sub(r'<code>\1</code>', escaped))


_ENV = Environment(autoescape=True, trim_blocks=True, lstrip_blocks=True)
_ENV.filters['inline_code'] = _format_text
_TEMPLATE = _ENV.from_string(TEMPLATE)


def figure_to_base64(fig: plt.Figure, dpi: int = 110) -> str:
    """Encode a matplotlib figure as a base64 PNG string."""
    buffer = io.BytesIO()
    fig.savefig(buffer, format='png', dpi=dpi, bbox_inches='tight')
    return base64.b64encode(buffer.getvalue()).decode('ascii')


class LectureReport:
    """
    An ordered collection of report sections rendered to HTML.

    Sections are stored as ``(kind, payload)`` tuples and rendered in the
    order they were added.
    """

    def __init__(self, title: str, author: Optional[str] = None):
        self.title = title
        self.author = author
        self.sections: List[Tuple[str, Any]] = []

    def add_heading(self, text: str, level: int = 2) -> 'LectureReport':
        if level not in (2, 3, 4):
            raise ValueError(f"Heading level must be 2, 3 or 4, got {level}")
        self.sections.append(('heading', (text, level)))
        return self

    def add_text(self, text: str) -> 'LectureReport':
        """
        Add prose. Blank lines separate paragraphs and backticks mark inline code.
        """
        for paragraph in re.split(r'\n\s*\n', text.strip()):
            if paragraph.strip():
                self.sections.append(('text', ' '.join(paragraph.split())))
        return self

    def add_code(self, code: str) -> 'LectureReport':
        self.sections.append(('code', code.strip('\n')))
        return self

    def add_table(
        self,
        df: pd.DataFrame,
        caption: Optional[str] = None,
        digits: int = 3,
        index: bool = True,
        max_rows: int = 20
    ) -> 'LectureReport':
        """
        Add a table. Long tables are truncated to ``max_rows`` rows.
        """
        table = df.head(max_rows).round(digits)
        self.sections.append(('table', (table.to_html(index=index, border=0), caption, len(df) > max_rows)))
        return self

    def add_figure(self, fig: plt.Figure, caption: Optional[str] = None, close: bool = True) -> 'LectureReport':
        """
        Add a matplotlib figure, embedded as a PNG. The figure is closed afterwards by default.
        """
        self.sections.append(('figure', (figure_to_base64(fig), caption)))
        if close:
            plt.close(fig)
        return self

    def add_metrics(self, metrics: Dict[str, Any], caption: Optional[str] = None, digits: int = 4) -> 'LectureReport':
        """
        Add a list of named values. Floats are rounded to ``digits`` places.

        Raises:
            TypeError: If a value is not a number, string or boolean
        """
        items = {}
        for key, value in metrics.items():
            if isinstance(value, np.generic):
                value = value.item()
            if isinstance(value, float):
                items[key] = f"{value:.{digits}f}"
            elif isinstance(value, (int, str, bool)):
                items[key] = str(value)
            else:
                raise TypeError(f"Cannot show metric {key!r} of type {type(value).__name__}")
        self.sections.append(('metrics', (items, caption)))
        return self

    def render(self) -> str:
        """Render the full HTML document."""
        unknown = [kind for kind, _ in self.sections if kind not in SECTION_KINDS]
        if unknown:
            raise ValueError(f"Unknown section kind: {unknown[0]}")

        return _TEMPLATE.render(
            title=self.title,
            author=self.author,
            date=datetime.now().strftime('%Y-%m-%d'),
            style=STYLE,
            sections=self.sections
        )

    def save(self, filepath: str) -> Path:
        """
        Write the rendered HTML to disk.

        Args:
            filepath: Destination path; parent directories are created

        Returns:
            Path to the written file
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        filepath.write_text(self.render(), encoding='utf-8')
        logger.info(f"Report written to {filepath} ({len(self.sections)} sections)")
        return filepath
